"""
Per-attempt result accumulation.

The aggregator is the only writer of an attempt's shared state. The dispatcher,
the race coordinator and the sequencer all report through it, and every
mutation happens under one lock so endpoint callbacks arriving from different
tasks (or threads) never interleave a read-modify-write.
"""

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

logger = logging.getLogger(__name__)

# RPC submission statuses
RPC_SENDING = "Sending"
RPC_SENT = "Sent"
RPC_ERROR = "Error"

# WebSocket subscription statuses
WS_SUBSCRIBING = "Subscribing"
WS_SUBSCRIBED = "Subscribed"
WS_CONFIRMED = "Confirmed"
WS_ERROR = "WS Error"
WS_TIMEOUT = "Timeout"
WS_SUBSCRIPTION_ERROR = "Subscription Error"
WS_CANCELLED = "Cancelled"


class EndpointKind(str, Enum):
    RPC = "rpc"
    WS = "ws"


class AttemptStatus(str, Enum):
    CONFIRMED = "Confirmed"
    UNCONFIRMED = "Unconfirmed"  # no websocket confirmed before all settled
    FAILED = "Failed"


class EventKind(str, Enum):
    CREATE_TRANSACTION = "CreateTransaction"
    RPC_SEND = "RpcSendTransaction"
    RPC_SEND_ERROR = "RpcSendError"
    WS_SUBSCRIBE = "WebsocketSubscribe"
    WS_CONFIRMATION = "WebsocketReceiveConfirmation"
    WS_ERROR = "WebsocketError"
    RACE_WON = "RaceWon"
    RACE_EXHAUSTED = "RaceExhausted"
    DETAIL_RESOLVED = "DetailResolved"
    DETAIL_FALLBACK = "DetailFallback"
    ATTEMPT_FAILED = "AttemptFailed"
    INFO = "Info"


@dataclass(frozen=True)
class Event:
    timestamp: float
    kind: EventKind
    message: str
    endpoint: Optional[str] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class RpcResult:
    status: str = RPC_SENDING
    url: Optional[str] = None
    sent_at: Optional[float] = None
    duration_ms: Optional[int] = None
    signature_or_error: Optional[str] = None


@dataclass(frozen=True)
class WsResult:
    status: str = WS_SUBSCRIBING
    url: Optional[str] = None
    subscribed_at: Optional[float] = None
    confirmed_at: Optional[float] = None
    duration_ms: Optional[int] = None
    slot: Optional[int] = None
    block_time: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class TransactionAttempt:
    """Immutable record of one finished attempt."""
    index: int
    status: AttemptStatus
    signature: Optional[str] = None
    created_at: Optional[float] = None
    sent_at: Optional[float] = None
    first_sent_endpoint: Optional[str] = None
    first_confirmed_at: Optional[float] = None
    first_confirmed_endpoint: Optional[str] = None
    slot: Optional[int] = None
    block_time: Optional[int] = None
    detail_error: Optional[str] = None
    error: Optional[str] = None
    rpc_results: Mapping[str, RpcResult] = field(default_factory=dict)
    ws_results: Mapping[str, WsResult] = field(default_factory=dict)
    events: tuple[Event, ...] = ()

    @property
    def confirmation_ms(self) -> Optional[int]:
        """Create-to-first-confirmation latency."""
        if self.created_at is None or self.first_confirmed_at is None:
            return None
        return elapsed_ms(self.created_at, self.first_confirmed_at)


def elapsed_ms(start: float, end: float) -> int:
    return int(round((end - start) * 1000))


EventSink = Callable[[Event], Any]
ResultListener = Callable[[EndpointKind, str, dict], Any]


class ResultAggregator:
    """Collects events, endpoint results and timings for one attempt."""

    _result_types = {EndpointKind.RPC: RpcResult, EndpointKind.WS: WsResult}

    def __init__(
        self,
        index: int = 0,
        event_sink: Optional[EventSink] = None,
        result_listener: Optional[ResultListener] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.index = index
        self._event_sink = event_sink
        self._result_listener = result_listener
        self._clock = clock
        self._lock = threading.Lock()
        self._events: list[Event] = []
        self._results: dict[EndpointKind, dict[str, Any]] = {
            EndpointKind.RPC: {},
            EndpointKind.WS: {},
        }
        self._timings: dict[str, Any] = {}
        self._finalized: Optional[TransactionAttempt] = None

    @property
    def finalized(self) -> bool:
        return self._finalized is not None

    def now(self) -> float:
        return self._clock()

    def record(
        self,
        kind: EventKind,
        message: str,
        endpoint: Optional[str] = None,
        url: Optional[str] = None,
    ) -> Event:
        with self._lock:
            timestamp = self._clock()
            if self._events and timestamp < self._events[-1].timestamp:
                timestamp = self._events[-1].timestamp
            event = Event(timestamp, kind, message, endpoint, url)
            self._events.append(event)

        logger.debug("[attempt %d] %s: %s", self.index, kind.value, message)
        if self._event_sink is not None:
            try:
                self._event_sink(event)
            except Exception:
                logger.exception("[attempt %d] event sink failed on %s", self.index, kind.value)
        return event

    def update(self, kind: EndpointKind, name: str, **patch) -> Any:
        """Create or shallow-merge the result row for endpoint `name`."""
        kind = EndpointKind(kind)
        with self._lock:
            rows = self._results[kind]
            current = rows.get(name)
            if current is None:
                current = self._result_types[kind](**patch)
            else:
                current = replace(current, **patch)
            rows[name] = current
            late = self._finalized is not None

        if late:
            logger.info("[attempt %d] late %s result for %s: %s", self.index, kind.value, name, patch)
        if self._result_listener is not None:
            try:
                self._result_listener(kind, name, patch)
            except Exception:
                logger.exception("[attempt %d] result listener failed on %s %s", self.index, kind.value, name)
        return current

    def result(self, kind: EndpointKind, name: str) -> Any:
        with self._lock:
            return self._results[EndpointKind(kind)].get(name)

    def results(self, kind: EndpointKind) -> dict[str, Any]:
        with self._lock:
            return dict(self._results[EndpointKind(kind)])

    @property
    def events(self) -> list[Event]:
        with self._lock:
            return list(self._events)

    def _set(self, **values) -> None:
        with self._lock:
            self._timings.update(values)

    def mark_created(self, signature: str, created_at: float) -> None:
        self._set(signature=signature, created_at=created_at)

    def mark_sent(self, sent_at: float, endpoint: Optional[str]) -> None:
        self._set(sent_at=sent_at, first_sent_endpoint=endpoint)

    def mark_first_confirmed(self, confirmed_at: float, endpoint: str) -> None:
        self._set(first_confirmed_at=confirmed_at, first_confirmed_endpoint=endpoint)

    def set_detail(self, slot: Optional[int], block_time: Optional[int], error: Optional[str] = None) -> None:
        self._set(slot=slot, block_time=block_time, detail_error=error)

    def set_error(self, message: str) -> None:
        self._set(error=message)

    def timing(self, key: str) -> Any:
        with self._lock:
            return self._timings.get(key)

    def finalize(self, status: AttemptStatus) -> TransactionAttempt:
        """Freeze the attempt. Allowed exactly once."""
        with self._lock:
            if self._finalized is not None:
                raise RuntimeError(f"Attempt {self.index} is already finalized")
            self._finalized = TransactionAttempt(
                index=self.index,
                status=AttemptStatus(status),
                rpc_results=MappingProxyType(dict(self._results[EndpointKind.RPC])),
                ws_results=MappingProxyType(dict(self._results[EndpointKind.WS])),
                events=tuple(self._events),
                **self._timings,
            )
            return self._finalized

    def refreshed(self) -> TransactionAttempt:
        """
        The finalized attempt with its RPC rows re-read.

        Submissions keep settling after finalize(); the original snapshot stays
        as it was and a new one carrying the current RPC rows is returned.
        """
        with self._lock:
            if self._finalized is None:
                raise RuntimeError(f"Attempt {self.index} is not finalized")
            return replace(
                self._finalized,
                rpc_results=MappingProxyType(dict(self._results[EndpointKind.RPC])),
            )
