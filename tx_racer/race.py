"""
First-wins confirmation race across WebSocket endpoints.

Every endpoint gets its own signatureSubscribe and its own waiter future. The
transport callback is the only place a win is decided: it checks and sets the
`won` guard inside one critical section, so ties are broken by callback
delivery order and a second success can never complete the race twice. The
race itself waits for either the decision or for every endpoint to settle,
then unsubscribes whatever is still active.
"""

import asyncio
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional, Union

from .endpoints import EndpointConfig
from .results import (
    WS_CANCELLED,
    WS_CONFIRMED,
    WS_ERROR,
    WS_SUBSCRIBED,
    WS_SUBSCRIBING,
    WS_SUBSCRIPTION_ERROR,
    WS_TIMEOUT,
    EndpointKind,
    EventKind,
    ResultAggregator,
    elapsed_ms,
)
from .websocket import SignatureNotification

logger = logging.getLogger(__name__)

DEFAULT_SUBSCRIPTION_TIMEOUT = 100.0

_CANCELLED = object()


@dataclass(frozen=True)
class WonBy:
    endpoint: EndpointConfig
    notification: SignatureNotification
    confirmed_at: float


@dataclass(frozen=True)
class Exhausted:
    reason: str = "no endpoint confirmed"


Outcome = Union[WonBy, Exhausted]


class RaceState:
    """Shared state of one race. Every field is guarded by `lock`."""

    def __init__(self, aggregator: ResultAggregator, sent_at: Optional[float]):
        self.lock = threading.Lock()
        self.loop = asyncio.get_running_loop()
        self.aggregator = aggregator
        self.sent_at = sent_at
        self.won = False
        self.closed = False
        self.winner: Optional[WonBy] = None
        self.active: dict[str, Any] = {}
        self.waiters: dict[str, asyncio.Future] = {}
        self.to_release: list[tuple[str, Any]] = []
        self.decided: asyncio.Future = self.loop.create_future()

    def close(self) -> dict[str, asyncio.Future]:
        """Must hold `lock`. Moves active handles to `to_release` and returns the open waiters."""
        self.closed = True
        self.to_release.extend(self.active.items())
        self.active.clear()
        waiters = self.waiters
        self.waiters = {}
        return waiters

    def take_release(self) -> list[tuple[str, Any]]:
        with self.lock:
            handles = self.to_release
            self.to_release = []
        return handles

    def resolve(self, future: asyncio.Future, value) -> None:
        try:
            in_loop = asyncio.get_running_loop() is self.loop
        except RuntimeError:
            in_loop = False
        if in_loop:
            if not future.done():
                future.set_result(value)
        else:
            self.loop.call_soon_threadsafe(_set_if_pending, future, value)


def _set_if_pending(future: asyncio.Future, value) -> None:
    if not future.done():
        future.set_result(value)


def _log_watcher_failure(settled: asyncio.Future) -> None:
    if settled.cancelled():
        return
    error = settled.exception()
    if error is not None:
        logger.error("Confirmation watcher failed: %s", error, exc_info=error)


def describe_error(err: Any) -> str:
    if isinstance(err, str):
        return err
    try:
        return json.dumps(err)
    except (TypeError, ValueError):
        return repr(err)


class ConfirmationRace:
    def __init__(self, transport, subscription_timeout: float = DEFAULT_SUBSCRIPTION_TIMEOUT):
        self.transport = transport
        self.subscription_timeout = subscription_timeout
        self.state: Optional[RaceState] = None
        self._tasks: set[asyncio.Task] = set()

    async def race(
        self,
        signature: str,
        endpoints: list[EndpointConfig],
        aggregator: ResultAggregator,
        timeout: Optional[float] = None,
        sent_at: Optional[float] = None,
    ) -> Outcome:
        """
        Subscribe to `signature` on every endpoint and return the first success.

        Args:
            signature: base58 transaction signature
            endpoints: WebSocket endpoints to race
            aggregator: receives per-endpoint rows and events
            timeout: optional bound on the whole race, in seconds
            sent_at: reference time for confirmation durations

        Returns:
            WonBy for the first endpoint whose callback reported success,
            otherwise Exhausted once every subscription has settled or
            `timeout` elapsed.
        """
        if sent_at is None:
            sent_at = aggregator.timing("sent_at")
        state = RaceState(aggregator, sent_at)
        self.state = state

        watchers = []
        for endpoint in endpoints:
            task = asyncio.create_task(self._watch(state, endpoint, signature))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            watchers.append(task)

        settled = asyncio.gather(*watchers)
        settled.add_done_callback(_log_watcher_failure)
        await asyncio.wait({state.decided, settled}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)

        with state.lock:
            winner = state.winner
            waiters = {} if state.closed else state.close()

        if winner is None:
            self._cancel_waiters(state, waiters)
            aggregator.record(
                EventKind.RACE_EXHAUSTED,
                f"No WebSocket endpoint confirmed {signature} "
                f"({'race timeout' if not settled.done() else 'all subscriptions settled'})",
            )
            outcome: Outcome = Exhausted("race timeout" if not settled.done() else "all subscriptions settled")
        else:
            outcome = winner

        await self._release(state.take_release())
        return outcome

    def _on_notification(self, state: RaceState, endpoint: EndpointConfig, notification: SignatureNotification) -> None:
        received_at = state.aggregator.now()
        waiter = None
        waiters: dict[str, asyncio.Future] = {}
        with state.lock:
            if state.won or state.closed:
                logger.debug("Ignoring notification from %s, race already decided", endpoint.name)
                return
            if notification.ok:
                state.won = True
                state.winner = WonBy(endpoint, notification, received_at)
                waiters = state.close()
                waiter = waiters.pop(endpoint.name, None)
            else:
                waiter = state.waiters.pop(endpoint.name, None)

        if not notification.ok:
            if waiter is not None:
                state.resolve(waiter, notification)
            return

        aggregator = state.aggregator
        try:
            aggregator.mark_first_confirmed(received_at, endpoint.name)
            aggregator.update(
                EndpointKind.WS, endpoint.name,
                status=WS_CONFIRMED,
                confirmed_at=received_at,
                duration_ms=self._duration(state, endpoint, received_at),
                slot=notification.slot,
            )
            aggregator.record(
                EventKind.WS_CONFIRMATION,
                f"WebSocket message received from {endpoint.name}: confirmed in slot {notification.slot}",
                endpoint=endpoint.name, url=endpoint.url,
            )
            aggregator.record(EventKind.RACE_WON, f"First confirmation by {endpoint.name}", endpoint=endpoint.name)
        finally:
            # the win is already decided
            if waiter is not None:
                state.resolve(waiter, notification)
            self._cancel_waiters(state, waiters)
            state.resolve(state.decided, state.winner)

    def _cancel_waiters(self, state: RaceState, waiters: dict[str, asyncio.Future]) -> None:
        for name, waiter in waiters.items():
            state.aggregator.update(EndpointKind.WS, name, status=WS_CANCELLED)
            state.resolve(waiter, _CANCELLED)

    def _duration(self, state: RaceState, endpoint: EndpointConfig, at: float) -> Optional[int]:
        start = state.sent_at
        if start is None:
            row = state.aggregator.result(EndpointKind.WS, endpoint.name)
            start = row.subscribed_at if row is not None else None
        return elapsed_ms(start, at) if start is not None else None

    async def _watch(self, state: RaceState, endpoint: EndpointConfig, signature: str) -> None:
        aggregator = state.aggregator
        name = endpoint.name
        aggregator.update(
            EndpointKind.WS, name,
            status=WS_SUBSCRIBING, url=endpoint.url, subscribed_at=aggregator.now(),
        )
        aggregator.record(
            EventKind.WS_SUBSCRIBE,
            f"Creating WebSocket subscription for {name} to {endpoint.url}",
            endpoint=name, url=endpoint.url,
        )

        waiter = state.loop.create_future()
        with state.lock:
            if state.closed:
                return
            state.waiters[name] = waiter

        def callback(notification: SignatureNotification) -> None:
            self._on_notification(state, endpoint, notification)

        try:
            handle = await self.transport.subscribe(endpoint, signature, callback)
        except Exception as e:
            with state.lock:
                state.waiters.pop(name, None)
            aggregator.update(EndpointKind.WS, name, status=WS_SUBSCRIPTION_ERROR, error=str(e) or type(e).__name__)
            aggregator.record(
                EventKind.WS_ERROR,
                f"Error subscribing to signature on {name}: {e}",
                endpoint=name, url=endpoint.url,
            )
            return

        with state.lock:
            late = state.closed
            if not late:
                state.active[name] = handle
        if late:
            await self._release([(name, handle)])
            return

        if not waiter.done():
            aggregator.update(EndpointKind.WS, name, status=WS_SUBSCRIBED)

        done, _ = await asyncio.wait({waiter}, timeout=self.subscription_timeout)
        if not done:
            with state.lock:
                if state.closed:
                    return
                state.waiters.pop(name, None)
                handle = state.active.pop(name, None)
            aggregator.update(
                EndpointKind.WS, name,
                status=WS_TIMEOUT,
                error=f"No confirmation received within {self.subscription_timeout:g}s",
            )
            aggregator.record(
                EventKind.WS_ERROR,
                f"Timeout: no confirmation received from {name} for {signature} within {self.subscription_timeout:g}s",
                endpoint=name, url=endpoint.url,
            )
            if handle is not None:
                await self._release([(name, handle)])
            return

        notification = waiter.result()
        if notification is _CANCELLED or notification.ok:
            # the race released this handle when it closed
            return

        with state.lock:
            handle = state.active.pop(name, None)
        received_at = aggregator.now()
        error = describe_error(notification.err)
        aggregator.update(
            EndpointKind.WS, name,
            status=WS_ERROR,
            confirmed_at=received_at,
            duration_ms=self._duration(state, endpoint, received_at),
            slot=notification.slot,
            error=error,
        )
        aggregator.record(
            EventKind.WS_ERROR,
            f"WebSocket message received from {name}: transaction error {error}",
            endpoint=name, url=endpoint.url,
        )
        if handle is not None:
            await self._release([(name, handle)])

    async def _release(self, handles: list[tuple[str, Any]]) -> None:
        if not handles:
            return
        results = await asyncio.gather(
            *(self.transport.unsubscribe(handle) for _, handle in handles),
            return_exceptions=True,
        )
        for (name, _), result in zip(handles, results):
            if isinstance(result, Exception):
                logger.warning("Error removing subscription for %s: %s", name, result)
