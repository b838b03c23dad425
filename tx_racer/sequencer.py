"""
Runs a batch of attempts strictly one after another.

    Idle -> Running(i) -> Completed(i) | Failed(i) -> Running(i + 1) | Done

An attempt ends when the confirmation race ends. RPC submissions keep running
in the background and keep writing to that attempt's aggregator.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Optional, Union

from .dispatcher import BroadcastDispatcher
from .endpoints import EndpointConfig, find_endpoint
from .race import ConfirmationRace, WonBy
from .resolver import DetailResolver, DetailResult
from .results import (
    AttemptStatus,
    EndpointKind,
    EventKind,
    EventSink,
    ResultAggregator,
    ResultListener,
    TransactionAttempt,
)
from .transaction import SignedTransaction

logger = logging.getLogger(__name__)

DEFAULT_DELAY = 2.0

# Returns True to continue with the next attempt, False to abort the batch
ErrorDecision = Callable[[int, Exception], Union[bool, Awaitable[bool]]]


@dataclass
class BatchReport:
    attempts: list[TransactionAttempt] = field(default_factory=list)
    requested: int = 0
    aborted: bool = False

    @property
    def confirmed(self) -> list[TransactionAttempt]:
        return [a for a in self.attempts if a.status == AttemptStatus.CONFIRMED]

    @property
    def failed(self) -> list[TransactionAttempt]:
        return [a for a in self.attempts if a.status == AttemptStatus.FAILED]


class TransactionSequencer:
    def __init__(
        self,
        build: Callable[[], Awaitable[SignedTransaction]],
        dispatcher: BroadcastDispatcher,
        race: ConfirmationRace,
        resolver: DetailResolver,
        rpc_endpoints: list[EndpointConfig],
        ws_endpoints: list[EndpointConfig],
        delay: float = DEFAULT_DELAY,
        race_timeout: Optional[float] = None,
        event_sink: Optional[EventSink] = None,
        result_listener: Optional[ResultListener] = None,
    ):
        self.build = build
        self.dispatcher = dispatcher
        self.race = race
        self.resolver = resolver
        self.rpc_endpoints = rpc_endpoints
        self.ws_endpoints = ws_endpoints
        self.delay = delay
        self.race_timeout = race_timeout
        self.event_sink = event_sink
        self.result_listener = result_listener
        self.aggregators: list[ResultAggregator] = []
        self.setup_errors: dict[int, Exception] = {}

    async def run(self, count: int, on_error: Optional[ErrorDecision] = None) -> BatchReport:
        report = BatchReport(requested=count)

        for index in range(1, count + 1):
            attempt = await self.run_attempt(index)
            report.attempts.append(attempt)

            if attempt.status == AttemptStatus.FAILED:
                if not await self._should_continue(on_error, index):
                    logger.info("Batch aborted after attempt %d", index)
                    report.aborted = True
                    break
                continue

            if index < count and self.delay > 0:
                await asyncio.sleep(self.delay)

        return report

    def refresh(self, report: BatchReport) -> BatchReport:
        """Rebuild `report` with RPC results that settled after their attempt ended."""
        by_index = {aggregator.index: aggregator for aggregator in self.aggregators}
        return replace(report, attempts=[by_index[a.index].refreshed() for a in report.attempts])

    async def _should_continue(self, on_error: Optional[ErrorDecision], index: int) -> bool:
        if on_error is None:
            return False
        decision = on_error(index, self.setup_errors[index])
        if inspect.isawaitable(decision):
            decision = await decision
        return bool(decision)

    async def run_attempt(self, index: int) -> TransactionAttempt:
        aggregator = ResultAggregator(index, self.event_sink, self.result_listener)
        self.aggregators.append(aggregator)

        try:
            tx = await self.build()
            aggregator.mark_created(tx.signature, tx.created_at)
            aggregator.record(EventKind.CREATE_TRANSACTION, f"Transaction created: {tx.signature}")
            self.dispatcher.dispatch(tx.raw, self.rpc_endpoints, aggregator)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error("Attempt %d failed during setup: %s", index, message)
            aggregator.set_error(message)
            aggregator.record(EventKind.ATTEMPT_FAILED, f"Attempt {index} failed: {message}")
            self.setup_errors[index] = e
            return aggregator.finalize(AttemptStatus.FAILED)

        outcome = await self.race.race(tx.signature, self.ws_endpoints, aggregator, timeout=self.race_timeout)

        if isinstance(outcome, WonBy):
            lookup_endpoint = find_endpoint(self.rpc_endpoints, outcome.endpoint.name)
            if lookup_endpoint is None and self.rpc_endpoints:
                lookup_endpoint = self.rpc_endpoints[0]

            if lookup_endpoint is None:
                detail = DetailResult(outcome.notification.slot, None, "No RPC endpoint available for lookup")
            else:
                detail = await self.resolver.resolve(tx.signature, lookup_endpoint, outcome.notification.slot, aggregator)
            aggregator.set_detail(detail.slot, detail.block_time, detail.error)
            aggregator.update(EndpointKind.WS, outcome.endpoint.name, slot=detail.slot, block_time=detail.block_time)
            return aggregator.finalize(AttemptStatus.CONFIRMED)

        return aggregator.finalize(AttemptStatus.UNCONFIRMED)
