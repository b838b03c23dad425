import asyncio
import logging

from .endpoints import EndpointConfig
from .results import (
    RPC_ERROR,
    RPC_SENDING,
    RPC_SENT,
    EndpointKind,
    EventKind,
    ResultAggregator,
    elapsed_ms,
)

logger = logging.getLogger(__name__)


class BroadcastDispatcher:
    """Fire-and-forget submission of one transaction to every RPC endpoint."""

    def __init__(self, transport):
        self.transport = transport
        self._pending: set[asyncio.Task] = set()

    def dispatch(self, raw: bytes, endpoints: list[EndpointConfig], aggregator: ResultAggregator) -> asyncio.Task:
        """
        Start one submit per endpoint and return without waiting for any of them.

        The returned task finishes once every endpoint has settled. Callers
        are free to ignore it; the dispatcher keeps a reference until it is done.
        """
        sent_at = aggregator.now()
        aggregator.mark_sent(sent_at, endpoints[0].name if endpoints else None)

        for endpoint in endpoints:
            aggregator.update(EndpointKind.RPC, endpoint.name, status=RPC_SENDING, url=endpoint.url, sent_at=sent_at)

        task = asyncio.create_task(self._send_all(raw, endpoints, sent_at, aggregator))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _send_all(self, raw: bytes, endpoints: list[EndpointConfig], sent_at: float, aggregator: ResultAggregator) -> None:
        await asyncio.gather(*(self._send_one(raw, endpoint, sent_at, aggregator) for endpoint in endpoints))

    async def _send_one(self, raw: bytes, endpoint: EndpointConfig, sent_at: float, aggregator: ResultAggregator) -> None:
        try:
            signature = await self.transport.submit(endpoint, raw)
        except Exception as e:
            duration = elapsed_ms(sent_at, aggregator.now())
            aggregator.update(
                EndpointKind.RPC, endpoint.name,
                status=RPC_ERROR, duration_ms=duration, signature_or_error=str(e) or type(e).__name__,
            )
            aggregator.record(
                EventKind.RPC_SEND_ERROR,
                f"Error sending via RPC to {endpoint.name}: {e} ({duration} ms)",
                endpoint=endpoint.name, url=endpoint.url,
            )
            return

        duration = elapsed_ms(sent_at, aggregator.now())
        aggregator.update(
            EndpointKind.RPC, endpoint.name,
            status=RPC_SENT, duration_ms=duration, signature_or_error=signature,
        )
        aggregator.record(
            EventKind.RPC_SEND,
            f"Transaction sent via RPC to {endpoint.name}. RPC signature: {signature} ({duration} ms)",
            endpoint=endpoint.name, url=endpoint.url,
        )

    async def drain(self) -> None:
        """Wait for every in-flight submission, across all attempts."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
