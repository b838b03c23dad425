import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .endpoints import EndpointConfig
from .results import EventKind, ResultAggregator

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 10
DEFAULT_RETRY_DELAY = 1.0


@dataclass(frozen=True)
class DetailResult:
    slot: Optional[int]
    block_time: Optional[int]
    error: Optional[str] = None
    attempts: int = 0


class DetailResolver:
    """Fetches authoritative slot and block time for a confirmed signature."""

    def __init__(self, transport, max_retries: int = DEFAULT_MAX_RETRIES, retry_delay: float = DEFAULT_RETRY_DELAY):
        self.transport = transport
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def resolve(
        self,
        signature: str,
        endpoint: EndpointConfig,
        ws_slot: Optional[int],
        aggregator: Optional[ResultAggregator] = None,
    ) -> DetailResult:
        """
        Poll getTransaction until it answers or retries run out.

        A failed lookup never invalidates the confirmation: on exhaustion the
        slot reported by the winning notification is returned with
        `block_time=None` and an error describing the enrichment failure.
        """
        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                detail = await self.transport.lookup(endpoint, signature)
            except Exception as e:
                last_error = str(e) or type(e).__name__
                logger.debug("Lookup %d/%d for %s on %s failed: %s", attempt, self.max_retries, signature, endpoint.name, e)
            else:
                if detail is not None:
                    if aggregator is not None:
                        aggregator.record(
                            EventKind.DETAIL_RESOLVED,
                            f"Transaction details from {endpoint.name}: slot {detail.slot}, block time {detail.block_time}",
                            endpoint=endpoint.name, url=endpoint.url,
                        )
                    return DetailResult(slot=detail.slot, block_time=detail.block_time, attempts=attempt)
                last_error = "transaction not found"

            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay)

        error = f"Could not fetch transaction details after {self.max_retries} attempts: {last_error}"
        if aggregator is not None:
            aggregator.record(
                EventKind.DETAIL_FALLBACK,
                f"{error}. Using WebSocket slot {ws_slot}",
                endpoint=endpoint.name, url=endpoint.url,
            )
        return DetailResult(slot=ws_slot, block_time=None, error=error, attempts=self.max_retries)
