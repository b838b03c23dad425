"""
signatureSubscribe over a dedicated WebSocket connection per subscription.

Each subscription owns its socket and a reader task. The node sends at most
one signatureNotification and then drops the subscription on its side, so the
reader delivers that single notification to the callback and exits.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import websockets

logger = logging.getLogger(__name__)


class SubscriptionError(RuntimeError):
    """The node refused or never acknowledged signatureSubscribe."""


@dataclass(frozen=True)
class SignatureNotification:
    slot: Optional[int]
    err: Any = None

    @property
    def ok(self) -> bool:
        return self.err is None


@dataclass
class SubscriptionHandle:
    url: str
    signature: str
    subscription_id: int
    ws: Any = field(repr=False)
    reader: Optional[asyncio.Task] = field(default=None, repr=False)
    closed: bool = False


class SignatureSubscriber:
    def __init__(self, commitment: str = "confirmed", ack_timeout: float = 10.0):
        self.commitment = commitment
        self.ack_timeout = ack_timeout
        self._request_id = 0

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def subscribe(self, url: str, signature: str, callback: Callable[[SignatureNotification], Any]) -> SubscriptionHandle:
        ws = await websockets.connect(url, ping_interval=20, ping_timeout=10)
        try:
            request_id = self._next_id()
            await ws.send(json.dumps({
                "jsonrpc": "2.0",
                "id": request_id,
                "method": "signatureSubscribe",
                "params": [signature, {"commitment": self.commitment}],
            }))
            subscription_id = await asyncio.wait_for(self._await_ack(ws, request_id), timeout=self.ack_timeout)
        except BaseException:
            await ws.close()
            raise

        handle = SubscriptionHandle(url=url, signature=signature, subscription_id=subscription_id, ws=ws)
        handle.reader = asyncio.create_task(self._read(handle, callback))
        logger.debug("Subscribed to %s on %s (id=%s)", signature, url, subscription_id)
        return handle

    async def _await_ack(self, ws, request_id: int) -> int:
        while True:
            data = json.loads(await ws.recv())
            if data.get("id") != request_id:
                continue
            if "error" in data:
                message = (data["error"] or {}).get("message", "Unknown error")
                raise SubscriptionError(f"signatureSubscribe failed: {message}")
            return data["result"]

    async def _read(self, handle: SubscriptionHandle, callback: Callable) -> None:
        try:
            async for message in handle.ws:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.debug("Invalid JSON from %s: %s", handle.url, message[:100])
                    continue

                if data.get("method") != "signatureNotification":
                    continue
                params = data.get("params", {})
                if params.get("subscription") != handle.subscription_id:
                    continue

                result = params.get("result", {})
                value = result.get("value") or {}
                notification = SignatureNotification(
                    slot=result.get("context", {}).get("slot"),
                    err=value.get("err") if isinstance(value, dict) else None,
                )
                callback(notification)
                return
        except websockets.ConnectionClosed:
            if not handle.closed:
                logger.warning("Connection to %s closed before a notification arrived", handle.url)

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        if handle.closed:
            return
        handle.closed = True

        current = asyncio.current_task()
        if handle.reader is not None and handle.reader is not current and not handle.reader.done():
            handle.reader.cancel()

        try:
            await handle.ws.send(json.dumps({
                "jsonrpc": "2.0",
                "id": self._next_id(),
                "method": "signatureUnsubscribe",
                "params": [handle.subscription_id],
            }))
        except websockets.ConnectionClosed:
            pass
        except Exception as e:
            logger.warning("Error removing subscription %s on %s: %s", handle.subscription_id, handle.url, e)
        finally:
            await handle.ws.close()
