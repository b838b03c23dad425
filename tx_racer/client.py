import base64
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import aiohttp
import base58

from .endpoints import EndpointConfig
from .websocket import SignatureSubscriber, SubscriptionHandle

logger = logging.getLogger(__name__)


class RpcError(ValueError):
    """A node answered with a JSON-RPC error object."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


@dataclass(frozen=True)
class TransactionDetail:
    slot: int
    block_time: Optional[int] = None


class SolanaRpcClient:
    def __init__(self, timeout: float = 30):
        self.timeout = timeout
        self._request_id = 0

    async def _call(self, url: str, method: str, params: list) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=payload, timeout=aiohttp.ClientTimeout(total=self.timeout)) as response:
                response.raise_for_status()
                result = await response.json()

        if "error" in result:
            error = result["error"] or {}
            raise RpcError(
                f"{method} failed: {error.get('message', 'Unknown error')}",
                code=error.get("code"),
                data=error.get("data"),
            )

        if "result" not in result:
            raise ValueError("Invalid response format: missing 'result' field")

        return result["result"]

    async def send_transaction(
        self,
        url: str,
        transaction: Union[bytes, str],
        encoding: str = "base58",
        skip_preflight: bool = True,
        preflight_commitment: str = "confirmed",
        max_retries: Optional[int] = 0,
    ) -> str:
        """
        Submit a signed transaction with a single sendTransaction call.

        Args:
            url: RPC endpoint URL
            transaction: The signed transaction as bytes or an already encoded string
            encoding: Encoding format for the transaction ("base58" or "base64")
            skip_preflight: Whether to skip preflight checks
            preflight_commitment: Commitment level for preflight checks
            max_retries: Node-side rebroadcast limit; None leaves the node default

        Returns:
            The signature reported by the node

        Raises:
            ValueError: If transaction format is invalid
            RpcError: If the node rejects the transaction
            aiohttp.ClientError: If network request fails
        """
        if isinstance(transaction, str):
            tx_encoded = transaction
        elif isinstance(transaction, bytes):
            if encoding == "base58":
                tx_encoded = base58.b58encode(transaction).decode("ascii")
            elif encoding == "base64":
                tx_encoded = base64.b64encode(transaction).decode("ascii")
            else:
                raise ValueError(f"Unsupported encoding: {encoding}")
        else:
            raise ValueError("Transaction must be bytes or string")

        options = {"encoding": encoding}
        if skip_preflight:
            options["skipPreflight"] = skip_preflight
        if preflight_commitment:
            options["preflightCommitment"] = preflight_commitment
        if max_retries is not None:
            options["maxRetries"] = max_retries

        logger.debug("Sending transaction (%d chars) to %s", len(tx_encoded), url)
        signature = await self._call(url, "sendTransaction", [tx_encoded, options])
        if not isinstance(signature, str):
            raise ValueError(f"Invalid sendTransaction result: {signature!r}")
        return signature

    async def get_transaction(self, url: str, signature: str, commitment: str = "confirmed") -> Optional[TransactionDetail]:
        """Look up slot and block time for a signature. None while the node has not seen it."""
        result = await self._call(
            url,
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if not result:
            return None
        return TransactionDetail(slot=result["slot"], block_time=result.get("blockTime"))


class SolanaTransport:
    """The submit / lookup / subscribe / unsubscribe surface used by the race engine."""

    def __init__(
        self,
        rpc: Optional[SolanaRpcClient] = None,
        subscriber: Optional[SignatureSubscriber] = None,
        encoding: str = "base58",
    ):
        self.rpc = rpc or SolanaRpcClient()
        self.subscriber = subscriber or SignatureSubscriber()
        self.encoding = encoding

    async def submit(self, endpoint: EndpointConfig, raw: bytes) -> str:
        return await self.rpc.send_transaction(endpoint.url, raw, encoding=self.encoding)

    async def lookup(self, endpoint: EndpointConfig, signature: str) -> Optional[TransactionDetail]:
        return await self.rpc.get_transaction(endpoint.url, signature)

    async def subscribe(self, endpoint: EndpointConfig, signature: str, callback: Callable) -> SubscriptionHandle:
        return await self.subscriber.subscribe(endpoint.url, signature, callback)

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        await self.subscriber.unsubscribe(handle)
