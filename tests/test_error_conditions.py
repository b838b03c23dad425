import pytest
import asyncio
import aiohttp
from unittest.mock import AsyncMock, patch
from aioresponses import aioresponses

from tx_racer.client import RpcError, SolanaRpcClient, SolanaTransport
from tx_racer.dispatcher import BroadcastDispatcher
from tx_racer.endpoints import EndpointConfig
from tx_racer.race import ConfirmationRace, Exhausted
from tx_racer.resolver import DetailResolver
from tx_racer.results import RPC_ERROR, RPC_SENT, WS_SUBSCRIPTION_ERROR, EndpointKind, EventKind, ResultAggregator
from tx_racer.websocket import SignatureSubscriber, SubscriptionError

SLOW = EndpointConfig("Slow", "http://slow-endpoint.com")
GOOD = EndpointConfig("Good", "http://test.com")


class TestErrorConditions:
    """Test various error conditions and edge cases."""

    pytestmark = pytest.mark.error

    @pytest.fixture
    def client(self):
        return SolanaRpcClient()

    @pytest.mark.asyncio
    async def test_network_timeout(self, client):
        """Test handling of network timeouts."""
        with aioresponses() as m:
            m.post(SLOW.url, exception=asyncio.TimeoutError("Request timeout"))

            with pytest.raises(asyncio.TimeoutError):
                await client.send_transaction(SLOW.url, b"test_data")

    @pytest.mark.asyncio
    async def test_connection_refused(self, client):
        """Test handling of connection refused errors."""
        with pytest.raises(aiohttp.ClientError):
            await client.send_transaction("http://localhost:9999", b"test_data")

    @pytest.mark.asyncio
    async def test_invalid_json_response(self, client):
        """Test handling of invalid JSON responses."""
        with aioresponses() as m:
            m.post(GOOD.url, body="invalid json", status=200)

            with pytest.raises((ValueError, aiohttp.ContentTypeError)):
                await client.send_transaction(GOOD.url, b"test_data")

    @pytest.mark.asyncio
    async def test_rpc_error_with_details(self, client):
        """Test handling of detailed RPC errors."""
        error_response = {
            "jsonrpc": "2.0",
            "id": 1,
            "error": {
                "code": -32002,
                "message": "Transaction simulation failed",
                "data": {
                    "err": "InsufficientFundsForRent",
                    "logs": ["Program log: Insufficient funds for rent"]
                }
            }
        }

        with aioresponses() as m:
            m.post(GOOD.url, payload=error_response, status=200)

            with pytest.raises(RpcError, match="Transaction simulation failed") as excinfo:
                await client.send_transaction(GOOD.url, b"test_data")

        assert excinfo.value.code == -32002
        assert excinfo.value.data["err"] == "InsufficientFundsForRent"

    @pytest.mark.asyncio
    async def test_non_string_signature_result(self, client):
        with aioresponses() as m:
            m.post(GOOD.url, payload={"jsonrpc": "2.0", "id": 1, "result": {"unexpected": True}})

            with pytest.raises(ValueError, match="Invalid sendTransaction result"):
                await client.send_transaction(GOOD.url, b"test_data")

    @pytest.mark.asyncio
    async def test_one_endpoint_timing_out_does_not_block_others(self):
        """A hanging RPC endpoint is recorded as an error while the others succeed."""
        aggregator_events = []
        aggregator = ResultAggregator(index=1, event_sink=aggregator_events.append)
        dispatcher = BroadcastDispatcher(SolanaTransport(SolanaRpcClient()))

        with aioresponses() as m:
            m.post(SLOW.url, exception=asyncio.TimeoutError())
            m.post(GOOD.url, payload={"jsonrpc": "2.0", "id": 1, "result": "good_sig"})

            await dispatcher.dispatch(b"raw", [SLOW, GOOD], aggregator)

        assert aggregator.result(EndpointKind.RPC, "Slow").status == RPC_ERROR
        assert aggregator.result(EndpointKind.RPC, "Slow").signature_or_error == "TimeoutError"
        assert aggregator.result(EndpointKind.RPC, "Good").status == RPC_SENT
        assert sorted(e.kind.value for e in aggregator_events) == [EventKind.RPC_SEND_ERROR.value, EventKind.RPC_SEND.value]

    @pytest.mark.asyncio
    async def test_resolver_survives_rpc_errors(self):
        """Lookup errors are retried and end in a fallback, never an exception."""
        resolver = DetailResolver(SolanaTransport(SolanaRpcClient()), max_retries=3, retry_delay=0)

        with aioresponses() as m:
            for _ in range(3):
                m.post(GOOD.url, status=503)

            result = await resolver.resolve("sig", GOOD, ws_slot=77)

        assert result.slot == 77
        assert result.block_time is None
        assert result.attempts == 3
        assert "after 3 attempts" in result.error

    @pytest.mark.asyncio
    async def test_websocket_connect_refused_exhausts_race(self):
        """Every subscription failing to connect ends the race without waiting for the timeout."""
        aggregator = ResultAggregator(index=1)
        transport = SolanaTransport(SolanaRpcClient(), SignatureSubscriber())
        race = ConfirmationRace(transport, subscription_timeout=60)
        endpoints = [EndpointConfig("C", "ws://localhost:1"), EndpointConfig("D", "ws://localhost:2")]

        with patch("tx_racer.websocket.websockets.connect", new=AsyncMock(side_effect=ConnectionRefusedError("refused"))):
            outcome = await asyncio.wait_for(race.race("sig", endpoints, aggregator), timeout=5)

        assert outcome == Exhausted("all subscriptions settled")
        for name in ("C", "D"):
            row = aggregator.result(EndpointKind.WS, name)
            assert row.status == WS_SUBSCRIPTION_ERROR
            assert row.error == "refused"

    @pytest.mark.asyncio
    async def test_subscription_ack_timeout(self):
        """A node that never acknowledges signatureSubscribe raises and the socket is closed."""
        ws = AsyncMock()

        async def never():
            await asyncio.sleep(10)

        ws.recv.side_effect = never

        with patch("tx_racer.websocket.websockets.connect", new=AsyncMock(return_value=ws)):
            with pytest.raises(asyncio.TimeoutError):
                await SignatureSubscriber(ack_timeout=0.05).subscribe("wss://node", "sig", lambda n: None)

        ws.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_large_transaction_data(self, client):
        """Test handling of very large transaction data."""
        large_data = b"x" * (1024 * 1024)  # 1MB of data

        with aioresponses() as m:
            m.post(GOOD.url, payload={"jsonrpc": "2.0", "id": 1, "result": "large_tx_sig"})

            result = await client.send_transaction(GOOD.url, large_data, encoding="base64")
            assert result == "large_tx_sig"

    def test_subscription_error_is_runtime_error(self):
        assert issubclass(SubscriptionError, RuntimeError)
