import pytest
import base58
import base64
import aiohttp
from unittest.mock import AsyncMock
from aioresponses import aioresponses, CallbackResult

from tx_racer.client import RpcError, SolanaRpcClient, SolanaTransport, TransactionDetail
from tx_racer.endpoints import EndpointConfig

URL = "https://test.endpoint.com"


@pytest.fixture
def client():
    return SolanaRpcClient()

@pytest.fixture
def mock_signed_tx():
    # Create a mock signed transaction (just some bytes)
    return b"mock_signed_transaction_bytes_12345"

@pytest.fixture
def valid_jsonrpc_response():
    return {"jsonrpc": "2.0", "id": 1, "result": "mock_signature_123"}

@pytest.fixture
def error_jsonrpc_response():
    return {
        "jsonrpc": "2.0",
        "id": 1,
        "error": {"code": -32000, "message": "Transaction failed"}
    }


def capture(requests, response):
    def callback(url, **kwargs):
        requests.append(kwargs["json"])
        return CallbackResult(payload=response)
    return callback


class TestSolanaRpcClient:

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_send_transaction_success(self, client, mock_signed_tx, valid_jsonrpc_response):
        """Test successful raw transaction sending."""
        requests = []
        with aioresponses() as m:
            m.post(URL, callback=capture(requests, valid_jsonrpc_response))

            signature = await client.send_transaction(URL, mock_signed_tx)

        assert signature == "mock_signature_123"
        payload = requests[0]
        assert payload["method"] == "sendTransaction"
        assert payload["params"][0] == base58.b58encode(mock_signed_tx).decode("ascii")
        assert payload["params"][1] == {
            "encoding": "base58",
            "skipPreflight": True,
            "preflightCommitment": "confirmed",
            "maxRetries": 0,
        }

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_send_transaction_with_base64_encoding(self, client, mock_signed_tx, valid_jsonrpc_response):
        """Test transaction sending with base64 encoding."""
        requests = []
        with aioresponses() as m:
            m.post(URL, callback=capture(requests, valid_jsonrpc_response))

            await client.send_transaction(URL, mock_signed_tx, encoding="base64")

        assert requests[0]["params"][0] == base64.b64encode(mock_signed_tx).decode("ascii")
        assert requests[0]["params"][1]["encoding"] == "base64"

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_send_transaction_with_pre_encoded_string(self, client, valid_jsonrpc_response):
        """Test sending pre-encoded transaction string."""
        requests = []
        with aioresponses() as m:
            m.post(URL, callback=capture(requests, valid_jsonrpc_response))

            await client.send_transaction(URL, "pre_encoded_transaction_string")

        assert requests[0]["params"][0] == "pre_encoded_transaction_string"

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_send_transaction_with_options(self, client, mock_signed_tx, valid_jsonrpc_response):
        """Test transaction sending with custom options."""
        requests = []
        with aioresponses() as m:
            m.post(URL, callback=capture(requests, valid_jsonrpc_response))

            await client.send_transaction(
                URL,
                mock_signed_tx,
                skip_preflight=False,
                preflight_commitment="processed",
                max_retries=None,
            )

        assert requests[0]["params"][1] == {"encoding": "base58", "preflightCommitment": "processed"}

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_send_transaction_invalid_encoding(self, client, mock_signed_tx):
        """Test that invalid encoding raises ValueError."""
        with pytest.raises(ValueError, match="Unsupported encoding"):
            await client.send_transaction(URL, mock_signed_tx, encoding="invalid")

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_send_transaction_invalid_type(self, client):
        """Test that invalid transaction type raises ValueError."""
        with pytest.raises(ValueError, match="Transaction must be bytes or string"):
            await client.send_transaction(URL, 123)  # Invalid type

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_send_transaction_rpc_error(self, client, mock_signed_tx, error_jsonrpc_response):
        """Test handling of RPC error responses."""
        with aioresponses() as m:
            m.post(URL, payload=error_jsonrpc_response, status=200)

            with pytest.raises(RpcError, match="sendTransaction failed: Transaction failed") as excinfo:
                await client.send_transaction(URL, mock_signed_tx)

        assert excinfo.value.code == -32000

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_send_transaction_invalid_response_format(self, client, mock_signed_tx):
        """Test handling of invalid response format."""
        with aioresponses() as m:
            m.post(URL, payload={"jsonrpc": "2.0", "id": 1}, status=200)  # Missing result field

            with pytest.raises(ValueError, match="Invalid response format"):
                await client.send_transaction(URL, mock_signed_tx)

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_send_transaction_http_error(self, client, mock_signed_tx):
        """Test handling of HTTP error status codes."""
        with aioresponses() as m:
            m.post(URL, status=500, body="Internal Server Error")

            with pytest.raises(aiohttp.ClientResponseError):
                await client.send_transaction(URL, mock_signed_tx)

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_get_transaction_found(self, client):
        """Test slot and block time lookup."""
        requests = []
        response = {"jsonrpc": "2.0", "id": 1, "result": {"slot": 4242, "blockTime": 1_700_000_000, "meta": {}}}
        with aioresponses() as m:
            m.post(URL, callback=capture(requests, response))

            detail = await client.get_transaction(URL, "5igSig")

        assert detail == TransactionDetail(slot=4242, block_time=1_700_000_000)
        assert requests[0]["method"] == "getTransaction"
        assert requests[0]["params"] == [
            "5igSig",
            {"encoding": "json", "commitment": "confirmed", "maxSupportedTransactionVersion": 0},
        ]

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_get_transaction_not_found(self, client):
        """A null result means the node has not seen the signature yet."""
        with aioresponses() as m:
            m.post(URL, payload={"jsonrpc": "2.0", "id": 1, "result": None})

            assert await client.get_transaction(URL, "5igSig") is None


class TestSolanaTransport:

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_submit_uses_endpoint_url_and_encoding(self):
        rpc = SolanaRpcClient()
        rpc.send_transaction = AsyncMock(return_value="sig")
        transport = SolanaTransport(rpc=rpc, subscriber=AsyncMock(), encoding="base64")

        result = await transport.submit(EndpointConfig("A", URL), b"raw")

        assert result == "sig"
        rpc.send_transaction.assert_awaited_once_with(URL, b"raw", encoding="base64")

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_subscribe_and_unsubscribe_delegate(self):
        subscriber = AsyncMock()
        subscriber.subscribe.return_value = "handle"
        transport = SolanaTransport(rpc=SolanaRpcClient(), subscriber=subscriber)
        callback = lambda notification: None

        handle = await transport.subscribe(EndpointConfig("C", "wss://c"), "sig", callback)
        await transport.unsubscribe(handle)

        subscriber.subscribe.assert_awaited_once_with("wss://c", "sig", callback)
        subscriber.unsubscribe.assert_awaited_once_with("handle")
