import json
import logging
import time
from dataclasses import dataclass
from typing import Union

import base58
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solders.keypair import Keypair
from solders.message import Message
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from .config import ConfigError

logger = logging.getLogger(__name__)


class TransactionBuildError(RuntimeError):
    """Fetching a blockhash, building or signing the transaction failed."""


@dataclass(frozen=True)
class SignedTransaction:
    raw: bytes
    signature: str
    created_at: float


def parse_private_key(private_key: Union[str, list[int], bytes]) -> Keypair:
    """Accept a base58 string, a JSON byte array (string or list) or raw bytes."""
    if isinstance(private_key, str):
        text = private_key.strip()
        if not text:
            raise ConfigError("Private key is required")
        if text.startswith("["):
            try:
                private_key = json.loads(text)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Private key is not a valid JSON byte array: {e}") from e
        else:
            try:
                private_key = base58.b58decode(text)
            except ValueError as e:
                raise ConfigError(f"Invalid private key string format: {e}") from e

    if isinstance(private_key, list):
        if not all(isinstance(b, int) and 0 <= b <= 255 for b in private_key):
            raise ConfigError("Private key array must contain byte values")
        private_key = bytes(private_key)

    if not isinstance(private_key, bytes):
        raise ConfigError("Invalid private key type. Expected string or array of numbers.")

    # 32 bytes is a seed, 64 bytes is secret + public key
    if len(private_key) == 32:
        return Keypair.from_seed(private_key)
    if len(private_key) == 64:
        try:
            return Keypair.from_bytes(private_key)
        except ValueError as e:
            raise ConfigError(f"Invalid private key: {e}") from e
    raise ConfigError(f"Invalid key length: {len(private_key)} bytes (expected 32 or 64)")


class TransferBuilder:
    """Builds and signs a small self-transfer, one fresh blockhash per call."""

    def __init__(self, rpc_url: str, keypair: Keypair, lamports: int = 100):
        self.rpc_url = rpc_url
        self.keypair = keypair
        self.lamports = lamports

    async def build(self) -> SignedTransaction:
        created_at = time.time()
        client = AsyncClient(self.rpc_url)
        try:
            blockhash_resp = await client.get_latest_blockhash(Confirmed)
            blockhash = blockhash_resp.value.blockhash

            transfer_ix = transfer(
                TransferParams(
                    from_pubkey=self.keypair.pubkey(),
                    to_pubkey=self.keypair.pubkey(),
                    lamports=self.lamports,
                )
            )
            message = Message([transfer_ix], self.keypair.pubkey())
            tx = Transaction([self.keypair], message, blockhash)
        except Exception as e:
            raise TransactionBuildError(f"Failed to create transaction: {e}") from e
        finally:
            await client.close()

        signature = str(tx.signatures[0])
        logger.debug("Built transaction %s (%d bytes)", signature, len(bytes(tx)))
        return SignedTransaction(raw=bytes(tx), signature=signature, created_at=created_at)
