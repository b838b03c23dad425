#!/usr/bin/env python3
"""
Send one self-transfer through every endpoint of a local test validator and a
public cluster, and print which WebSocket confirmed it first.
"""

import anyio
import getpass

from tx_racer.client import SolanaTransport
from tx_racer.dispatcher import BroadcastDispatcher
from tx_racer.endpoints import PUBLIC_RPC, PUBLIC_WS, EndpointConfig
from tx_racer.race import ConfirmationRace
from tx_racer.resolver import DetailResolver
from tx_racer.report import format_event, render_batch
from tx_racer.sequencer import TransactionSequencer
from tx_racer.transaction import TransferBuilder, parse_private_key

RPC_ENDPOINTS = [
    PUBLIC_RPC["devnet"],
    EndpointConfig(name="Local Test Validator", url="http://127.0.0.1:8899"),
]
WS_ENDPOINTS = [
    PUBLIC_WS["devnet"],
    EndpointConfig(name="Local Test Validator", url="ws://127.0.0.1:8900/"),
]

async def main():
    private_key = getpass.getpass("Enter your wallet private key (base58 or JSON array): ").strip()
    keypair = parse_private_key(private_key)
    print(f"Wallet: {keypair.pubkey()}")

    transport = SolanaTransport()
    dispatcher = BroadcastDispatcher(transport)
    sequencer = TransactionSequencer(
        build=TransferBuilder(RPC_ENDPOINTS[0].url, keypair).build,
        dispatcher=dispatcher,
        race=ConfirmationRace(transport, subscription_timeout=60),
        resolver=DetailResolver(transport),
        rpc_endpoints=RPC_ENDPOINTS,
        ws_endpoints=WS_ENDPOINTS,
        event_sink=lambda event: print(format_event(event)),
    )

    report = await sequencer.run(1)
    await dispatcher.drain()
    report = sequencer.refresh(report)
    print()
    print(render_batch(report.attempts, "devnet"))

if __name__ == "__main__":
    anyio.run(main)
