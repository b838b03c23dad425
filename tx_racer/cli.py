import asyncio
import logging
import os

import typer

from .client import SolanaRpcClient, SolanaTransport
from .config import ConfigError, load_config
from .dispatcher import BroadcastDispatcher
from .race import ConfirmationRace
from .report import format_event, render_batch
from .resolver import DetailResolver
from .sequencer import TransactionSequencer
from .transaction import TransferBuilder

app = typer.Typer(help="Broadcast to redundant RPC endpoints and race WebSocket confirmations")

ON_ERROR_CHOICES = ("prompt", "continue", "abort")

def _setup_logging():
    level = os.environ.get("TX_RACER_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

def _load(config_path):
    try:
        return load_config(config_path)
    except ConfigError as e:
        typer.echo(f"Config Error: {e}", err=True)
        raise typer.Exit(code=2)

def send(
    config: str = typer.Option(None, "--config", "-c", help="Path to JSON config file"),
    count: int = typer.Option(None, "--count", "-n", min=1, help="Number of transactions to send"),
    delay: float = typer.Option(None, help="Seconds to wait between transactions"),
    timeout: float = typer.Option(None, help="Overall bound on each confirmation race, in seconds"),
    on_error: str = typer.Option("prompt", help="prompt|continue|abort when a transaction cannot be created"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Do not stream events"),
):
    """Send transactions and report which endpoint confirmed each one first."""
    _setup_logging()
    if on_error not in ON_ERROR_CHOICES:
        raise typer.BadParameter(f"must be one of {', '.join(ON_ERROR_CHOICES)}", param_hint="--on-error")

    cfg = _load(config)
    try:
        keypair = cfg.keypair()
    except ConfigError as e:
        typer.echo(f"Config Error: {e}", err=True)
        raise typer.Exit(code=2)

    typer.echo(f"Loaded configuration from: {cfg.loaded_path}")
    typer.echo(f"Wallet: {keypair.pubkey()}  network={cfg.network}")

    async def decide(index, error):
        if on_error == "continue":
            return True
        if on_error == "abort":
            return False
        # prompt off the loop so in-flight submissions keep reporting
        return await asyncio.to_thread(
            typer.confirm, f"Transaction {index} failed ({error}). Continue with the next one?", default=True
        )

    async def run():
        transport = SolanaTransport(SolanaRpcClient(), encoding=cfg.encoding)
        builder = TransferBuilder(cfg.rpc_endpoints[0].url, keypair, lamports=cfg.lamports)
        dispatcher = BroadcastDispatcher(transport)
        sequencer = TransactionSequencer(
            build=builder.build,
            dispatcher=dispatcher,
            race=ConfirmationRace(transport, subscription_timeout=cfg.subscription_timeout),
            resolver=DetailResolver(transport, max_retries=cfg.detail_retries, retry_delay=cfg.detail_retry_delay),
            rpc_endpoints=cfg.rpc_endpoints,
            ws_endpoints=cfg.ws_endpoints,
            delay=cfg.delay_seconds if delay is None else delay,
            race_timeout=timeout,
            event_sink=None if quiet else (lambda event: print(format_event(event))),
        )
        report = await sequencer.run(count or cfg.transaction_count, on_error=decide)
        await dispatcher.drain()
        return sequencer.refresh(report)

    report = asyncio.run(run())

    print()
    print(render_batch(report.attempts, cfg.network))
    print()
    print(f"{len(report.confirmed)}/{report.requested} confirmed, {len(report.failed)} failed"
          + (" (aborted)" if report.aborted else ""))
    if report.aborted:
        raise typer.Exit(code=1)

def show_config(
    config: str = typer.Option(None, "--config", "-c", help="Path to JSON config file"),
):
    """Show the loaded configuration (without key material)."""
    cfg = _load(config)
    print(f"Loaded from: {cfg.loaded_path}")
    print(f"Network:     {cfg.network}")
    print(f"Count: {cfg.transaction_count}  delay={cfg.delay_seconds:g}s  "
          f"subscription timeout={cfg.subscription_timeout:g}s  encoding={cfg.encoding}")
    print("RPC endpoints:")
    for endpoint in cfg.rpc_endpoints:
        print(f"  {endpoint.name:32}  {endpoint.url}")
    print("WebSocket endpoints:")
    for endpoint in cfg.ws_endpoints:
        print(f"  {endpoint.name:32}  {endpoint.url}")

app.command()(send)
app.command()(show_config)

if __name__ == "__main__":
    app()
