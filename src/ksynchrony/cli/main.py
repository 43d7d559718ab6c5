#!/usr/bin/env python3
"""
KSynchrony CLI

Provides command line access to the core:
- Estimate or watch a transaction's confirmation probability
- Issue payment nonces and encoded payment requests
- Query address balances
- Serve the HTTP API with the background reconciler running
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import replace

import click
from rich import box
from rich.console import Console
from rich.table import Table

from ksynchrony.client import KSynchrony
from ksynchrony.core.config import ConfigurationError, KSynchronyConfig
from ksynchrony.core.confirmation import ConfirmationResult
from ksynchrony.core.exceptions import KSynchronyError
from ksynchrony.core.logging_config import setup_logging
from ksynchrony.utils.formatting import format_duration, format_kas, format_probability

logger = logging.getLogger(__name__)
console = Console()


def _handle_cli_error(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler."""
    logger.error("CLI error: %s", exc, exc_info=True)
    console.print(f"[bold red]Error:[/] {exc}")
    sys.exit(exit_code)


def _confirmation_table(result: ConfirmationResult) -> Table:
    table = Table(title="Confirmation Estimate", box=box.ROUNDED)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Transaction", result.subject_id)
    table.add_row("Probability", format_probability(result.probability))
    table.add_row("Depth", str(result.depth))
    table.add_row("Confirming blocks", str(result.confirming_blocks))
    table.add_row("Time to confidence", format_duration(result.estimated_time_to_confidence))
    return table


@click.group()
@click.option("--node-url", envvar="KSYNC_NODE_URL", default=None, help="Node JSON-RPC endpoint")
@click.option("--network", type=click.Choice(["mainnet", "testnet"]), default=None, help="Network")
@click.option("--json-output", is_flag=True, help="Print raw JSON instead of tables")
@click.pass_context
def cli(ctx: click.Context, node_url: str | None, network: str | None, json_output: bool):
    """KSynchrony: confirmation estimates and payment nonces for a block-DAG."""
    try:
        config = KSynchronyConfig.from_env()
    except ConfigurationError as exc:
        _handle_cli_error(exc, exit_code=2)
    if network:
        config = replace(config, network=network, node_url=node_url)
    elif node_url:
        config.node_url = node_url
    setup_logging(name="ksynchrony", level=config.log_level, enable_console=False, network=config.network.value)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["json"] = json_output
    if "ksync" not in ctx.obj:
        ctx.obj["ksync"] = KSynchrony(config)
        ctx.call_on_close(ctx.obj["ksync"].shutdown)


@cli.command("estimate")
@click.argument("tx_id")
@click.pass_context
def estimate(ctx: click.Context, tx_id: str):
    """Estimate the inclusion probability of TX_ID once."""
    try:
        result = ctx.obj["ksync"].estimate_confirmation(tx_id)
    except KSynchronyError as exc:
        _handle_cli_error(exc)
    if ctx.obj["json"]:
        click.echo(json.dumps(result.to_dict()))
    else:
        console.print(_confirmation_table(result))


@cli.command("watch")
@click.argument("tx_id")
@click.option("--interval", type=float, default=None, help="Seconds between polls")
@click.option("--max-polls", type=int, default=0, help="Stop after N polls (0 = until confident)")
@click.pass_context
def watch(ctx: click.Context, tx_id: str, interval: float | None, max_polls: int):
    """Poll TX_ID until it reaches high confidence."""
    try:
        stream = ctx.obj["ksync"].stream_confirmation(tx_id, poll_interval=interval)
    except KSynchronyError as exc:
        _handle_cli_error(exc)
    for polls, result in enumerate(stream, start=1):
        if ctx.obj["json"]:
            click.echo(json.dumps(result.to_dict()))
        else:
            console.print(
                f"[cyan]{polls:>4}[/] probability={format_probability(result.probability)} "
                f"depth={result.depth} eta={format_duration(result.estimated_time_to_confidence)}"
            )
        if max_polls and polls >= max_polls:
            stream.close()
            break


@cli.command("nonce")
@click.argument("address")
@click.pass_context
def nonce(ctx: click.Context, address: str):
    """Issue a payment nonce for ADDRESS."""
    try:
        token = ctx.obj["ksync"].issue_payment_nonce(address)
    except KSynchronyError as exc:
        _handle_cli_error(exc)
    if ctx.obj["json"]:
        click.echo(json.dumps(token.to_dict()))
    else:
        console.print(f"[bold green]Nonce:[/] {token.value}  (expires {format_duration(token.expires_at - token.created_at)})")


@cli.command("payment-request")
@click.argument("address")
@click.argument("amount", type=int)
@click.option("--memo", default="", help="Stored in the request metadata")
@click.pass_context
def payment_request(ctx: click.Context, address: str, amount: int, memo: str):
    """Create an encoded payment request for AMOUNT sompi to ADDRESS."""
    metadata = {"memo": memo} if memo else None
    try:
        payment = ctx.obj["ksync"].payments.create_payment_request(address, amount, metadata=metadata)
    except KSynchronyError as exc:
        _handle_cli_error(exc)
    if ctx.obj["json"]:
        click.echo(json.dumps(payment.to_dict()))
        return
    table = Table(title="Payment Request", box=box.ROUNDED)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("URI", payment.uri)
    table.add_row("Amount", f"{format_kas(amount)} KAS")
    table.add_row("Nonce", payment.nonce)
    table.add_row("Encoded", payment.encoded)
    console.print(table)


@cli.command("balance")
@click.argument("address")
@click.pass_context
def balance(ctx: click.Context, address: str):
    """Show the node-reported balance of ADDRESS."""
    try:
        stats = ctx.obj["ksync"].payments.get_merchant_stats(address)
    except KSynchronyError as exc:
        _handle_cli_error(exc)
    if ctx.obj["json"]:
        click.echo(json.dumps(stats))
    else:
        console.print(f"[bold]{address}[/]: {format_kas(stats['balance'])} KAS")


@cli.command("serve")
@click.option("--host", default=None, help="Bind host")
@click.option("--port", type=int, default=None, help="Bind port")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None):
    """Run the HTTP API with the reconciler in the background."""
    from ksynchrony.api.app import create_app

    config: KSynchronyConfig = ctx.obj["config"]
    ksync: KSynchrony = ctx.obj["ksync"]
    setup_logging(name="ksynchrony", level=config.log_level, network=config.network.value)
    app = create_app(ksync)
    ksync.start_reconciler()
    try:
        app.run(host=host or config.api_host, port=port or config.api_port)
    finally:
        ksync.stop_reconciler()


def main() -> int:
    cli(obj={})
    return 0


if __name__ == "__main__":
    sys.exit(main())
