"""
CLI entry point for the CUPID client.
"""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
import typer
from dotenv import load_dotenv

from .config import Settings, get_settings
from .errors import CupidError
from .evm import EvmWallet
from .ledger import RequestLedger, SqlRequestStore
from .session import ClientSession

T = TypeVar("T")

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

app = typer.Typer(
    name="cupid",
    help="CUPID ID resolution and payments",
    add_completion=False,
)

ConfigOption = typer.Option(None, "--config", "-c", help="Path to .env configuration file")


def _build_session(config_path: Optional[Path] = None) -> ClientSession:
    """Create a session against the configured wallet and request store."""
    settings = Settings(_env_file=config_path) if config_path else get_settings()
    wallet = EvmWallet(settings)
    store = SqlRequestStore(settings.database_url, settings.storage_key)
    return ClientSession(settings, wallet, RequestLedger(store))


def _run(session: ClientSession, action: Callable[[], Awaitable[T]]) -> T:
    """Connect, run action, and turn CupidErrors into a clean exit."""

    async def _go() -> T:
        await session.connect()
        return await action()

    try:
        return asyncio.run(_go())
    except CupidError as e:
        typer.echo(f"Error: {e.message}", err=True)
        if e.detail and e.detail != e.message:
            typer.echo(f"  Detail: {e.detail}", err=True)
        raise typer.Exit(1)


def _format_ms(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")


@app.command()
def send(
    destination: str = typer.Argument(..., help="Recipient CUPID ID, e.g. @bob@cupid"),
    amount: str = typer.Argument(..., help="Amount in native units (POL)"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Send a payment to a CUPID ID.
    """
    session = _build_session(config_path)
    session.set_destination(destination)
    session.set_amount(amount)

    receipt = _run(session, session.send_payment)
    typer.echo(f"Payment sent! Transaction hash: {receipt.tx_hash}")


@app.command("pay-request")
def pay_request(
    identifier: str = typer.Argument(..., help="Your CUPID ID (the payer)"),
    timestamp: int = typer.Argument(..., help="Timestamp of the request (see `cupid requests`)"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Pay a pending request addressed to your CUPID ID.
    """
    session = _build_session(config_path)
    matches = [r for r in session.pending_requests(identifier) if r.timestamp == timestamp]
    if not matches:
        typer.echo(f"No pending request for {identifier} at {timestamp}", err=True)
        raise typer.Exit(1)

    session.select_request(matches[0])
    typer.echo(f"Paying request from {matches[0].to_id}: {matches[0].amount} {session.settings.currency_symbol}")
    receipt = _run(session, session.send_payment)
    typer.echo(f"Payment sent! Transaction hash: {receipt.tx_hash}")
    if receipt.request_completed is False:
        typer.echo(f"Warning: {session.state.error}", err=True)


@app.command()
def request(
    from_id: str = typer.Argument(..., help="CUPID ID being asked to pay"),
    amount: str = typer.Argument(..., help="Amount in native units (POL)"),
    to_id: str = typer.Option(..., "--to", help="Your CUPID ID that receives the payment"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Create a payment request.
    """
    session = _build_session(config_path)

    async def _create() -> Any:
        await session.refresh_index()
        return session.create_request(from_id=from_id, to_id=to_id, amount=amount)

    created = _run(session, _create)
    typer.echo(f"Payment request created at {created.timestamp}")


@app.command()
def requests(
    identifier: str = typer.Argument(..., help="CUPID ID whose pending requests to list"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    List pending payment requests addressed to a CUPID ID.
    """
    session = _build_session(config_path)
    pending = session.pending_requests(identifier)

    if not pending:
        typer.echo("No pending payment requests.")
        return

    typer.echo(f"Pending requests for {identifier}:\n")
    for req in pending:
        typer.echo(f"  {req.to_id} requests {req.amount} {session.settings.currency_symbol}")
        typer.echo(f"  Created: {_format_ms(req.timestamp)} (timestamp {req.timestamp})")
        typer.echo("")


@app.command()
def register(
    identifier: str = typer.Argument(..., help="New CUPID ID, e.g. @alice@cupid"),
    ethereum: str = typer.Argument(..., help="Ethereum address"),
    polygon: str = typer.Argument(..., help="Polygon address"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Register a new CUPID ID.
    """
    session = _build_session(config_path)
    result = _run(session, lambda: session.register(identifier, ethereum, polygon))
    typer.echo(f"CUPID ID registered successfully! Transaction hash: {result.tx_hash}")


@app.command()
def update(
    identifier: str = typer.Argument(..., help="One of your CUPID IDs"),
    ethereum: str = typer.Argument(..., help="New Ethereum address"),
    polygon: str = typer.Argument(..., help="New Polygon address"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Update the addresses of a CUPID ID you own.
    """
    session = _build_session(config_path)

    async def _update() -> Any:
        await session.refresh_index()
        return await session.update_addresses(identifier, ethereum, polygon)

    result = _run(session, _update)
    typer.echo(f"Addresses updated successfully! Transaction hash: {result.tx_hash}")


@app.command()
def ids(config_path: Optional[Path] = ConfigOption) -> None:
    """
    List CUPID IDs registered within the lookback window.
    """
    session = _build_session(config_path)
    index = _run(session, session.refresh_index)

    if session.state.index_status == "failed":
        typer.echo("Failed to load registered IDs", err=True)
        raise typer.Exit(1)
    if not len(index):
        typer.echo("No registered IDs found")
        return

    for reg in index.registrations():
        typer.echo(f"  {reg.id}")
        typer.echo(f"    ETH: {reg.primary_address}")
        typer.echo(f"    Polygon: {reg.secondary_address}")
        typer.echo(f"    Block: {reg.block_number}")


@app.command()
def mine(config_path: Optional[Path] = ConfigOption) -> None:
    """
    List CUPID IDs registered to your account.
    """
    session = _build_session(config_path)
    _run(session, session.refresh_index)

    if session.state.index_status == "failed":
        typer.echo("Failed to load your CUPID IDs", err=True)
        raise typer.Exit(1)

    owned = session.my_ids()
    if not owned:
        typer.echo("You don't own any CUPID IDs yet.")
        return
    for identifier in owned:
        typer.echo(f"  {identifier}")


@app.command()
def resolve(
    identifier: str = typer.Argument(..., help="CUPID ID to look up"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Look up a CUPID ID in the recent registration index.
    """
    session = _build_session(config_path)
    index = _run(session, session.refresh_index)

    reg = index.resolve(identifier)
    if reg is None:
        typer.echo(f"{identifier} is not registered", err=True)
        raise typer.Exit(1)
    typer.echo(f"{reg.id}")
    typer.echo(f"  ETH: {reg.primary_address}")
    typer.echo(f"  Polygon: {reg.secondary_address}")
    typer.echo(f"  Block: {reg.block_number}")


@app.command()
def version() -> None:
    """Show the client version."""
    from cupid_client import __version__
    typer.echo(f"cupid-client v{__version__}")


def main() -> None:
    """Main entry point."""
    load_dotenv()
    app()


if __name__ == "__main__":
    main()
