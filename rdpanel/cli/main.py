"""rdpanel CLI - manage hosted servers from the terminal.

Usage:
    rdpanel servers [--sort name|distro|expiry_date|status] [--desc]
    rdpanel power SERVER_ID start|stop|reset
    rdpanel balance
    rdpanel catalog
    rdpanel order --distro ID --region ID --plan ID
    rdpanel watch [--interval SECONDS]
    rdpanel genkey

The API key is read from --api-key or the RDPANEL_API_KEY environment variable.
Exit codes: 0=success, 1=error, 2=rate_limit
"""

# Load .env file before any other imports
from dotenv import load_dotenv

load_dotenv()

import asyncio
import logging
from typing import Annotated, Any, Awaitable, Callable, Iterable, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from rdpanel.common.client import client_from_settings
from rdpanel.common.crypto import generate_encryption_key
from rdpanel.common.servers import is_expiring_within, sort_servers
from rdpanel.config import get_settings
from rdpanel.core.errors import ApiError, ErrorKind
from rdpanel.core.types import Account, Server
from rdpanel.observability import reset_logging, setup_logging
from rdpanel.stores.servers import ServersSnapshot, ServersStore

T = TypeVar("T")

# Create CLI app
app = typer.Typer(
    name="rdpanel",
    help="Hosted server management CLI",
    add_completion=False,
)

console = Console()

ApiKeyOption = Annotated[
    str,
    typer.Option("--api-key", envvar="RDPANEL_API_KEY", help="Provider API key"),
]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Verbose output")]


def configure_logging(verbose: bool = False) -> None:
    """Route library logging through rich."""
    reset_logging()
    setup_logging(
        level=logging.DEBUG if verbose else logging.WARNING,
        handler=RichHandler(console=console, show_path=False),
    )


def _run(factory: Callable[[], Awaitable[T]]) -> T:
    """Run a coroutine; map failures to exit codes."""
    try:
        return asyncio.run(factory())
    except ApiError as e:
        console.print(f"[red]{e.message}[/red] [dim]({e.code}, status {e.status})[/dim]")
        if e.kind == ErrorKind.RATE_LIMITED:
            raise typer.Exit(code=2)
        if e.kind == ErrorKind.UNAUTHORIZED:
            console.print("[yellow]Check RDPANEL_API_KEY or pass --api-key.[/yellow]")
        raise typer.Exit(code=1)


def _servers_table(servers: Iterable[Server], title: str = "Servers") -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Distro")
    table.add_column("IP")
    table.add_column("Status")
    table.add_column("Expires")

    for server in servers:
        status_style = "green" if server.is_running else "yellow"
        expiry = server.expiry_date or "-"
        if is_expiring_within(server):
            expiry = f"[red]{expiry}[/red]"
        table.add_row(
            server.id,
            server.display_name,
            server.distro,
            server.ip_address,
            f"[{status_style}]{server.status}[/{status_style}]",
            expiry,
        )
    return table


@app.command()
def servers(
    api_key: ApiKeyOption,
    sort: Annotated[
        str, typer.Option("--sort", help="Sort by name, distro, expiry_date or status")
    ] = "name",
    desc: Annotated[bool, typer.Option("--desc", help="Sort descending")] = False,
    verbose: VerboseOption = False,
) -> None:
    """List servers of the account."""
    configure_logging(verbose)

    async def fetch() -> list[Server]:
        async with client_from_settings(api_key) as client:
            return await client.list_servers()

    result = _run(fetch)
    ordered = sort_servers(result, sort, "desc" if desc else "asc")  # type: ignore[arg-type]
    console.print(_servers_table(ordered))


@app.command()
def power(
    server_id: Annotated[str, typer.Argument(help="Server ID")],
    action: Annotated[str, typer.Argument(help="start, stop or reset")],
    api_key: ApiKeyOption,
    verbose: VerboseOption = False,
) -> None:
    """Start, stop or reset a server."""
    configure_logging(verbose)

    async def send() -> Any:
        async with client_from_settings(api_key) as client:
            return await client.power_action(server_id, action)

    response = _run(send)
    if response.status:
        console.print(f"[green]{action} sent to {server_id}[/green]")
    else:
        console.print(f"[yellow]Provider did not confirm {action} for {server_id}[/yellow]")
        raise typer.Exit(code=1)


@app.command()
def balance(api_key: ApiKeyOption, verbose: VerboseOption = False) -> None:
    """Show the account balance."""
    configure_logging(verbose)

    async def fetch() -> Any:
        async with client_from_settings(api_key) as client:
            return await client.get_balance()

    console.print(f"Balance: [bold]{_run(fetch).balance}[/bold]")


@app.command()
def catalog(api_key: ApiKeyOption, verbose: VerboseOption = False) -> None:
    """Show plans, regions and distributions available for ordering."""
    configure_logging(verbose)

    async def fetch() -> tuple:
        async with client_from_settings(api_key) as client:
            return await asyncio.gather(
                client.get_plans(), client.get_regions(), client.get_distros()
            )

    plans, regions, distros = _run(fetch)

    plan_table = Table(title="Plans")
    for column in ("ID", "Title", "Cores", "Memory", "Storage", "Price"):
        plan_table.add_column(column)
    for plan in plans:
        plan_table.add_row(
            str(plan.id),
            plan.title,
            *(
                str(v) if v is not None else "-"
                for v in (plan.cores, plan.memory, plan.storage, plan.price)
            ),
        )
    console.print(plan_table)

    region_table = Table(title="Regions")
    region_table.add_column("ID")
    region_table.add_column("Region")
    region_table.add_column("Location")
    for region in regions:
        region_table.add_row(str(region.id), region.region, region.location)
    console.print(region_table)

    distro_table = Table(title="Distributions")
    distro_table.add_column("ID")
    distro_table.add_column("Description")
    for distro in distros:
        distro_table.add_row(str(distro.id), distro.description)
    console.print(distro_table)


@app.command()
def order(
    api_key: ApiKeyOption,
    distro: Annotated[int, typer.Option("--distro", help="Distribution ID")],
    region: Annotated[int, typer.Option("--region", help="Region ID")],
    plan: Annotated[int, typer.Option("--plan", help="Plan ID")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
    verbose: VerboseOption = False,
) -> None:
    """Order a new server."""
    configure_logging(verbose)

    if not yes:
        typer.confirm(
            f"Order plan {plan} in region {region} with distro {distro}?", abort=True
        )

    async def purchase() -> Any:
        async with client_from_settings(api_key) as client:
            return await client.purchase_server(
                {"distro_id": distro, "region_id": region, "plan_id": plan}
            )

    response = _run(purchase)
    if response.success:
        console.print(f"[green]Server ordered: {response.server_id}[/green]")
    else:
        console.print("[red]Order was not accepted[/red]")
        raise typer.Exit(code=1)


@app.command()
def watch(
    api_key: ApiKeyOption,
    interval: Annotated[
        float | None, typer.Option("--interval", help="Refresh interval in seconds")
    ] = None,
    verbose: VerboseOption = False,
) -> None:
    """Poll the server list and print it on every refresh (Ctrl-C to stop)."""
    configure_logging(verbose)
    settings = get_settings()
    account = Account(name="cli", api_key=api_key)

    shown: dict[str, Any] = {"refreshed": None, "failures": 0}

    def show(state: ServersSnapshot) -> None:
        if state.loading:
            return
        if state.error and state.failed_attempts != shown["failures"]:
            shown["failures"] = state.failed_attempts
            console.print(f"[red]{state.error}[/red] (failed attempts: {state.failed_attempts})")
            return
        if state.last_refreshed is not None and state.last_refreshed != shown["refreshed"]:
            shown["refreshed"] = state.last_refreshed
            title = f"Servers @ {state.last_refreshed:%H:%M:%S}"
            console.print(_servers_table(state.servers, title=title))

    async def run() -> None:
        store = ServersStore(
            account_provider=lambda: account,
            client_factory=lambda key: client_from_settings(key, settings),
            refresh_interval=interval or settings.refresh_interval,
        )
        store.add_listener(show)
        store.start_refreshing()
        try:
            await asyncio.Event().wait()
        finally:
            await store.aclose()

    try:
        _run(run)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/dim]")


@app.command()
def genkey() -> None:
    """Print a new encryption key for ENCRYPTION_KEY."""
    console.print(generate_encryption_key())


def main() -> None:
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
