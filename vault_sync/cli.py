"""
CLI commands for vault-sync.

Provides the `vault-sync` command-line interface for setup, schema creation,
one-shot and continuous synchronization, status checks and restoring a
vault from the database.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.table import Table
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from config import ConfigurationLoader, sanitize_identifier
from config.defaults import DEFAULT_IGNORE_PATTERNS
from core.exceptions import ConfigurationError, VaultSyncError
from core.models.config import GlobalSettings, VaultConfig
from core.parser.transformer import ContentTransformer
from core.storage.client import VaultStore
from core.sync.daemon import SyncDaemon
from core.sync.debouncer import Debouncer
from core.sync.engine import SyncEngine
from core.sync.filters import PathFilter
from core.sync.retry import RetryQueue
from core.sync.state import StateCache

from . import __version__

console = Console()
logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool, level_name: str) -> None:
    level = logging.DEBUG if verbose else getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
        force=True,
    )


def _load_config(ctx: click.Context, require_vault: bool = True) -> Tuple[ConfigurationLoader, VaultConfig]:
    """Load configuration or exit with a readable error"""
    loader: ConfigurationLoader = ctx.obj["loader"]
    try:
        config = loader.load(ctx.obj["config_path"], require_vault=require_vault)
    except ConfigurationError as e:
        console.print(f"[red]❌ Failed to load config: {e}[/red]")
        sys.exit(1)
    return loader, config


def build_engine(loader: ConfigurationLoader, config: VaultConfig) -> SyncEngine:
    """Assemble a sync engine (store not yet connected) from configuration"""
    state = StateCache(loader.state_file(config), config.vault_path)
    state.load()

    return SyncEngine(
        vault_path=config.vault_path,
        store=VaultStore(config.database, batch_size=config.sync.batch_size),
        state=state,
        transformer=ContentTransformer(
            note_extensions=config.sync.note_extensions,
            max_binary_size_bytes=config.sync.max_binary_size_bytes,
        ),
        path_filter=PathFilter(config.ignore_patterns, config.include_patterns),
        retry_queue=RetryQueue(max_attempts=config.sync.retry_attempts),
        retry_delay_s=config.sync.retry_delay_ms / 1000.0,
    )


def _run(coro, failure_message: str):
    """Run a coroutine, reporting VaultSyncError as a failed command"""
    try:
        return asyncio.run(coro)
    except VaultSyncError as e:
        console.print(f"[red]❌ {failure_message}: {e}[/red]")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="vault-sync")
@click.option(
    '--config', '-c', 'config_path',
    type=click.Path(dir_okay=False),
    default=None,
    help='Config file path'
)
@click.option(
    '--verbose', '-v',
    is_flag=True,
    help='Enable verbose logging'
)
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], verbose: bool):
    """
    vault-sync CLI.

    Sync a local Markdown vault and its attachments to PostgreSQL.
    """
    settings = GlobalSettings()
    _configure_logging(verbose, settings.log_level)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose
    ctx.obj["loader"] = ConfigurationLoader(settings)


@main.command()
@click.pass_context
def daemon(ctx: click.Context):
    """Watch the vault and sync changes until interrupted."""
    loader, config = _load_config(ctx)
    console.print(f"[blue]👀 Watching {config.vault_path}. Press Ctrl+C to stop.[/blue]")
    _run(_run_daemon(loader, config), "Daemon failed")
    console.print("[green]✅ Daemon stopped[/green]")


async def _run_daemon(loader: ConfigurationLoader, config: VaultConfig) -> None:
    engine = build_engine(loader, config)
    await engine.store.connect()

    sync_daemon = SyncDaemon(
        engine,
        Debouncer(debounce_ms=config.sync.debounce_ms, queue_size=config.sync.queue_size),
        maintenance_interval_s=config.sync.maintenance_interval_s,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, sync_daemon.request_shutdown)
        except NotImplementedError:
            # Windows event loops; KeyboardInterrupt still ends asyncio.run
            pass

    try:
        await sync_daemon.run()
    finally:
        await engine.store.close()


@main.command()
@click.pass_context
def sync(ctx: click.Context):
    """Run one full reconciliation, then exit."""
    loader, config = _load_config(ctx)
    console.print(f"[blue]🔄 Syncing {config.vault_path}...[/blue]")

    report = _run(_run_sync(loader, config), "Sync failed")

    console.print(
        f"[green]✅ Sync completed: {report.synced} synced, {report.deleted} deleted, "
        f"{report.unchanged} unchanged ({report.duration_s:.1f}s)[/green]"
    )
    if report.failed:
        console.print(f"[yellow]⚠️  {len(report.failed)} file(s) failed:[/yellow]")
        for path in report.failed:
            console.print(f"   • {path}")
        sys.exit(1)


async def _run_sync(loader: ConfigurationLoader, config: VaultConfig):
    engine = build_engine(loader, config)
    await engine.store.connect()
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            console=console,
            transient=True
        ) as progress:
            task = progress.add_task("Uploading changed files...", total=None)

            def _advance(done: int, total: int) -> None:
                progress.update(task, completed=done, total=total)

            return await engine.full_reconcile(progress=_advance)
    finally:
        await engine.store.close()


@main.command()
@click.pass_context
def status(ctx: click.Context):
    """Show connection status and sync info."""
    loader, config = _load_config(ctx, require_vault=False)

    table = Table(title="vault-sync Status")
    table.add_column("Component", style="cyan", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    db = config.database
    db_details = f"{db.host}:{db.port}/{db.database}" if not db.url else "custom URL"

    try:
        remote = asyncio.run(_fetch_remote_status(config))
    except VaultSyncError as e:
        remote = None
        table.add_row("Database", "[red]❌ Disconnected[/red]", str(e))

    if remote is not None:
        table.add_row("Database", "[green]✅ Connected[/green]", db_details)
        table.add_row("Schema", f"[yellow]{remote.get('schema') or 'default'}[/yellow]", "")
        table.add_row("Notes", str(remote["notes"]), "Rows in vault_notes")
        table.add_row("Attachments", str(remote["attachments"]), "Rows in vault_attachments")
        last_synced = remote.get("last_synced_at")
        table.add_row("Last Sync", last_synced.isoformat() if last_synced else "never", "")

    if config.vault_path.is_dir():
        table.add_row("Vault", "[green]✅ Found[/green]", str(config.vault_path))
    else:
        table.add_row("Vault", "[red]❌ Missing[/red]", str(config.vault_path))

    state = StateCache(loader.state_file(config), config.vault_path)
    state.load()
    last_full_sync = state.last_full_sync
    table.add_row("Tracked Files", str(state.file_count), str(state.state_file))
    table.add_row("Last Full Sync", last_full_sync.isoformat() if last_full_sync else "never", "")

    console.print(table)

    if remote is None:
        console.print("\n[yellow]⚠️  Database not reachable. Check the database section of your config.[/yellow]")


async def _fetch_remote_status(config: VaultConfig):
    store = VaultStore(config.database)
    await store.connect()
    try:
        return await store.get_status()
    finally:
        await store.close()


@main.command()
@click.pass_context
def migrate(ctx: click.Context):
    """Create the vault schema and tables."""
    _, config = _load_config(ctx, require_vault=False)
    _run(_run_migrate(config), "Migration failed")
    console.print("[green]✅ Migrations completed successfully[/green]")


async def _run_migrate(config: VaultConfig) -> None:
    store = VaultStore(config.database)
    await store.connect()
    try:
        await store.create_tables()
    finally:
        await store.close()


@main.command()
@click.pass_context
def init(ctx: click.Context):
    """Interactively create a config file."""
    loader: ConfigurationLoader = ctx.obj["loader"]

    console.print("[bold]=== vault-sync Setup ===[/bold]\n")

    vault_path = Path(click.prompt("Vault path")).expanduser()
    if not vault_path.is_dir():
        console.print(f"[red]❌ Vault path does not exist: {vault_path}[/red]")
        sys.exit(1)

    console.print("\nDatabase configuration:")
    host = click.prompt("  Host", default="localhost")
    port = click.prompt("  Port", default=5432, type=click.IntRange(1, 65535))
    user = click.prompt("  User")
    password = click.prompt("  Password", default="", hide_input=True, show_default=False)
    database = click.prompt("  Database name")
    schema = click.prompt("  Schema name", default=sanitize_identifier(vault_path.resolve().name))
    sslmode = click.prompt(
        "  SSL mode",
        default="require",
        type=click.Choice(["disable", "allow", "prefer", "require", "verify-ca", "verify-full"])
    )

    config_file = Path(ctx.obj["config_path"]) if ctx.obj["config_path"] else None
    try:
        written = loader.write_config(
            vault_path=vault_path,
            host=host,
            user=user,
            database=database,
            port=port,
            schema=sanitize_identifier(schema),
            sslmode=sslmode,
            ignore_patterns=DEFAULT_IGNORE_PATTERNS,
            config_file=config_file,
        )
    except OSError as e:
        console.print(f"[red]❌ Failed to write config file: {e}[/red]")
        sys.exit(1)

    console.print(f"\n[green]✅ Config file written to: {written}[/green]")
    console.print("\n[yellow]IMPORTANT: Set the DB_PASSWORD environment variable:[/yellow]")
    console.print(f"  export DB_PASSWORD='{password}'" if password else "  export DB_PASSWORD=...")
    console.print("\n[dim]To test the connection, run: vault-sync status[/dim]")
    console.print("[dim]To create the tables, run: vault-sync migrate[/dim]")
    console.print("[dim]To start syncing, run: vault-sync daemon[/dim]")


@main.command()
@click.option(
    '--no-overwrite',
    is_flag=True,
    help='Keep local files whose content differs from the database'
)
@click.pass_context
def pull(ctx: click.Context, no_overwrite: bool):
    """Download every file from the database into the vault."""
    loader, config = _load_config(ctx, require_vault=False)

    if not config.vault_path.exists():
        console.print(f"[blue]📁 Creating vault directory: {config.vault_path}[/blue]")
        try:
            config.vault_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            console.print(f"[red]❌ Failed to create vault directory: {e}[/red]")
            sys.exit(1)

    report = _run(_run_pull(loader, config, overwrite=not no_overwrite), "Pull failed")

    console.print(
        f"[green]✅ Pull completed: {report.written} written, {report.unchanged} unchanged, "
        f"{report.skipped} skipped[/green]"
    )
    if report.failed:
        console.print(f"[yellow]⚠️  {len(report.failed)} file(s) could not be written:[/yellow]")
        for path in report.failed:
            console.print(f"   • {path}")
        sys.exit(1)


async def _run_pull(loader: ConfigurationLoader, config: VaultConfig, overwrite: bool):
    engine = build_engine(loader, config)
    await engine.store.connect()
    try:
        return await engine.pull(overwrite=overwrite)
    finally:
        await engine.store.close()


if __name__ == "__main__":
    main()
