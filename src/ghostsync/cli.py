"""
Command-line interface for ghostsync.
"""

import asyncio
import logging
import sys
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Optional, Union

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import GhostSyncConfig, LoggingConfig
from .exceptions import ConfigurationError, GhostSyncError

if TYPE_CHECKING:
    from .resolver import ResolutionResult


console = Console()


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except GhostSyncError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(0)
    return wrapper


def setup_logging(config: LoggingConfig, debug: bool = False) -> None:
    """Configure the root logger from the logging section."""
    handlers = [logging.StreamHandler()]
    if config.file:
        handlers.append(
            RotatingFileHandler(
                config.file, maxBytes=config.max_size, backupCount=config.backup_count
            )
        )

    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, config.level),
        format=config.format,
        handlers=handlers,
        force=True,
    )


def _load_config(path: str, debug: bool) -> GhostSyncConfig:
    ghostsync_config = GhostSyncConfig.from_yaml(path)
    ghostsync_config.validate_config()
    setup_logging(ghostsync_config.logging, debug or ghostsync_config.debug)
    return ghostsync_config


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug mode"
)
@click.pass_context
def main(ctx, debug):
    """ghostsync: keeps a table catalog in line with the live database schema."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default="ghostsync-config.yaml",
    help="Output configuration file path",
)
@handle_errors
def init(output: str):
    """Initialize a new ghostsync configuration file."""
    if Path(output).exists():
        if not click.confirm(f"Configuration file {output} already exists. Overwrite?"):
            return

    config = _create_default_config()
    config.to_yaml(output)
    console.print(f"[green]✓[/green] Configuration file created: {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Edit the configuration file with your database, Redis and tenant details")
    console.print("2. Run: ghostsync validate-config -c your-config.yaml")
    console.print("3. Run: ghostsync setup-catalog -c your-config.yaml")
    console.print("4. Run: ghostsync run -c your-config.yaml --all")


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@handle_errors
def validate_config(config: str):
    """Validate configuration file."""
    console.print(f"Validating configuration: {config}")

    try:
        ghostsync_config = GhostSyncConfig.from_yaml(config)
        ghostsync_config.validate_config()
    except ConfigurationError as e:
        console.print(f"[red]✗[/red] Configuration error: {escape(str(e))}")
        sys.exit(1)

    console.print("[green]✓[/green] Configuration is valid")
    _display_config_summary(ghostsync_config)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.pass_context
@handle_errors
def setup_catalog(ctx, config: str):
    """Create the catalog schema and tables."""
    ghostsync_config = _load_config(config, ctx.obj["debug"])

    from .catalog.metadata import CatalogSchemaManager
    from .database.connection import DatabaseManager

    async def run_setup():
        async with DatabaseManager() as databases:
            db_config = ghostsync_config.get_database(ghostsync_config.catalog.database)
            databases.add_database(db_config.name, db_config.connection)
            pool = await databases.get_pool(db_config.name)
            manager = CatalogSchemaManager(pool, ghostsync_config.catalog.schema_name)
            return await manager.setup_catalog_schema()

    results = asyncio.run(run_setup())

    for table in results["tables_created"]:
        console.print(f"[green]✓[/green] Created {table}")
    for error in results["errors"]:
        console.print(f"[red]✗[/red] {escape(error)}")

    if results["errors"]:
        sys.exit(1)
    console.print(f"[green]✓[/green] Catalog schema {results['schema']} is ready")


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.pass_context
@handle_errors
def check_catalog(ctx, config: str):
    """Check that the catalog schema and tables exist."""
    ghostsync_config = _load_config(config, ctx.obj["debug"])

    from .catalog.metadata import CatalogSchemaManager
    from .database.connection import DatabaseManager

    async def run_check():
        async with DatabaseManager() as databases:
            db_config = ghostsync_config.get_database(ghostsync_config.catalog.database)
            databases.add_database(db_config.name, db_config.connection)
            pool = await databases.get_pool(db_config.name)
            manager = CatalogSchemaManager(pool, ghostsync_config.catalog.schema_name)
            return await manager.check_catalog_integrity()

    report = asyncio.run(run_check())

    if report.get("is_healthy"):
        console.print("[green]✓[/green] Catalog schema is healthy")
        return

    if "error" in report:
        console.print(f"[red]✗[/red] Integrity check failed: {escape(report['error'])}")
    for component in report.get("missing_components", []):
        console.print(f"[red]✗[/red] Missing {component}")
    sys.exit(1)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.option(
    "--tenant",
    "-t",
    help="Tenant to reconcile",
)
@click.option(
    "--all",
    "all_tenants",
    is_flag=True,
    help="Reconcile every configured tenant",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would be done without making changes",
)
@click.pass_context
@handle_errors
def run(ctx, config: str, tenant: Optional[str], all_tenants: bool, dry_run: bool):
    """Run one resolver pass."""
    if bool(tenant) == all_tenants:
        raise click.UsageError("Pass exactly one of --tenant or --all")

    ghostsync_config = _load_config(config, ctx.obj["debug"])
    if dry_run:
        ghostsync_config.resolver.dry_run = True
        console.print("[yellow]Dry run mode - no changes will be made[/yellow]")

    from .service import GhostSyncService

    async def run_passes():
        async with GhostSyncService(ghostsync_config) as service:
            if tenant:
                return {tenant: await service.run_tenant(tenant)}
            return await service.run_all()

    results = asyncio.run(run_passes())
    _display_results(results)

    if any(isinstance(result, GhostSyncError) for result in results.values()):
        sys.exit(1)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.option(
    "--interval",
    type=int,
    help="Seconds between passes (overrides config)",
)
@click.pass_context
@handle_errors
def watch(ctx, config: str, interval: Optional[int]):
    """Reconcile every tenant on an interval."""
    ghostsync_config = _load_config(config, ctx.obj["debug"])
    interval = interval or ghostsync_config.resolver.interval_seconds
    console.print("[blue]Starting ghostsync resolver loop...[/blue]")
    console.print(f"Tenants: {len(ghostsync_config.tenants)}")
    console.print(f"Interval: {interval}s")

    from .service import GhostSyncService

    async def run_loop():
        async with GhostSyncService(ghostsync_config) as service:
            await service.run_forever(interval)

    try:
        asyncio.run(run_loop())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down resolver loop...[/yellow]")


def _create_default_config() -> GhostSyncConfig:
    """Create a default configuration with examples."""
    from .config import DatabaseConfig, DatabaseConnection, TenantConfig

    databases = [
        DatabaseConfig(
            name="catalog",
            connection=DatabaseConnection(
                host="${POSTGRES_HOST}",
                port=5432,
                database="${POSTGRES_DB}",
                user="${POSTGRES_USER}",
                password="${POSTGRES_PASSWORD}",
            ),
        )
    ]

    tenants = [
        TenantConfig(
            name="example",
            database="catalog",
            database_schema="public",
            database_role="example_owner",
        )
    ]

    return GhostSyncConfig(databases=databases, tenants=tenants)


def _display_config_summary(config: GhostSyncConfig):
    """Display a summary of the configuration."""
    console.print("\n[blue]Configuration Summary[/blue]")

    db_table = Table(title="Databases")
    db_table.add_column("Name", style="cyan")
    db_table.add_column("Host", style="magenta")
    db_table.add_column("Database", style="green")

    for db in config.databases:
        db_table.add_row(db.name, db.connection.host, db.connection.database)

    console.print(db_table)

    tenant_table = Table(title="Tenants")
    tenant_table.add_column("Name", style="cyan")
    tenant_table.add_column("Database", style="magenta")
    tenant_table.add_column("Schema", style="green")
    tenant_table.add_column("Role", style="yellow")

    for tenant in config.tenants:
        tenant_table.add_row(
            tenant.name, tenant.database, tenant.database_schema, tenant.database_role
        )

    console.print(tenant_table)
    console.print(
        f"Lease: {config.lease.backend} (ttl {config.lease.ttl_ms}ms), "
        f"telemetry: {config.telemetry.sink}"
    )


def _display_results(results: Dict[str, Union["ResolutionResult", GhostSyncError]]):
    """Display resolver pass results."""
    table = Table(title="Resolver Passes")
    table.add_column("Tenant", style="cyan")
    table.add_column("Status", style="magenta")
    table.add_column("Renamed", style="green")
    table.add_column("Deleted", style="red")
    table.add_column("Created", style="yellow")
    table.add_column("Time (ms)")

    for name, result in results.items():
        if isinstance(result, GhostSyncError):
            table.add_row(name, "failed", "-", "-", "-", "-")
            continue
        table.add_row(
            name,
            result.status.value + (" (dry run)" if result.dry_run else ""),
            str(len(result.renamed)),
            str(len(result.deleted)),
            str(len(result.created)),
            f"{result.execution_time_ms:.1f}",
        )

    console.print(table)

    for name, result in results.items():
        if isinstance(result, GhostSyncError):
            console.print(f"[red]✗[/red] {name}: {escape(str(result))}")
            continue
        for old_name, new_name in result.renamed:
            console.print(f"  {name}: renamed {old_name} → {new_name}")
        for table_name in result.deleted:
            console.print(f"  {name}: removed {table_name}")
        for table_name in result.created:
            console.print(f"  {name}: registered {table_name}")
        for error in result.errors:
            console.print(f"  [yellow]⚠[/yellow] {name}: {escape(error)}")


if __name__ == "__main__":
    main()
