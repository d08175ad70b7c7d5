"""
CLI for inspecting and maintaining the persisted cache.

Commands:
    rlcache stats - Show global statistics across all namespaces
    rlcache show NAMESPACE - Show statistics for one namespace
    rlcache get NAMESPACE KEY - Print a cached value as JSON
    rlcache clear [--namespace NAME] - Clear one namespace or every cache
    rlcache cleanup NAMESPACE - Purge expired and stale entries
    rlcache config - Show current configuration
    rlcache version - Print version
"""

from __future__ import annotations

import asyncio
from typing import Annotated, Any, Awaitable, Callable, Optional, TypeVar

import orjson
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from rlcache import __version__
from rlcache.cache.registry import CacheRegistry
from rlcache.config import Settings, clear_settings_cache, get_settings
from rlcache.exceptions import RLCacheError
from rlcache.logging import setup_logging
from rlcache.storage import create_storage
from rlcache.types import ms_to_datetime

app = typer.Typer(
    name="rlcache",
    help="Recordlane cache - inspect and maintain namespaced caches",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

T = TypeVar("T")


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except ValidationError:
        return None


def _require_settings() -> Settings:
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'rlcache config' to see what's wrong."
        )
        raise typer.Exit(1)
    setup_logging(settings.LOG_LEVEL)
    return settings


def _run(settings: Settings, action: Callable[[CacheRegistry], Awaitable[T]]) -> T:
    """Open storage, run an action against a fresh registry, then shut down."""

    async def runner() -> T:
        settings.ensure_directories()
        storage = create_storage(settings)
        await storage.init()
        registry = CacheRegistry(storage, settings.cache_config())
        try:
            return await action(registry)
        finally:
            await registry.dispose_all()
            await storage.close()

    try:
        return asyncio.run(runner())
    except RLCacheError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _format_timestamp(value: int | None) -> str:
    if value is None:
        return "[dim]n/a[/dim]"
    return ms_to_datetime(value).isoformat(timespec="seconds")


@app.command()
def stats() -> None:
    """Show statistics across every persisted namespace."""
    settings = _require_settings()
    global_stats = _run(settings, lambda registry: registry.get_global_stats())

    table = Table(title="Cache Namespaces", show_header=True)
    table.add_column("Namespace", style="cyan")
    table.add_column("Entries", style="green", justify="right")
    for namespace, count in sorted(global_stats.entries_by_namespace.items()):
        table.add_row(namespace, str(count))

    console.print()
    console.print(table)
    console.print()
    console.print(f"[bold]Caches:[/bold] {global_stats.total_caches}")
    console.print(f"[bold]Entries:[/bold] {global_stats.total_entries}")
    console.print(f"[bold]Entry bytes:[/bold] {global_stats.total_size_bytes}")
    console.print(f"[bold]Blob bytes:[/bold] {global_stats.total_blob_bytes}")
    if global_stats.corrupted_caches:
        console.print(
            f"[yellow]Corrupted caches skipped:[/yellow] {global_stats.corrupted_caches}"
        )
    console.print()


@app.command()
def show(
    namespace: Annotated[str, typer.Argument(help="Cache namespace")],
) -> None:
    """Show statistics for one namespace."""
    settings = _require_settings()
    ns_stats = _run(settings, lambda registry: registry.get_instance(namespace).get_stats())

    table = Table(title=f"Namespace: {namespace}", show_header=True)
    table.add_column("Stat", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("entries", str(ns_stats.entries))
    table.add_row("total_size_bytes", str(ns_stats.total_size_bytes))
    table.add_row("estimated_memory_bytes", str(ns_stats.estimated_memory_bytes))
    table.add_row("oldest_entry", _format_timestamp(ns_stats.oldest_entry_timestamp))
    table.add_row("newest_entry", _format_timestamp(ns_stats.newest_entry_timestamp))

    console.print()
    console.print(table)
    console.print()


@app.command()
def get(
    namespace: Annotated[str, typer.Argument(help="Cache namespace")],
    key: Annotated[str, typer.Argument(help="Cache key")],
) -> None:
    """Print a live cached value as JSON."""
    settings = _require_settings()
    entry = _run(settings, lambda registry: registry.get_instance(namespace).get(key))

    if entry is None:
        error_console.print(f"[yellow]No live entry for[/yellow] {namespace}/{key}")
        raise typer.Exit(1)

    document: dict[str, Any] = {
        "data": entry.data,
        "createdAt": entry.created_at,
        "expiresAt": entry.expires_at,
        "accessCount": entry.access_count,
        "sizeBytes": entry.size_bytes,
        "compressed": entry.compressed,
    }
    console.print_json(orjson.dumps(document).decode("utf-8"))


@app.command()
def clear(
    namespace: Annotated[
        Optional[str],
        typer.Option("--namespace", "-n", help="Only clear this namespace"),
    ] = None,
) -> None:
    """Clear one namespace, or every cache when no namespace is given."""
    settings = _require_settings()

    if namespace:
        _run(settings, lambda registry: registry.get_instance(namespace).clear())
        console.print(f"[green]Cleared namespace[/green] {namespace}")
    else:
        _run(settings, lambda registry: registry.clear_all())
        console.print("[green]Cleared all caches[/green]")


@app.command()
def cleanup(
    namespace: Annotated[str, typer.Argument(help="Cache namespace")],
) -> None:
    """Purge expired and version-mismatched entries from a namespace."""
    settings = _require_settings()
    removed = _run(settings, lambda registry: registry.get_instance(namespace).cleanup())
    console.print(f"Removed {removed} stale entries from {namespace}")


@app.command()
def config() -> None:
    """Show current configuration."""
    console.print()
    console.print("[bold]Cache Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()

    if settings is None:
        error_console.print("[red]Configuration is invalid.[/red]")
        error_console.print()
        error_console.print("Check the CACHE_* environment variables, for example:")
        error_console.print("  - CACHE_BACKEND must be memory, sqlite or file")
        error_console.print("  - CACHE_EVICTION_TARGET_RATIO must be in (0, 1]")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.redacted_display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)
    console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"recordlane-cache version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
