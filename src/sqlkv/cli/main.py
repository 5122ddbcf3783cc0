"""
CLI for the key-value store.

Commands:
    sqlkv get KEY - Print an entry
    sqlkv set KEY VALUE - Store a value
    sqlkv delete KEY - Delete an entry
    sqlkv list - List entries
    sqlkv cleanup - Remove expired entries
    sqlkv config - Show current configuration
    sqlkv version - Print version
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Annotated, Any, Awaitable, Callable, Optional, Tuple, TypeVar

import orjson
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from sqlkv import __version__, create_kv
from sqlkv.config import Settings, clear_settings_cache, get_settings
from sqlkv.exceptions import KVError
from sqlkv.logging import setup_logging
from sqlkv.store import KVStore

app = typer.Typer(
    name="sqlkv",
    help="sqlkv - key-value store on SQLite",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

T = TypeVar("T")

DbOption = Annotated[
    Optional[str],
    typer.Option("--db", help="SQLite database file (overrides KV_DATABASE_PATH)"),
]


class ValueKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except ValidationError:
        return None


def _run(db: str | None, action: Callable[[KVStore], Awaitable[T]]) -> T:
    """Open the store, run one action against it, and close it."""
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'sqlkv config' to see the current values."
        )
        raise typer.Exit(1)
    setup_logging(log_level="WARNING")

    async def runner() -> T:
        kv = await create_kv(db, settings=settings)
        try:
            return await action(kv)
        finally:
            await kv.close()

    try:
        return asyncio.run(runner())
    except KVError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def parse_value(raw: str, kind: ValueKind) -> Any:
    """Convert a command-line string into a typed value."""
    if kind is ValueKind.STRING:
        return raw
    if kind is ValueKind.NUMBER:
        try:
            return int(raw)
        except ValueError:
            pass
        try:
            return float(raw)
        except ValueError:
            raise typer.BadParameter(f"not a number: {raw!r}") from None
    if kind is ValueKind.BOOLEAN:
        lowered = raw.strip().lower()
        if lowered not in ("true", "false"):
            raise typer.BadParameter(f"expected true or false, got {raw!r}")
        return lowered == "true"
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError:
        raise typer.BadParameter(f"not valid JSON: {raw!r}") from None


def _filter_value(raw: str) -> Any:
    # Numbers and booleans compare as JSON scalars, everything else as text
    try:
        value = orjson.loads(raw)
    except orjson.JSONDecodeError:
        return raw
    return value if isinstance(value, (int, float, bool, str)) else raw


@app.command()
def get(
    key: Annotated[str, typer.Argument(help="Entry key")],
    db: DbOption = None,
) -> None:
    """Print an entry as JSON."""
    entry = _run(db, lambda kv: kv.get(key))
    if entry is None:
        error_console.print(f"[yellow]Not found:[/yellow] {key}")
        raise typer.Exit(1)
    console.print_json(data=entry.to_dict())


@app.command("set")
def set_value(
    key: Annotated[str, typer.Argument(help="Entry key")],
    value: Annotated[str, typer.Argument(help="Value to store")],
    kind: Annotated[
        ValueKind,
        typer.Option("--type", "-t", help="How to interpret VALUE"),
    ] = ValueKind.STRING,
    expire_in: Annotated[
        Optional[int],
        typer.Option("--expire-in", "-e", help="Milliseconds until the entry expires"),
    ] = None,
    db: DbOption = None,
) -> None:
    """Store a value under KEY."""
    parsed = parse_value(value, kind)
    _run(db, lambda kv: kv.set(key, parsed, expire_in=expire_in))
    console.print(f"[green]Stored[/green] {key}")


@app.command()
def delete(
    key: Annotated[str, typer.Argument(help="Entry key")],
    db: DbOption = None,
) -> None:
    """Delete an entry."""
    _run(db, lambda kv: kv.delete(key))
    console.print(f"[green]Deleted[/green] {key}")


@app.command("list")
def list_entries(
    prefix: Annotated[
        Optional[str], typer.Option("--prefix", "-p", help="Key prefix")
    ] = None,
    limit: Annotated[
        Optional[int], typer.Option("--limit", "-n", help="Maximum entries")
    ] = None,
    reverse: Annotated[
        bool, typer.Option("--reverse", "-r", help="Descending key order")
    ] = False,
    where: Annotated[
        Tuple[str, str, str],
        typer.Option("--where", "-w", help="JSON field filter: FIELD OPERATOR VALUE"),
    ] = (None, None, None),  # type: ignore[assignment]
    db: DbOption = None,
) -> None:
    """List entries in key order."""
    condition = None
    if where[0] is not None:
        field, operator, raw = where
        condition = {"field": field, "operator": operator, "value": _filter_value(raw)}

    entries = _run(
        db,
        lambda kv: kv.list(prefix=prefix, limit=limit, where=condition, reverse=reverse),
    )

    table = Table(title="Entries", show_header=True)
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Version", style="dim")
    table.add_column("Expires At")

    for entry in entries:
        data = entry.to_dict()
        table.add_row(
            entry.key,
            orjson.dumps(data["value"]).decode("utf-8"),
            entry.version,
            str(entry.expires_at) if entry.expires_at is not None else "[dim]never[/dim]",
        )

    console.print(table)
    console.print(f"[dim]{len(entries)} entries[/dim]")


@app.command()
def cleanup(db: DbOption = None) -> None:
    """Remove expired entries."""
    removed = _run(db, lambda kv: kv.cleanup_expired())
    console.print(f"Removed {removed} expired entries")


@app.command()
def config() -> None:
    """Show current configuration."""
    console.print()
    console.print("[bold]sqlkv Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()
    if settings is None:
        error_console.print("[red]Configuration is invalid.[/red]")
        error_console.print("Check KV_* environment variables and your .env file.")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.redacted_display().items():
        table.add_row(key, str(value))

    console.print(table)
    console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"sqlkv version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
