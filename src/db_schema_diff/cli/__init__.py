"""CLI for comparing SQL Server schemas and applying migration scripts.

Sources are either a folder of ``.sql`` scripts or a database given as
``db:<profile>/<database>`` (profiles come from db.toml).

Usage:
    db-schema-diff profiles
    db-schema-diff databases --profile dev
    db-schema-diff parse ./sql
    db-schema-diff extract db:dev/AppDb
    db-schema-diff compare ./sql db:dev/AppDb --output migration.sql
    db-schema-diff compare db:dev/AppDb db:prod/AppDb --risk destructive --diff
    db-schema-diff apply db:dev/AppDb --script-file migration.sql --confirm
    db-schema-diff history db:dev/AppDb usp_GetUser --diff 41 57

Commands:
    profiles   - List profiles from db.toml
    databases  - List user databases on a profile's server
    parse      - Parse a folder of scripts and list detected objects
    extract    - List the objects of a source
    compare    - Compare two sources and optionally save the migration script
    apply      - Execute a saved script file against a database
    history    - Browse and diff versions saved in the ChangeControl table
"""

import argparse
import asyncio
import logging
import sys
from collections import Counter
from pathlib import Path

from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

from db_schema_diff.config.loader import (
    database_source,
    get_profile,
    load_db_config,
    resolve_credentials,
)
from db_schema_diff.errors import InvalidSourceError, SchemaDiffError
from db_schema_diff.schema.export import executable_batches, save_script_file, unified_diff
from db_schema_diff.schema.folder_parser import parse_folder
from db_schema_diff.schema.models import (
    ComparisonResult,
    RiskLevel,
    SchemaObject,
    SchemaSource,
)
from db_schema_diff.service import (
    compare_schemas,
    diff_snapshots,
    execute_scripts,
    list_databases,
    list_history_objects,
    list_snapshots,
    load_objects,
)

console = Console()

DATABASE_PREFIX = "db:"

_RISK_STYLES = {
    RiskLevel.DESTRUCTIVE: "bold red",
    RiskLevel.WARNING: "yellow",
    RiskLevel.SAFE: "green",
}

# Errors reported as a one-line message instead of a traceback
_EXPECTED_ERRORS = (SchemaDiffError, FileNotFoundError, ValidationError)


# ============================================================================
# Helpers
# ============================================================================


def _configure_logging(verbosity: int) -> None:
    """Route library logging through rich: -v for info, -vv for debug."""
    if verbosity <= 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def parse_source(argument: str, config_path: str | None = None, env_prefix: str = "") -> SchemaSource:
    """Turn a command-line source argument into a SchemaSource.

    Args:
        argument: ``db:<profile>/<database>`` or a folder path.
        config_path: Optional explicit db.toml path.
        env_prefix: Prefix for environment variable lookup.

    Raises:
        InvalidSourceError: If a ``db:`` argument is missing the database part.
        FileNotFoundError: If db.toml is needed but cannot be found.
        ProfileNotFoundError: If the profile is not in db.toml.

    Example:
        >>> parse_source("./sql").type
        'folder'
    """
    if argument.startswith(DATABASE_PREFIX):
        profile_name, _, database = argument[len(DATABASE_PREFIX):].partition("/")
        if not profile_name or not database:
            raise InvalidSourceError(
                f"Database source must look like db:<profile>/<database>, got: {argument}"
            )
        config = load_db_config(config_path, env_prefix=env_prefix)
        return database_source(config, profile_name, database, env_prefix=env_prefix)

    return SchemaSource(
        type="folder",
        name=Path(argument).name or argument,
        folder_path=argument,
    )


def _print_objects(objects: list[SchemaObject], title: str) -> None:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Type", style="dim")
    table.add_column("Object")

    for obj in objects:
        table.add_row(obj.type.value, escape(obj.qualified_name))

    console.print(table)

    counts = Counter(obj.type.value for obj in objects)
    summary = ", ".join(f"{count} {name}" for name, count in sorted(counts.items()))
    console.print(f"\n[bold]{len(objects)}[/bold] object(s){': ' + summary if summary else ''}")


def _print_comparison(result: ComparisonResult, risk: RiskLevel | None) -> None:
    changes = [c for c in result.changes if risk is None or c.risk_level is risk]

    table = Table(
        title=f"{result.source.name} -> {result.target.name}",
        show_header=True,
        header_style="bold",
    )
    table.add_column("Risk")
    table.add_column("Change")
    table.add_column("Type", style="dim")
    table.add_column("Object")
    table.add_column("Warning", style="dim")

    for change in changes:
        style = _RISK_STYLES[change.risk_level]
        table.add_row(
            f"[{style}]{change.risk_level.value}[/{style}]",
            change.change_type.value,
            change.object_type.value,
            escape(change.object_name),
            change.warning_message or "",
        )

    console.print(table)

    summary = result.summary()
    console.print(
        f"\n[bold]{len(result.changes)}[/bold] change(s): "
        f"[bold red]{summary[RiskLevel.DESTRUCTIVE]}[/bold red] destructive, "
        f"[yellow]{summary[RiskLevel.WARNING]}[/yellow] warning, "
        f"[green]{summary[RiskLevel.SAFE]}[/green] safe"
    )


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_databases(args: argparse.Namespace) -> int:
    """Async implementation for databases command.

    Returns:
        0 on success, 1 on failure.
    """
    env_prefix = getattr(args, "env_prefix", "")

    try:
        config = load_db_config(args.config, env_prefix=env_prefix)
        credentials = resolve_credentials(get_profile(config, args.profile), env_prefix)
        databases = await list_databases(credentials)
    except _EXPECTED_ERRORS as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    for name in databases:
        console.print(name)
    console.print(f"\n[dim]{len(databases)} database(s) on profile {args.profile}[/dim]")
    return 0


async def _async_extract(args: argparse.Namespace) -> int:
    """Async implementation for extract command.

    Returns:
        0 on success, 1 on failure.
    """
    env_prefix = getattr(args, "env_prefix", "")

    try:
        source = parse_source(args.source, args.config, env_prefix)
        console.print(f"Loading [bold cyan]{source.name}[/bold cyan]...", style="dim")
        objects = await load_objects(source)
    except _EXPECTED_ERRORS as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    _print_objects(objects, title=source.name)
    return 0


async def _async_compare(args: argparse.Namespace) -> int:
    """Async implementation for compare command.

    Differences are not failures: returns 0 whenever the comparison runs.

    Returns:
        0 on success, 1 on failure.
    """
    env_prefix = getattr(args, "env_prefix", "")

    try:
        source = parse_source(args.source, args.config, env_prefix)
        target = parse_source(args.target, args.config, env_prefix)
        console.print(
            f"Comparing [bold cyan]{source.name}[/bold cyan] -> "
            f"[bold cyan]{target.name}[/bold cyan]...",
            style="dim",
        )
        result = await compare_schemas(source, target)
    except _EXPECTED_ERRORS as e:
        console.print(f"[bold red]x[/bold red] Comparison failed: {escape(str(e))}")
        return 1

    if not result.has_changes:
        console.print("[bold green]v[/bold green] Schemas are identical")
        return 0

    risk = RiskLevel(args.risk) if args.risk else None
    _print_comparison(result, risk)

    if args.diff:
        for change in result.changes:
            if risk is not None and change.risk_level is not risk:
                continue
            diff_text = unified_diff(change)
            if diff_text:
                console.print(f"\n[bold]{escape(change.object_name)}[/bold]")
                console.print(Syntax(diff_text, "diff", theme="ansi_dark"))

    if args.output:
        path = save_script_file(result.changes, args.output)
        blocked = sum(1 for c in result.changes if c.is_blocked)
        console.print(f"\nScript saved to [cyan]{path}[/cyan]")
        if blocked:
            console.print(
                f"[yellow]{blocked} destructive change(s) are blocked "
                f"(comment-only) and need manual review.[/yellow]"
            )

    return 0


async def _async_apply(args: argparse.Namespace) -> int:
    """Async implementation for apply command.

    Without ``--confirm`` only the plan is shown.

    Returns:
        0 on success, 1 on failure.
    """
    env_prefix = getattr(args, "env_prefix", "")

    script_path = Path(args.script_file)
    if not script_path.exists():
        console.print(f"[red]Error: Script file not found: {script_path}[/red]")
        return 1

    batches = executable_batches(script_path.read_text(encoding="utf-8"))
    if not batches:
        console.print("[yellow]No executable statements in script file.[/yellow]")
        return 0

    try:
        target = parse_source(args.target, args.config, env_prefix)
    except _EXPECTED_ERRORS as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    mode = "without transaction" if args.no_transaction else "in one transaction"
    console.print(
        f"[bold]{len(batches)}[/bold] batch(es) to run against "
        f"[bold cyan]{target.name}[/bold cyan] {mode}"
    )

    if not args.confirm:
        console.print()
        console.print(
            "[dim]To apply the script, add[/dim] [cyan]--confirm[/cyan] [dim]flag.[/dim]"
        )
        return 0

    try:
        outcome = await execute_scripts(
            target,
            batches,
            use_transaction=not args.no_transaction,
            stop_on_error=not args.continue_on_error,
        )
    except _EXPECTED_ERRORS as e:
        console.print(f"\n[bold red]Error:[/bold red] {escape(str(e))}")
        return 1

    for line in outcome.results:
        console.print(f"  {escape(line)}", style="dim")
    for line in outcome.errors:
        console.print(f"  [red]{escape(line)}[/red]")

    if outcome.success:
        console.print("\n[bold green]v[/bold green] Script applied")
        return 0

    if outcome.rolled_back:
        console.print("\n[bold red]x[/bold red] Script failed; all changes were rolled back")
    else:
        console.print("\n[bold red]x[/bold red] Script failed")
    return 1


async def _async_history(args: argparse.Namespace) -> int:
    """Async implementation for history command.

    Without an object lists the objects with saved versions; with an object
    lists its snapshots, or diffs two of them when ``--diff`` is given.

    Returns:
        0 on success, 1 on failure.
    """
    env_prefix = getattr(args, "env_prefix", "")

    try:
        source = parse_source(args.source, args.config, env_prefix)
        if args.object is None:
            names = await list_history_objects(source)
        elif args.diff:
            older_id, newer_id = args.diff
            text = await diff_snapshots(source, args.object, older_id, newer_id)
        else:
            snapshots = await list_snapshots(source, args.object)
    except _EXPECTED_ERRORS as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    if args.object is None:
        for name in names:
            console.print(escape(name))
        console.print(f"\n[dim]{len(names)} object(s) with saved versions[/dim]")
        return 0

    if args.diff:
        if text:
            console.print(Syntax(text, "diff", theme="ansi_dark"))
        else:
            console.print("[bold green]v[/bold green] Snapshots are identical")
        return 0

    table = Table(title=escape(args.object), show_header=True, header_style="bold")
    table.add_column("Snapshot", justify="right")
    table.add_column("Changed At")
    for snapshot in snapshots:
        table.add_row(str(snapshot.snapshot_id), f"{snapshot.changed_at:%Y-%m-%d %H:%M:%S}")
    console.print(table)
    return 0


# ============================================================================
# Sync command wrappers
# ============================================================================


def cmd_profiles(args: argparse.Namespace) -> int:
    """List profiles from db.toml.

    Returns:
        0 on success, 1 if db.toml not found.
    """
    try:
        config = load_db_config(args.config, env_prefix=getattr(args, "env_prefix", ""))
    except (FileNotFoundError, ValidationError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("Profile")
    table.add_column("Server")
    table.add_column("Username")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        server = profile.server if profile.port is None else f"{profile.server},{profile.port}"
        table.add_row(f"[bold cyan]{name}[/bold cyan]", server, profile.username, profile.description)

    console.print(table)
    return 0


def cmd_parse(args: argparse.Namespace) -> int:
    """Parse a folder of scripts and list the detected objects.

    Returns:
        0 on success, 1 if the folder does not exist.
    """
    try:
        objects = parse_folder(args.folder)
    except SchemaDiffError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    _print_objects(objects, title=str(args.folder))
    return 0


def cmd_databases(args: argparse.Namespace) -> int:
    """List user databases on a profile's server.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_databases(args))


def cmd_extract(args: argparse.Namespace) -> int:
    """List the objects of a source.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_extract(args))


def cmd_compare(args: argparse.Namespace) -> int:
    """Compare two sources.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_compare(args))


def cmd_apply(args: argparse.Namespace) -> int:
    """Execute a script file against a database.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_apply(args))


def cmd_history(args: argparse.Namespace) -> int:
    """Browse and diff ChangeControl snapshots.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_history(args))


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="db-schema-diff",
        description="Compare SQL Server schemas and generate migration scripts",
    )

    parser.add_argument(
        "--config",
        default=None,
        help="Path to db.toml (default: $DB_SCHEMA_DIFF_CONFIG or ./db.toml)",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PASSWORD)"
        ),
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v info, -vv debug)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # profiles command
    p_profiles = subparsers.add_parser("profiles", help="List profiles from db.toml")
    p_profiles.set_defaults(func=cmd_profiles)

    # databases command
    p_databases = subparsers.add_parser(
        "databases", help="List user databases on a profile's server"
    )
    p_databases.add_argument("--profile", "-p", required=True, help="Profile name from db.toml")
    p_databases.set_defaults(func=cmd_databases)

    # parse command
    p_parse = subparsers.add_parser("parse", help="Parse a folder of .sql scripts")
    p_parse.add_argument("folder", help="Folder to scan recursively")
    p_parse.set_defaults(func=cmd_parse)

    # extract command
    p_extract = subparsers.add_parser("extract", help="List the objects of a source")
    p_extract.add_argument("source", help="Folder path or db:<profile>/<database>")
    p_extract.set_defaults(func=cmd_extract)

    # compare command
    p_compare = subparsers.add_parser("compare", help="Compare two sources")
    p_compare.add_argument("source", help="Desired schema: folder path or db:<profile>/<database>")
    p_compare.add_argument("target", help="Schema to migrate: folder path or db:<profile>/<database>")
    p_compare.add_argument("--output", "-o", help="Save the migration script to this file")
    p_compare.add_argument(
        "--diff", action="store_true", help="Show a unified diff per changed object"
    )
    p_compare.add_argument(
        "--risk",
        choices=[level.value for level in RiskLevel],
        help="Only list changes with this risk level",
    )
    p_compare.set_defaults(func=cmd_compare)

    # apply command
    p_apply = subparsers.add_parser("apply", help="Execute a script file against a database")
    p_apply.add_argument("target", help="Database to change: db:<profile>/<database>")
    p_apply.add_argument("--script-file", required=True, help="Script file saved by compare")
    p_apply.add_argument(
        "--no-transaction",
        action="store_true",
        help="Run each batch in autocommit mode (failures cannot be rolled back)",
    )
    p_apply.add_argument(
        "--continue-on-error",
        action="store_true",
        help="Keep running after a failed batch",
    )
    p_apply.add_argument("--confirm", action="store_true", help="Actually execute the script")
    p_apply.set_defaults(func=cmd_apply)

    # history command
    p_history = subparsers.add_parser(
        "history", help="Browse and diff saved versions from the ChangeControl table"
    )
    p_history.add_argument("source", help="Database: db:<profile>/<database>")
    p_history.add_argument("object", nargs="?", help="Object name; omit to list objects")
    p_history.add_argument(
        "--diff",
        nargs=2,
        type=int,
        metavar=("OLDER", "NEWER"),
        help="Show a unified diff between two snapshot ids",
    )
    p_history.set_defaults(func=cmd_history)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
