#!/usr/bin/env python
"""
mongo-transfer CLI - Main entry point

Usage:
    # Native zip export of two databases
    mt export mongodb://localhost shop.zip -D shop -D crm

    # mongodump archive of selected collections
    mt dump prod backup.archive -d shop -c users -c orders

    # Restore an archive, an archive directory or a mongodump directory
    mt restore prod backup.archive --drop

    # As module
    python -m mongo_transfer
"""

import os
import sys
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable

import click
from rich import box
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from . import __version__
from .classifier import scan_import_dir
from .constants import TOOL_DOWNLOAD_URL, ZIP_EXTENSION
from .engine import TransferEngine
from .events import ERROR, PROGRESS, WARNING, QueuedEmitter
from .exceptions import TransferCancelled, TransferError
from .formatting import format_number, format_progress, format_records, format_size
from .masking import mask_uri_credentials
from .models import ArchivePreview, ImportResult
from .native import IMPORT_MODES, SKIP
from .planner import ExportSelection
from .restore import RestoreOptions
from .settings import SettingsManager, TransferConfig
from .utils import display_tools_table, resolve_uri, test_connection

console = Console()

# Poll interval of the foreground wait, so Ctrl-C is noticed quickly
WAIT_SECONDS = 0.5


class ProgressRenderer:
    """Event listener drawing transfer events on a rich progress bar"""

    def __init__(self, progress: Progress):
        self.progress = progress
        self.task = progress.add_task("[cyan]Starting...", total=None)

    def __call__(self, name: str, payload):
        suffix = name.partition(':')[2]
        if suffix == PROGRESS:
            total = payload.get('total', -1)
            self.progress.update(
                self.task,
                description=f"[cyan]{format_progress(payload)}",
                completed=payload.get('current', 0),
                total=total if total >= 0 else None,
            )
        elif suffix == WARNING:
            self.progress.console.print(f"[yellow]⚠ {payload.get('message', '')}[/yellow]")
        elif suffix == ERROR:
            self.progress.console.print(f"[red]❌ {payload.get('error', '')}[/red]")


def run_with_progress(engine: TransferEngine, operation: Callable, cancel: Callable, description: str):
    """
    Run a transfer in a worker thread while the main thread renders progress.

    Ctrl-C cancels the transfer; the command then waits for its cleanup.
    """
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        renderer = ProgressRenderer(progress)
        progress.update(renderer.task, description=f"[cyan]{description}...")
        engine.emitter.subscribe(renderer)

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix='transfer') as pool:
            future = pool.submit(operation)
            while True:
                try:
                    return future.result(timeout=WAIT_SECONDS)
                except FutureTimeout:
                    continue
                except KeyboardInterrupt:
                    progress.console.print("[yellow]⚠ Cancelling...[/yellow]")
                    cancel()


def open_engine(host: str, settings: SettingsManager) -> TransferEngine:
    try:
        uri = resolve_uri(host, settings)
    except KeyError as e:
        console.print(f"[red]❌ {e.args[0]}[/red]")
        console.print("[dim]Use 'mt hosts list' to see saved hosts[/dim]")
        sys.exit(1)
    return TransferEngine(uri, emitter=QueuedEmitter(), config=TransferConfig.from_settings(settings))


def execute(engine: TransferEngine, operation: Callable, cancel: Callable, description: str):
    """Run an engine operation and map its failures to exit codes"""
    try:
        return run_with_progress(engine, operation, cancel, description)
    except TransferCancelled as e:
        console.print(f"[yellow]⚠ {str(e).capitalize()}[/yellow]")
        sys.exit(130)
    except (TransferError, ValueError, ConnectionError) as e:
        console.print(f"[red]❌ {mask_uri_credentials(str(e))}[/red]")
        sys.exit(1)
    finally:
        engine.close()


def parse_exclusions(values: tuple[str, ...]) -> dict[str, list[str]]:
    """
    Parse --exclusions values of the form "db:coll1,coll2" (or just "db")

    Examples:
        ("shop:logs,tmp", "crm") -> {"shop": ["logs", "tmp"], "crm": []}
    """
    exclusions = {}
    for value in values:
        database, _, collections = value.partition(':')
        if not database:
            raise click.BadParameter(f"missing database in '{value}'", param_hint='--exclusions')
        exclusions[database] = [c for c in collections.split(',') if c]
    return exclusions


def build_selection(database, databases, collections, exclude, exclusions) -> ExportSelection:
    return ExportSelection(
        database=database,
        databases=list(databases),
        collections=list(collections),
        exclude_collections=list(exclude),
        database_exclusions=parse_exclusions(exclusions),
    )


def display_import_result(result: ImportResult, title: str = "📥 Import Summary"):
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Database", style="cyan")
    table.add_column("Collection", style="magenta")
    table.add_column("Inserted", justify="right", style="green")
    table.add_column("Skipped", justify="right", style="yellow")

    for db in result.databases:
        for coll in db.collections:
            table.add_row(db.name, coll.name, format_number(coll.records_inserted), format_number(coll.records_skipped))

    console.print(table)
    console.print(f"[bold]Inserted:[/bold] {format_number(result.records_inserted)}")
    if result.records_failed:
        console.print(f"[bold]Failed:[/bold] [red]{format_number(result.records_failed)}[/red]")
    if result.records_skipped:
        console.print(f"[bold]Skipped:[/bold] {format_number(result.records_skipped)}")
    if result.records_dropped:
        console.print(f"[bold]Dropped:[/bold] {format_number(result.records_dropped)}")
    for error in result.errors:
        console.print(f"[red]• {error}[/red]")


def display_preview(preview: ArchivePreview):
    table = Table(title="🔍 Archive Contents", box=box.ROUNDED)
    table.add_column("Database", style="cyan")
    table.add_column("Collections", style="magenta")
    table.add_column("Records", justify="right", style="green")

    for db in preview.databases:
        records = format_records(db.record_count) if db.record_count else "-"
        table.add_row(db.name, ', '.join(db.collections), records)

    console.print(table)
    if preview.exported_at:
        console.print(f"[dim]Exported at {preview.exported_at}[/dim]")


def selection_options(command):
    """Options shared by export and dump"""
    options = [
        click.option('-d', '--db', 'database', help='Database to export'),
        click.option('-D', '--databases', multiple=True, help='Export these databases (repeatable)'),
        click.option('-c', '--collection', 'collections', multiple=True, help='Collection of --db (repeatable)'),
        click.option('-x', '--exclude', multiple=True, help='Collection of --db to leave out (repeatable)'),
        click.option('--exclusions', multiple=True, help='Per-database exclusions: "db:coll1,coll2" (repeatable)'),
    ]
    for option in reversed(options):
        command = option(command)
    return command


@click.group()
@click.version_option(version=__version__)
@click.pass_context
def main(ctx):
    """
    mongo-transfer - bulk MongoDB export/import

    HOST is a saved host name or a mongodb:// URI.
    """
    ctx.obj = SettingsManager()


@main.command('export')
@click.argument('host')
@click.argument('output')
@selection_options
@click.pass_obj
def export_cmd(settings, host, output, database, databases, collections, exclude, exclusions):
    """Export to a native zip archive (no external tools needed)"""
    selection = build_selection(database, databases, collections, exclude, exclusions)
    engine = open_engine(host, settings)
    result = execute(
        engine,
        lambda: engine.export_native(selection, output),
        engine.cancel_export,
        "Exporting",
    )
    if result:
        console.print(f"\n[green]✅ Export completed successfully![/green]")
        console.print(f"[bold]Location:[/bold] {result['filePath']}")
        console.print(f"[bold]Size:[/bold] {format_size(os.path.getsize(result['filePath']))}")
        console.print(f"[bold]Collections:[/bold] {result['collections']}")
        console.print(f"[bold]Documents:[/bold] {format_number(result['records'])}")


@main.command('dump')
@click.argument('host')
@click.argument('output')
@selection_options
@click.pass_obj
def dump_cmd(settings, host, output, database, databases, collections, exclude, exclusions):
    """Export with mongodump (one archive, or a directory of archives)"""
    selection = build_selection(database, databases, collections, exclude, exclusions)
    engine = open_engine(host, settings)
    result = execute(
        engine,
        lambda: engine.export_with_mongodump(selection, output),
        engine.cancel_export,
        "Dumping",
    )
    if result:
        console.print(f"\n[green]✅ Dump completed successfully![/green]")
        console.print(f"[bold]Location:[/bold] {result['filePath']}")
        console.print(f"[bold]Jobs:[/bold] {result['jobs']}")


@main.command('restore')
@click.argument('host')
@click.argument('input_path', metavar='INPUT')
@click.option('-d', '--db', 'database', help='Target database')
@click.option('-c', '--collection', help='Target collection')
@click.option('--drop', is_flag=True, help='Drop existing collections before restoring')
@click.option('--dry-run', is_flag=True, help='Run mongorestore with --dryRun')
@click.option('--ns-include', multiple=True, help='Namespace filter passed to mongorestore (repeatable)')
@click.option('-f', '--file', 'files', multiple=True, help='Archive of an archive directory to restore (repeatable)')
@click.option('-y', '--yes', 'assume_yes', is_flag=True, help='Assume yes to all prompts')
@click.pass_obj
def restore_cmd(settings, host, input_path, database, collection, drop, dry_run, ns_include, files, assume_yes):
    """Restore with mongorestore"""
    if drop and not dry_run and not assume_yes:
        if not click.confirm("Existing collections will be dropped. Proceed?"):
            console.print("[red]Cancelled[/red]")
            sys.exit(0)

    options = RestoreOptions(
        input_path=input_path,
        database=database,
        collection=collection,
        drop=drop,
        dry_run=dry_run,
        ns_include=list(ns_include),
        files=list(files),
    )
    engine = open_engine(host, settings)
    result = execute(
        engine,
        lambda: engine.import_with_mongorestore(options),
        engine.cancel_import,
        "Restoring",
    )
    if result:
        display_import_result(result, "📥 Restore Summary")


@main.command('import')
@click.argument('host')
@click.argument('archive')
@click.option('-D', '--databases', multiple=True, help='Import only these databases (repeatable)')
@click.option('--mode', type=click.Choice(IMPORT_MODES), default=SKIP, show_default=True,
              help='skip: keep existing documents; override: drop each database first')
@click.option('--dry-run', is_flag=True, help='Only report what would happen')
@click.option('-y', '--yes', 'assume_yes', is_flag=True, help='Assume yes to all prompts')
@click.pass_obj
def import_cmd(settings, host, archive, databases, mode, dry_run, assume_yes):
    """Import a native zip archive"""
    if mode != SKIP and not dry_run and not assume_yes:
        if not click.confirm("Target databases will be dropped before import. Proceed?"):
            console.print("[red]Cancelled[/red]")
            sys.exit(0)

    engine = open_engine(host, settings)
    if dry_run:
        result = execute(
            engine,
            lambda: engine.dry_run_native_import(archive, list(databases), mode),
            engine.cancel_import,
            "Analyzing",
        )
        if result:
            display_import_result(result, "🔎 Dry Run")
        return

    result = execute(
        engine,
        lambda: engine.import_native(archive, list(databases), mode),
        engine.cancel_import,
        "Importing",
    )
    if result:
        display_import_result(result)


@main.command('preview')
@click.argument('archive')
@click.option('-h', '--host', help='Host for mongorestore --dryRun (mongodump archives only)')
@click.pass_obj
def preview_cmd(settings, archive, host):
    """List what an archive (or an archive directory) contains"""
    if archive.lower().endswith(ZIP_EXTENSION):
        engine = TransferEngine('', emitter=QueuedEmitter())
        preview = execute(engine, lambda: engine.preview_native_archive(archive), engine.cancel_import, "Reading")
        if preview:
            display_preview(preview)
        return

    if os.path.isdir(archive):
        table = Table(title=f"📁 {archive}", box=box.ROUNDED)
        table.add_column("File", style="cyan")
        table.add_column("Size", justify="right", style="green")
        for entry in scan_import_dir(archive):
            table.add_row(entry['name'], entry['size_human'])
        console.print(table)
        return

    if not host:
        console.print("[red]❌ --host is required to preview a mongodump archive[/red]")
        sys.exit(1)
    engine = open_engine(host, settings)
    preview = execute(engine, lambda: engine.preview_archive(archive), engine.cancel_import, "Reading archive")
    if preview:
        display_preview(preview)


@main.command('tools')
def tools_cmd():
    """Show whether mongodump/mongorestore are installed"""
    tools = display_tools_table()
    if not all(info['available'] for info in tools.values()):
        console.print(f"[dim]Install MongoDB Database Tools: {TOOL_DOWNLOAD_URL}[/dim]")


@main.group('hosts')
def hosts_group():
    """Manage saved hosts"""


@hosts_group.command('list')
@click.option('--check/--no-check', default=True, help='Test each connection')
@click.pass_obj
def hosts_list(settings, check):
    """List saved hosts"""
    hosts = settings.list_hosts()
    if not hosts:
        console.print("[yellow]No saved hosts found[/yellow]")
        console.print("[dim]Add one with: mt hosts add <name> <uri>[/dim]")
        return

    table = Table(title="💾 Saved Hosts", box=box.ROUNDED)
    table.add_column("Name", style="cyan")
    table.add_column("URI", style="green")
    if check:
        table.add_column("Status", style="yellow")

    for name, uri in hosts.items():
        row = [name, mask_uri_credentials(uri)]
        if check:
            is_online, _ = test_connection(uri)
            row.append("🟢 Online" if is_online else "🔴 Offline")
        table.add_row(*row)

    console.print(table)
    console.print(f"\n[dim]Total: {len(hosts)} hosts[/dim]")


@hosts_group.command('add')
@click.argument('name')
@click.argument('uri')
@click.pass_obj
def hosts_add(settings, name, uri):
    """Save a host URI under a name"""
    settings.add_host(name, uri)
    console.print(f"[green]✅ Saved host '{name}'[/green]")


@hosts_group.command('remove')
@click.argument('name')
@click.pass_obj
def hosts_remove(settings, name):
    """Delete a saved host"""
    if settings.delete_host(name):
        console.print(f"[green]✅ Removed host '{name}'[/green]")
    else:
        console.print(f"[red]❌ Host '{name}' not found[/red]")
        sys.exit(1)


if __name__ == '__main__':
    main()
