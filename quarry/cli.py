# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Command-line interface for Quarry."""

import sys
import threading
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from quarry.catalog.introspector import SchemaIntrospector
from quarry.catalog.router import DataSourceRouter
from quarry.core.config import Config
from quarry.core.errors import QuarryError
from quarry.loader.bulk import BulkLoader
from quarry.loader.files import read_rows
from quarry.loader.validation import ImportValidator
from quarry.search.cache import SearchCache
from quarry.search.channel import EventChannel, ScanEventType
from quarry.search.engine import SearchEngine
from quarry.search.export import TableExporter
from quarry.search.orchestrator import SearchOrchestrator

console = Console()


def _load_config(path: str) -> Config:
    try:
        return Config.from_yaml(path)
    except Exception as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)


@click.group()
@click.version_option(version="0.1.0", prog_name="quarry")
def cli():
    """Quarry - schema-driven search and loading for relational databases.

    \b
    Quick start:
        quarry tables -c config.yaml
        quarry scan aspirin -c config.yaml -d chem
        quarry serve -c config.yaml
    """
    pass


@cli.command()
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    required=True,
    help="Path to config YAML file.",
)
@click.option(
    "--datasource", "-d",
    default=None,
    help="Datasource or user database (default: the default datasource).",
)
def tables(config: str, datasource: Optional[str]):
    """List the tables of a datasource with row estimates and comments."""
    cfg = _load_config(config)
    router = DataSourceRouter(cfg)
    try:
        ds = router.resolve(datasource or cfg.default_datasource)
        descriptors = SchemaIntrospector().list_tables(ds)
    except QuarryError as e:
        console.print(f"[red]{e.kind}:[/red] {e}")
        sys.exit(1)
    finally:
        router.close()

    table = Table(title=f"Tables in {ds.name} ({ds.kind.value})", show_header=True)
    table.add_column("Table", style="cyan")
    table.add_column("Columns", justify="right")
    table.add_column("Rows (est.)", justify="right")
    table.add_column("Comment")
    for t in descriptors:
        table.add_row(
            t.name,
            str(len(t.columns)),
            str(t.row_count_estimate) if t.row_count_estimate is not None else "",
            t.comment or "",
        )
    console.print(table)


@cli.command()
@click.argument("value")
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    required=True,
    help="Path to config YAML file.",
)
@click.option(
    "--datasource", "-d",
    default=None,
    help="Datasource or user database to scan.",
)
@click.option(
    "--mode", "-m",
    type=click.Choice(["auto", "text_only", "numeric_only", "all"]),
    default=None,
    help="Which columns to search (default from config).",
)
@click.option(
    "--deadline",
    type=float,
    default=None,
    help="Stop after this many seconds and report partial results.",
)
def scan(value: str, config: str, datasource: Optional[str], mode: Optional[str], deadline: Optional[float]):
    """Find every table containing VALUE.

    \b
    Examples:
        quarry scan 123 -c config.yaml -d chem
        quarry scan aspirin -c config.yaml -d chem --mode text_only
    """
    cfg = _load_config(config)
    name = datasource or cfg.default_datasource

    router = DataSourceRouter(cfg)
    introspector = SchemaIntrospector()
    engine = SearchEngine(router, introspector, SearchCache.from_config(cfg.cache), cfg.search)
    orchestrator = SearchOrchestrator(
        router, introspector, engine, deadline_seconds=cfg.search.deadline_seconds
    )
    channel = EventChannel()
    worker = threading.Thread(
        target=orchestrator.stream,
        args=(name, value, channel, mode, deadline),
        name="scan-worker",
        daemon=True,
    )
    worker.start()

    summary = None
    error = None
    try:
        with console.status("[bold]Scanning...", spinner="dots") as status:
            for event in channel:
                data = event.data
                if event.type is ScanEventType.START:
                    console.print(f"[bold]Searching {name} for '{data['search_value']}'[/bold] "
                                  f"[dim]({data['mode_label']})[/dim]")
                elif event.type is ScanEventType.PROGRESS:
                    status.update(
                        f"Scanning ({data['searched_count'] + 1}/{data['total_count']}): "
                        f"[dim]{data['current_table']}[/dim]"
                    )
                elif event.type is ScanEventType.FOUND:
                    match = data["table"]
                    console.print(f"  [green]found[/green] {match['table']} ({match['match_count']} rows)")
                elif event.type is ScanEventType.TABLE_ERROR:
                    console.print(f"  [yellow]skipped[/yellow] {data['table']}: {data['error']}")
                elif event.type is ScanEventType.TIMEOUT:
                    console.print(f"[yellow]Deadline reached after {data['searched_count']} tables[/yellow]")
                elif event.type is ScanEventType.COMPLETE:
                    summary = data
                elif event.type is ScanEventType.ERROR:
                    error = data
    except KeyboardInterrupt:
        channel.close()
        console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(130)
    finally:
        worker.join(timeout=5)
        router.close()

    if error is not None:
        console.print(f"[red]{error['error']}:[/red] {error['message']}")
        sys.exit(1)

    if summary and summary["tables"]:
        table = Table(show_header=True)
        table.add_column("Table", style="cyan")
        table.add_column("Matches", justify="right")
        table.add_column("Rows (est.)", justify="right")
        table.add_column("Comment")
        for match in summary["tables"]:
            estimate = match["row_count_estimate"]
            table.add_row(
                match["table"],
                str(match["match_count"]),
                str(estimate) if estimate is not None else "",
                match["comment"] or "",
            )
        console.print(table)
    if summary:
        console.print(
            f"[dim]{summary['found_count']} matching tables, {summary['searched_count']} searched "
            f"in {summary['total_time_ms']}ms[/dim]"
        )


@cli.command(name="import")
@click.argument("table")
@click.argument("file", type=click.Path(exists=True))
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    required=True,
    help="Path to config YAML file.",
)
@click.option(
    "--datasource", "-d",
    default=None,
    help="Datasource or user database holding TABLE.",
)
@click.option(
    "--strategy", "-s",
    type=click.Choice(["append", "overwrite"]),
    default="append",
    help="append skips rows already present; overwrite deletes all rows first.",
)
@click.option(
    "--transactional",
    is_flag=True,
    help="All-or-nothing: roll back everything on the first failure.",
)
@click.option(
    "--key", "-k",
    "keys",
    multiple=True,
    help="Duplicate detection column for append (repeatable; default: primary key).",
)
@click.option(
    "--validate/--no-validate",
    default=True,
    help="Check rows against the table before importing.",
)
def import_file(table: str, file: str, config: str, datasource: Optional[str], strategy: str,
                transactional: bool, keys: tuple[str, ...], validate: bool):
    """Bulk import FILE (CSV, TSV, JSON or JSONL) into TABLE.

    \b
    Examples:
        quarry import compounds compounds.csv -c config.yaml -d chem
        quarry import compounds compounds.csv -c config.yaml -s overwrite --transactional
    """
    cfg = _load_config(config)
    name = datasource or cfg.default_datasource

    try:
        rows = read_rows(file)
    except ValueError as e:
        console.print(f"[red]Cannot read {file}:[/red] {e}")
        sys.exit(1)
    console.print(f"Read {len(rows)} rows from {Path(file).name}")

    router = DataSourceRouter(cfg)
    introspector = SchemaIntrospector()
    try:
        if validate:
            check = ImportValidator(
                router, introspector, sample_rows=cfg.loader.validation_sample_rows
            ).validate(name, table, rows)
            for warning in check.warnings:
                console.print(f"[yellow]warning:[/yellow] {warning}")
            if not check.valid:
                for problem in check.errors:
                    console.print(f"[red]error:[/red] {problem}")
                sys.exit(1)

        loader = BulkLoader(router, introspector, SearchCache.from_config(cfg.cache),
                            batch_size=cfg.loader.batch_size)
        with console.status("[bold]Importing...", spinner="dots"):
            report = loader.bulk_import(
                name, table, rows,
                strategy=strategy,
                transactional=transactional,
                key_columns=list(keys) if keys else None,
            )
    except QuarryError as e:
        console.print(f"[red]{e.kind}:[/red] {e}")
        sys.exit(1)
    finally:
        router.close()

    colour = "green" if report.failure == 0 else "yellow"
    console.print(
        f"[{colour}]{report.success}/{report.total} rows imported[/{colour}] "
        f"[dim]({report.duration_ms}ms)[/dim]"
    )
    if report.deleted_rows is not None:
        console.print(f"  deleted before import: {report.deleted_rows}")
    if report.skipped:
        console.print(f"  skipped as duplicates: {report.skipped}")
    for problem in report.errors:
        console.print(f"  [red]{problem}[/red]")
    if report.failure:
        sys.exit(1)


@cli.command()
@click.argument("table")
@click.argument("output", type=click.Path(dir_okay=False))
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    required=True,
    help="Path to config YAML file.",
)
@click.option(
    "--datasource", "-d",
    default=None,
    help="Datasource or user database holding TABLE.",
)
@click.option(
    "--value", "-v",
    default=None,
    help="Export only rows matching this search value.",
)
@click.option(
    "--mode", "-m",
    type=click.Choice(["auto", "text_only", "numeric_only", "all"]),
    default=None,
    help="Which columns --value is matched against (default from config).",
)
@click.option(
    "--limit", "-n",
    type=int,
    default=None,
    help="Maximum rows to export (default from config).",
)
def export(table: str, output: str, config: str, datasource: Optional[str], value: Optional[str],
           mode: Optional[str], limit: Optional[int]):
    """Export TABLE, or the rows matching a value, to OUTPUT (.csv or .xlsx).

    \b
    Examples:
        quarry export compounds compounds.csv -c config.yaml -d chem
        quarry export compounds aspirin.xlsx -c config.yaml -d chem -v aspirin
    """
    cfg = _load_config(config)
    name = datasource or cfg.default_datasource

    router = DataSourceRouter(cfg)
    engine = SearchEngine(router, SchemaIntrospector(), SearchCache.from_config(cfg.cache), cfg.search)
    try:
        result = TableExporter(engine).export_to_path(name, table, output, value, mode, limit)
    except QuarryError as e:
        console.print(f"[red]{e.kind}:[/red] {e}")
        sys.exit(1)
    except ValueError as e:
        console.print(f"[red]Cannot export:[/red] {e}")
        sys.exit(1)
    finally:
        router.close()

    console.print(f"[green]Exported {result.row_count} rows to {Path(output).name}[/green]")


@cli.command()
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    help="Path to config YAML file.",
)
@click.option(
    "--port", "-p",
    default=None,
    type=int,
    help="Port to bind the server to.",
)
@click.option(
    "--host", "-h",
    default=None,
    help="Host address to bind the server to.",
)
@click.option(
    "--reload",
    is_flag=True,
    help="Enable auto-reload for development.",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug logging.",
)
def serve(config: Optional[str], port: Optional[int], host: Optional[str], reload: bool, debug: bool):
    """Start the API server.

    \b
    Examples:
        quarry serve -c config.yaml
        quarry serve -c config.yaml --port 8080
        quarry serve -c config.yaml --debug   # Enable debug logging
    """
    import uvicorn

    from quarry.server.config import ServerConfig

    cfg = _load_config(config) if config else Config()

    server_config = ServerConfig.from_yaml_data(cfg.server)
    if host:
        server_config.host = host
    if port:
        server_config.port = port

    if debug:
        import logging
        log_file = Path('.quarry/debug.log')
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        logging.getLogger('quarry').addHandler(file_handler)
        logging.getLogger('quarry').setLevel(logging.DEBUG)

    log_level = "debug" if debug else "info"

    console.print(f"[bold]Starting Quarry API server[/bold]")
    console.print(f"  Host: {server_config.host}")
    console.print(f"  Port: {server_config.port}")
    console.print(f"  Config: {config or '(default)'}")
    if debug:
        console.print(f"  Debug logs: .quarry/debug.log")
    console.print()

    if reload:
        import os
        if config:
            os.environ["QUARRY_CONFIG"] = config
        uvicorn.run(
            "quarry.server.app:get_app",
            factory=True,
            host=server_config.host,
            port=server_config.port,
            reload=True,
            reload_dirs=["quarry"],
            log_level=log_level,
        )
    else:
        from quarry.server.app import create_app

        app = create_app(cfg, server_config)
        uvicorn.run(app, host=server_config.host, port=server_config.port, log_level=log_level)


@cli.command()
def init():
    """Create a sample config file.

    Generates config.yaml in the current directory with example settings.
    """
    sample_config = '''# Quarry Configuration

# Configured datasources: each gets its own connection pool.
# The default datasource's server also hosts user-created databases,
# reached by name through the same pool.
datasources:
  login:
    uri: mysql+pymysql://db.example.com:3306/login
    username: ${QUARRY_DB_USER}
    password: ${QUARRY_DB_PASSWORD}
    description: Default server
  chem:
    uri: mysql+pymysql://db.example.com:3306/chem
    username: ${QUARRY_DB_USER}
    password: ${QUARRY_DB_PASSWORD}
    pool_size: 15

default_datasource: login

search:
  deadline_seconds: 600
  default_page_size: 50
  default_mode: auto

cache:
  ttl_minutes: 30
  idle_timeout_minutes: 10
  capacity: 1000

loader:
  batch_size: 5000

server:
  host: 127.0.0.1
  port: 8000
'''

    config_path = Path("config.yaml")
    if config_path.exists():
        console.print("[yellow]config.yaml already exists.[/yellow]")
        return

    config_path.write_text(sample_config)
    console.print("[green]Created config.yaml[/green]")


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
