"""Command-line interface for DBFab."""

import click
import logging
import sys
from functools import wraps
from typing import Any, Dict, Optional

from pydantic import ValidationError

from dbfab.core.database import DatabaseConfig, DatabaseConnection
from dbfab.core.escaping import SUPPORTED_DIALECTS
from dbfab.core.exceptions import DBFabError, TableReplacementError
from dbfab.core.generator import DataGenerator
from dbfab.core.loader import ScenarioDocument, load_document
from dbfab.core.models import GenerationSettings, ScenarioResult
from dbfab.core.utils import format_bytes, format_duration
from dbfab.demo import build_demo_scenario


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def database_options(func):
    """Connection options shared by every command; they override the config file."""
    options = [
        click.option('--driver', type=click.Choice(list(SUPPORTED_DIALECTS)), help='Database driver'),
        click.option('--host', '-h', help='Database host'),
        click.option('--port', '-p', type=int, help='Database port'),
        click.option('--database', '-d', help='Database name, or file path for SQLite'),
        click.option('--username', '-u', help='Database username'),
        click.option('--password', help='Database password'),
        click.option('--catalog', help='Trino catalog'),
        click.option('--schema', 'schema_name', help='Trino schema'),
    ]
    for option in reversed(options):
        func = option(func)

    @wraps(func)
    def wrapper(*args, **kwargs):
        overrides = {key: kwargs.pop(key) for key in
                     ('driver', 'host', 'port', 'database', 'username', 'password',
                      'catalog', 'schema_name')}
        kwargs['db_overrides'] = {k: v for k, v in overrides.items() if v is not None}
        return func(*args, **kwargs)

    return wrapper


def settings_options(func):
    options = [
        click.option('--batch-size', type=int, help='Rows per INSERT statement'),
        click.option('--drop-first/--no-drop-first', default=None, help='Drop tables before generating'),
        click.option('--truncate-first/--no-truncate-first', default=None,
                     help='Empty tables before generating'),
        click.option('--optimize/--no-optimize', default=None, help='Run engine maintenance afterwards'),
        click.option('--strict-templates/--no-strict-templates', default=None,
                     help='Reject templates referencing unknown columns'),
        click.option('--progress/--no-progress', 'show_progress', default=None,
                     help='Show a progress bar per table'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_database_config(document: Optional[ScenarioDocument],
                          overrides: Dict[str, Any]) -> DatabaseConfig:
    base: Dict[str, Any] = {}
    if document is not None and document.database is not None:
        base = document.database.model_dump()
    base.update(overrides)
    try:
        return DatabaseConfig(**base)
    except ValidationError as e:
        raise click.ClickException(f"Invalid database configuration: {e}")


def build_settings(document: Optional[ScenarioDocument], **overrides) -> GenerationSettings:
    settings = document.settings if document is not None else GenerationSettings()
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if not overrides:
        return settings
    try:
        return GenerationSettings(**{**settings.model_dump(), **overrides})
    except ValidationError as e:
        raise click.ClickException(f"Invalid settings: {e}")


def _load(config_file: str) -> ScenarioDocument:
    try:
        return load_document(config_file)
    except DBFabError as e:
        raise click.ClickException(f"Invalid scenario file {config_file}: {e}")


def print_scenario_summary(result: ScenarioResult) -> None:
    click.echo(f"\n🎉 Scenario '{result.name}' completed successfully!")
    click.echo("📊 Summary:")
    click.echo(f"  Total rows inserted: {result.total_rows_inserted:,}")
    click.echo(f"  Generate: {format_duration(result.generate_ms)}")
    click.echo(f"  Transform: {format_duration(result.transform_ms)}")
    click.echo(f"  Optimize: {format_duration(result.optimize_ms)}")
    click.echo(f"  Total time: {format_duration(result.duration_ms)}")
    click.echo("\n📋 Tables:")
    for table_name, stats in result.table_stats().items():
        click.echo(f"  • {table_name}: {stats['rows_inserted']:,} rows inserted, "
                   f"{stats['batches_applied']} batch(es) applied")


def _report_failure(e: Exception) -> None:
    click.echo(f"❌ Error: {e}", err=True)
    if isinstance(e, TableReplacementError) and e.orphaned_tables:
        click.echo(f"⚠️  Orphaned tables left behind: {', '.join(e.orphaned_tables)}", err=True)
        click.echo(f"   Remove them with: dbfab sweep {e.table}", err=True)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--quiet', '-q', is_flag=True, help='Suppress non-error output')
def cli(verbose: bool, quiet: bool):
    """JaySoft-DBFab - Fabricate synthetic data inside SQL databases."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif quiet:
        logging.getLogger().setLevel(logging.ERROR)


@cli.command()
@click.argument('config_file', type=click.Path(exists=True, dir_okay=False))
@database_options
@settings_options
def run(config_file: str, db_overrides: Dict[str, Any], **settings):
    """Run the scenario declared in CONFIG_FILE."""
    document = _load(config_file)
    if document.scenario is None:
        raise click.ClickException(f"{config_file} declares no scenario")

    db_config = build_database_config(document, db_overrides)
    generation_settings = build_settings(document, **settings)
    try:
        with DataGenerator(DatabaseConnection(db_config), generation_settings) as generator:
            click.echo(f"🚀 Running scenario '{document.scenario.name}' on {db_config.driver}...")
            result = generator.run_scenario(document.scenario)
        print_scenario_summary(result)
    except Exception as e:
        _report_failure(e)
        sys.exit(1)


@cli.command()
@click.argument('config_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--table', '-t', 'table_name', required=True, help='Table declared in CONFIG_FILE')
@click.option('--rows', '-r', type=int, required=True, help='Number of rows to generate')
@database_options
@settings_options
def generate(config_file: str, table_name: str, rows: int, db_overrides: Dict[str, Any],
             **settings):
    """Generate rows for one table declared in CONFIG_FILE."""
    document = _load(config_file)
    table = document.tables.get(table_name)
    if table is None:
        raise click.ClickException(
            f"Table '{table_name}' is not declared in {config_file}. "
            f"Available: {', '.join(document.tables) or 'none'}"
        )

    db_config = build_database_config(document, db_overrides)
    generation_settings = build_settings(document, **settings)
    try:
        with DataGenerator(DatabaseConnection(db_config), generation_settings) as generator:
            click.echo(f"🎲 Generating {rows:,} rows for {table_name}...")
            result = generator.generate(table, rows)
        click.echo(f"  ✅ {table_name}: {result.rows_inserted:,} rows inserted "
                   f"in {result.chunks} chunk(s), {format_duration(result.duration_ms)}")
    except Exception as e:
        _report_failure(e)
        sys.exit(1)


@cli.command()
@click.option('--users', type=int, default=1000, help='Number of users to generate')
@click.option('--orders', type=int, default=5000, help='Number of orders to generate')
@click.option('--seed', type=int, help='Seed for the Faker name pools')
@database_options
@settings_options
def demo(users: int, orders: int, seed: Optional[int], db_overrides: Dict[str, Any], **settings):
    """Run the built-in users/orders demo scenario."""
    if users < 0 or orders < 0:
        raise click.BadParameter("row counts must not be negative")
    db_overrides.setdefault('driver', 'sqlite')
    if db_overrides['driver'] == 'sqlite':
        db_overrides.setdefault('database', 'dbfab_demo.db')

    db_config = build_database_config(None, db_overrides)
    if settings.get('drop_first') is None:
        settings['drop_first'] = True
    generation_settings = build_settings(None, **settings)
    scenario = build_demo_scenario(users, orders, seed)
    try:
        with DataGenerator(DatabaseConnection(db_config), generation_settings) as generator:
            click.echo(f"🚀 Running demo scenario on {db_config.driver}...")
            result = generator.run_scenario(scenario)
            print_scenario_summary(result)
            click.echo("\n🔍 Sample users:")
            for row in generator.query_rows("users", limit=3, order_by="id"):
                click.echo(f"  {row}")
    except Exception as e:
        _report_failure(e)
        sys.exit(1)


@cli.command()
@click.argument('table_name')
@click.option('--config', '-c', 'config_file', type=click.Path(exists=True, dir_okay=False),
              help='Scenario file providing the database section')
@database_options
def info(table_name: str, config_file: Optional[str], db_overrides: Dict[str, Any]):
    """Show row count, size and columns of TABLE_NAME."""
    document = _load(config_file) if config_file else None
    db_config = build_database_config(document, db_overrides)
    try:
        with DataGenerator(DatabaseConnection(db_config)) as generator:
            columns = generator.get_columns(table_name)
            if not columns:
                raise click.ClickException(f"Table '{table_name}' not found")
            click.echo(f"\n📋 Table: {table_name}")
            click.echo(f"  Rows: {generator.count_rows(table_name):,}")
            click.echo(f"  Size: {format_bytes(generator.get_table_size(table_name))}")
            click.echo(f"  Columns: {', '.join(columns)}")
    except click.ClickException:
        raise
    except Exception as e:
        _report_failure(e)
        sys.exit(1)


@cli.command()
@click.argument('table_name')
@click.option('--config', '-c', 'config_file', type=click.Path(exists=True, dir_okay=False),
              help='Scenario file providing the database section')
@database_options
def sweep(table_name: str, config_file: Optional[str], db_overrides: Dict[str, Any]):
    """Drop shadow tables left behind by failed rebuilds of TABLE_NAME."""
    document = _load(config_file) if config_file else None
    db_config = build_database_config(document, db_overrides)
    try:
        with DataGenerator(DatabaseConnection(db_config)) as generator:
            dropped = generator.sweep_orphaned_tables(table_name)
        if dropped:
            click.echo(f"🧹 Dropped {len(dropped)} orphaned table(s):")
            for name in dropped:
                click.echo(f"  • {name}")
        else:
            click.echo(f"✅ No orphaned tables found for {table_name}")
    except Exception as e:
        _report_failure(e)
        sys.exit(1)


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == '__main__':
    main()
