"""High-level entry point binding a database connection to its dialect."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from dbfab.core.database import DatabaseConnection
from dbfab.core.exceptions import ConfigurationError
from dbfab.core.generation import GenerationEngine
from dbfab.core.models import (
    GenerateResult, GenerationSettings, Scenario, ScenarioResult, TableSpec, TransformationBatch,
    TransformResult,
)
from dbfab.core.scenario import ScenarioRunner
from dbfab.core.transformation import TransformationEngine
from dbfab.core.utils import format_bytes
from dbfab.dialects.registry import get_dialect


logger = logging.getLogger(__name__)


class DataGenerator:
    """Generates and transforms synthetic data in one database.

    Example::

        config = DatabaseConfig(driver="sqlite", database="demo.db")
        with DataGenerator(DatabaseConnection(config)) as generator:
            generator.generate(users_table, 10_000)
    """

    def __init__(self, db_connection: DatabaseConnection,
                 settings: Optional[GenerationSettings] = None):
        """Initialize the generator; the dialect follows the connection's driver."""
        self.db_connection = db_connection
        self.settings = settings or GenerationSettings()
        self.dialect = get_dialect(db_connection.config.driver, db_connection.config)

    def connect(self) -> None:
        self.db_connection.connect()
        self.dialect.prepare(self.db_connection)

    def close(self) -> None:
        self.db_connection.close()

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _settings(self, overrides: Dict[str, Any]) -> GenerationSettings:
        unknown = sorted(set(overrides) - set(GenerationSettings.model_fields))
        if unknown:
            raise ConfigurationError(f"Unknown generation settings: {', '.join(unknown)}")
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if not overrides:
            return self.settings
        try:
            return GenerationSettings(**{**self.settings.model_dump(), **overrides})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid generation settings: {e}") from e

    # Table management

    def create_table(self, table: TableSpec) -> None:
        self.db_connection.execute(self.dialect.create_table_sql(table))

    def drop_table(self, table_name: str) -> None:
        self.db_connection.execute(self.dialect.drop_table_sql(table_name))

    def truncate_table(self, table_name: str) -> None:
        self.db_connection.execute(self.dialect.truncate_table_sql(table_name))

    # Generation and transformation

    def generate(self, table: TableSpec, row_count: int, **overrides) -> GenerateResult:
        """Generate rows into ``table``; keyword arguments override settings."""
        settings = self._settings(overrides)
        return GenerationEngine(self.db_connection, self.dialect, settings).generate(table, row_count)

    def transform(self, table_name: str, batches: Iterable[TransformationBatch],
                  **overrides) -> TransformResult:
        settings = self._settings(overrides)
        return TransformationEngine(self.db_connection, self.dialect, settings).apply(
            table_name, batches
        )

    def run_scenario(self, scenario: Scenario, **overrides) -> ScenarioResult:
        settings = self._settings(overrides)
        return ScenarioRunner(self.db_connection, self.dialect, settings).run(scenario)

    def optimize(self, table_name: str) -> float:
        """Run engine maintenance for a table; returns elapsed milliseconds."""
        return GenerationEngine(self.db_connection, self.dialect, self.settings).optimize(table_name)

    def sweep_orphaned_tables(self, table_name: str) -> List[str]:
        """Drop shadow tables left behind by failed table replacements."""
        engine = TransformationEngine(self.db_connection, self.dialect, self.settings)
        return engine.sweep_orphaned_tables(table_name)

    # Inspection

    def query_rows(self, table_name: str, limit: int = 100,
                   order_by: Optional[str] = None) -> List[Dict[str, Any]]:
        rows = self.db_connection.fetch_all(self.dialect.select_rows_sql(table_name, limit, order_by))
        return [dict(row._mapping) for row in rows]

    def count_rows(self, table_name: str) -> int:
        return int(self.db_connection.fetch_scalar(self.dialect.count_rows_sql(table_name)) or 0)

    def get_max_value(self, table_name: str, column: str) -> Any:
        return self.db_connection.fetch_scalar(self.dialect.max_value_sql(table_name, column))

    def get_columns(self, table_name: str) -> List[str]:
        return self.dialect.get_columns(self.db_connection, table_name)

    def get_table_size(self, table_name: str) -> int:
        """On-disk size of a table in bytes, as reported by the engine."""
        return self.dialect.get_table_size(self.db_connection, table_name)

    def get_table_size_for_human(self, table_name: str) -> str:
        return format_bytes(self.get_table_size(table_name))
