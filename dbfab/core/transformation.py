"""Post-generation transformations applied batch by batch."""

import logging
import re
import time
import uuid
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from dbfab.core.database import DatabaseConnection
from dbfab.core.exceptions import ConfigurationError, TableReplacementError
from dbfab.core.models import GenerationSettings, TransformationBatch, TransformResult
from dbfab.dialects.base import ReplacementPass, SqlDialect, active_transformations


logger = logging.getLogger(__name__)


def check_assignments(table_name: str, batch: TransformationBatch) -> None:
    """Reject batches that assign the same column more than once."""
    assigned = set()
    for transformation in active_transformations(batch):
        for column in transformation.assigned_columns:
            if column in assigned:
                raise ConfigurationError(
                    f"Column {table_name}.{column} is assigned more than once in one batch"
                    + (f" ({batch.description})" if batch.description else "")
                )
            assigned.add(column)


def orphan_pattern(table_name: str) -> "re.Pattern":
    """Names of shadow tables left behind by a failed replacement of ``table_name``."""
    return re.compile(rf"^_{re.escape(table_name)}_(new|old)_\d+_[0-9a-f]+$")


class TableReplacementProtocol:
    """Rebuilds a table with transformations applied, then swaps it in.

    1. create ``_<table>_new_<ts>_<hex>`` with the table's structure,
    2. populate it with an INSERT .. SELECT applying the transformations,
    3. rename the table to ``_<table>_old_<ts>_<hex>`` and the new one to
       the table's name in a single statement,
    4. drop the old table.

    A failure after step 1 raises ``TableReplacementError`` listing the
    tables left behind. They are not cleaned up automatically.
    """

    def __init__(self, db_connection: DatabaseConnection, dialect: SqlDialect, table_name: str):
        self.db_connection = db_connection
        self.dialect = dialect
        self.table_name = table_name
        suffix = f"{int(time.time())}_{uuid.uuid4().hex[:8]}"
        self.shadow_name = f"_{table_name}_new_{suffix}"
        self.old_name = f"_{table_name}_old_{suffix}"

    def _fail(self, step: str, orphaned: List[str], error: Exception) -> TableReplacementError:
        logger.error(
            f"Table replacement of {self.table_name} failed during {step}: {error}. "
            f"Orphaned tables: {', '.join(orphaned) or 'none'}"
        )
        return TableReplacementError(self.table_name, step, orphaned, message=str(error))

    def run(self, columns: Sequence[str], replacement: ReplacementPass) -> None:
        dialect = self.dialect
        logger.info(
            f"Rebuilding {self.table_name} for {len(replacement.transformations)} transformation(s)"
        )
        populate_sql = dialect.populate_shadow_sql(
            self.table_name, self.shadow_name, list(columns),
            replacement.transformations, replacement.strict,
        )
        self.db_connection.execute(dialect.create_shadow_sql(self.table_name, self.shadow_name))

        try:
            self.db_connection.execute(populate_sql)
        except SQLAlchemyError as e:
            raise self._fail("populate", [self.shadow_name], e) from e

        try:
            self.db_connection.execute(
                dialect.exchange_tables_sql(self.table_name, self.shadow_name, self.old_name)
            )
        except SQLAlchemyError as e:
            raise self._fail("rename", [self.shadow_name], e) from e

        try:
            self.db_connection.execute(dialect.drop_table_sql(self.old_name))
        except SQLAlchemyError as e:
            raise self._fail("drop", [self.old_name], e) from e


class TransformationEngine:
    """Applies transformation batches strictly in order."""

    def __init__(self, db_connection: DatabaseConnection, dialect: SqlDialect,
                 settings: Optional[GenerationSettings] = None):
        self.db_connection = db_connection
        self.dialect = dialect
        self.settings = settings or GenerationSettings()

    def apply(self, table_name: str, batches: Iterable[TransformationBatch]) -> TransformResult:
        """Apply ``batches`` to ``table_name``; empty batches are skipped."""
        batches = [batch for batch in batches if len(batch)]
        result = TransformResult(table_name=table_name)
        if not batches:
            return result

        start_time = time.time()
        for batch in batches:
            check_assignments(table_name, batch)

        columns = self.dialect.get_columns(self.db_connection, table_name)
        for index, batch in enumerate(batches, 1):
            label = f" ({batch.description})" if batch.description else ""
            logger.info(f"Applying batch {index}/{len(batches)} to {table_name}{label}")
            statements = self.dialect.transformation_statements(
                table_name, batch, columns, strict=self.settings.strict_templates
            )
            for statement in statements:
                if isinstance(statement, ReplacementPass):
                    TableReplacementProtocol(self.db_connection, self.dialect, table_name).run(
                        columns, statement
                    )
                    result.replacement_passes += 1
                else:
                    self.db_connection.execute(statement)
            result.batches_applied += 1

        result.duration_ms = (time.time() - start_time) * 1000
        logger.info(f"Applied {result.batches_applied} batch(es) to {table_name} "
                    f"in {result.duration_ms / 1000:.2f} seconds")
        return result

    def sweep_orphaned_tables(self, table_name: str) -> List[str]:
        """Drop shadow tables left behind by failed replacements of ``table_name``."""
        pattern = orphan_pattern(table_name)
        orphans = [name for name in self.dialect.list_tables(self.db_connection) if pattern.match(name)]
        for name in orphans:
            logger.info(f"Dropping orphaned table {name}")
            self.db_connection.execute(self.dialect.drop_table_sql(name))
        return orphans
