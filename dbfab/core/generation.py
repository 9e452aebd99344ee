"""Set-based table generation: every chunk is one INSERT .. SELECT."""

import logging
import time
from typing import List, Optional

from tqdm import tqdm

from dbfab.core.database import DatabaseConnection
from dbfab.core.models import GenerateResult, GenerationSettings, TableSpec
from dbfab.dialects.base import SqlDialect


logger = logging.getLogger(__name__)


def plan_chunks(row_count: int, batch_size: Optional[int] = None) -> List[int]:
    """Split ``row_count`` into chunk sizes; ``None`` means a single chunk."""
    if row_count <= 0:
        return []
    if not batch_size or batch_size >= row_count:
        return [row_count]
    full, rest = divmod(row_count, batch_size)
    return [batch_size] * full + ([rest] if rest else [])


class GenerationEngine:
    """Fills tables in the database without moving rows through Python."""

    def __init__(self, db_connection: DatabaseConnection, dialect: SqlDialect,
                 settings: Optional[GenerationSettings] = None):
        self.db_connection = db_connection
        self.dialect = dialect
        self.settings = settings or GenerationSettings()

    def resolve_row_origin(self, table: TableSpec) -> int:
        """Row ordinals already consumed by the first sequence column.

        The next value is ``max + step`` (``min + step`` for descending
        sequences); the origin is the number of sequence positions before it.
        Other sequence columns share the same origin.
        """
        column = table.first_sequence_column()
        if column is None:
            return 0
        generator = column.generator
        current = self.db_connection.fetch_scalar(
            self.dialect.max_value_sql(table.name, column.name, use_min=generator.step < 0)
        )
        if current is None:
            return 0
        next_value = int(current) + generator.step
        origin = (next_value - generator.start) // generator.step
        logger.info(f"Resuming {table.name}.{column.name} at {next_value} (row origin {origin})")
        return origin

    def optimize(self, table_name: str) -> float:
        """Run the dialect's maintenance statements; returns elapsed ms."""
        start_time = time.time()
        for sql in self.dialect.optimize_statements(table_name):
            self.db_connection.execute(sql)
        elapsed = (time.time() - start_time) * 1000
        logger.info(f"Optimized {table_name} in {elapsed:.0f}ms")
        return elapsed

    def generate(self, table: TableSpec, row_count: int, drop_first: Optional[bool] = None,
                 optimize: Optional[bool] = None) -> GenerateResult:
        """Generate ``row_count`` rows into ``table``.

        Runs drop, create, truncate (skipped when the table was just
        dropped), sequence resume, the chunked inserts and finally optimize.
        ``drop_first`` and ``optimize`` override the settings.
        """
        settings = self.settings
        drop_first = settings.drop_first if drop_first is None else drop_first
        optimize = settings.optimize if optimize is None else optimize
        result = GenerateResult(table_name=table.name)
        start_time = time.time()

        if drop_first:
            logger.info(f"Dropping table {table.name}")
            self.db_connection.execute(self.dialect.drop_table_sql(table.name))
        if settings.create_table:
            self.db_connection.execute(self.dialect.create_table_sql(table))
        if settings.truncate_first and not drop_first:
            logger.info(f"Truncating table {table.name}")
            self.db_connection.execute(self.dialect.truncate_table_sql(table.name))

        origin = self.resolve_row_origin(table) if settings.resume_sequences else 0
        chunks = plan_chunks(row_count, settings.batch_size)
        logger.info(f"Generating {row_count} rows for {table.name} in {len(chunks)} chunk(s)")

        with tqdm(total=row_count, desc=f"Generating {table.name}",
                  disable=not settings.show_progress) as pbar:
            for index, size in enumerate(chunks):
                sql = self.dialect.bulk_insert_sql(table, size, origin)
                self.db_connection.execute(sql)
                origin += size
                result.rows_inserted += size
                result.chunks += 1
                pbar.update(size)
                logger.debug(f"Chunk {index + 1}/{len(chunks)} completed: {size} rows")

        result.generate_ms = (time.time() - start_time) * 1000
        if optimize:
            result.optimize_ms = self.optimize(table.name)
        result.duration_ms = (time.time() - start_time) * 1000

        logger.info(f"Inserted {result.rows_inserted} rows into {table.name} "
                    f"in {result.duration_ms / 1000:.2f} seconds")
        return result
