"""Trino dialect, writing Iceberg tables.

Tables are addressed as ``"catalog"."schema"."table"``. UNNEST over
``sequence()`` is capped at 10,000 entries per call, so larger chunks
cross-join several bounded levels.
"""

import math
from typing import Any, Dict, List, Optional, Tuple

from dbfab.core.database import DatabaseConfig, DatabaseConnection
from dbfab.core.exceptions import UnsupportedTransformationError
from dbfab.core.models import (
    ColumnType, LookupTransformation, MutateTransformation, SwapTransformation,
    TemplateTransformation, TransformationBatch,
)
from dbfab.dialects.base import (
    DrawTags, ExpressionCompiler, RowSource, SqlDialect, Statement, UniformDraw,
    active_transformations,
)


SEQUENCE_LIMIT = 10000
UUID_HEX_LENGTH = 32

# Iceberg maintenance procedures refuse thresholds below the catalog minimum
RETENTION_THRESHOLD = "7d"


class TrinoRandom(UniformDraw):
    """``random()`` is a double in [0, 1); ``random(n)`` an integer in [0, n)."""

    def unit(self, tag: int = 0) -> str:
        return "random()"

    def integer(self, n: int, tag: int = 0) -> str:
        return f"CAST(random({n}) AS BIGINT)"


class TrinoCompiler(ExpressionCompiler):
    dialect_name = "trino"
    type_map = {
        ColumnType.INTEGER: "INTEGER",
        ColumnType.BIGINT: "BIGINT",
        ColumnType.FLOAT: "DOUBLE",
        ColumnType.STRING: "VARCHAR",
        ColumnType.BOOLEAN: "BOOLEAN",
        ColumnType.DATETIME: "TIMESTAMP(6)",
        ColumnType.DATE: "DATE",
    }

    def random_string(self, length: int, tags: DrawTags) -> str:
        chunks = ["replace(CAST(uuid() AS VARCHAR), '-', '')"] * math.ceil(length / UUID_HEX_LENGTH)
        return f"substr({' || '.join(chunks)}, 1, {length})"

    def pick(self, items: str, n: int, tag: int) -> str:
        return f"element_at(ARRAY[{items}], 1 + {self.random.integer(n, tag)})"

    def lookup_definition(self, name: str, values: Tuple[Any, ...]) -> str:
        items = ", ".join(self.literal(v) for v in values)
        return f"{name} AS (SELECT ARRAY[{items}] AS arr)"

    def lookup_pick(self, name: str, n: int, tag: int) -> str:
        return f"element_at({name}.arr, 1 + {self.random.integer(n, tag)})"

    def from_epoch(self, seconds: str) -> str:
        return f"CAST(from_unixtime({seconds}, 'UTC') AS TIMESTAMP(6))"

    def uuid(self, tags: DrawTags) -> str:
        return "uuid()"

    def text_cast(self, expression: str) -> str:
        return f"CAST({expression} AS VARCHAR)"

    def position(self, draw: str, expression: str) -> str:
        return f"(CAST(floor({draw} * {self.length(expression)}) AS BIGINT) + 1)"


class TrinoDialect(SqlDialect):
    name = "trino"
    label = "Trino"
    compiler_class = TrinoCompiler
    random_class = TrinoRandom

    def __init__(self, config: Optional[DatabaseConfig] = None):
        super().__init__(config)
        self.catalog = config.catalog if config else "iceberg"
        self.schema = config.schema_name if config else "default"

    def __repr__(self) -> str:
        return f"TrinoDialect(catalog={self.catalog!r}, schema={self.schema!r})"

    def table_ref(self, name: str) -> str:
        q = self.quote_identifier
        return f"{q(self.catalog)}.{q(self.schema)}.{q(name)}"

    def prepare(self, connection: DatabaseConnection) -> None:
        q = self.quote_identifier
        connection.execute(f"CREATE SCHEMA IF NOT EXISTS {q(self.catalog)}.{q(self.schema)}")

    def create_table_sql(self, table) -> str:
        return f"{super().create_table_sql(table)} WITH (format = 'PARQUET')"

    def truncate_table_sql(self, table_name: str) -> str:
        return f"DELETE FROM {self.table_ref(table_name)}"

    def optimize_statements(self, table_name: str) -> List[str]:
        target = self.table_ref(table_name)
        return [
            f"ALTER TABLE {target} EXECUTE optimize",
            f"ALTER TABLE {target} EXECUTE expire_snapshots(retention_threshold => '{RETENTION_THRESHOLD}')",
            f"ALTER TABLE {target} EXECUTE remove_orphan_files(retention_threshold => '{RETENTION_THRESHOLD}')",
        ]

    def row_source(self, row_count: int, origin: int = 0) -> RowSource:
        if row_count <= SEQUENCE_LIMIT:
            row_index = f"(_g0.n + {origin})" if origin else "_g0.n"
            return RowSource([], f"UNNEST(sequence(1, {row_count})) AS _g0(n)", row_index)

        levels = 1
        while SEQUENCE_LIMIT ** levels < row_count:
            levels += 1
        parts = []
        terms = []
        for level in range(levels):
            weight = SEQUENCE_LIMIT ** (levels - 1 - level)
            # the outermost level only needs enough entries to reach row_count
            upper = math.ceil(row_count / weight) - 1 if level == 0 else SEQUENCE_LIMIT - 1
            parts.append(f"UNNEST(sequence(0, {upper})) AS _g{level}(n)")
            terms.append(f"_g{level}.n * {weight}" if weight > 1 else f"_g{level}.n")
        ordinal = f"({' + '.join(terms)} + 1)"
        row_index = f"({ordinal} + {origin})" if origin else ordinal
        return RowSource([], " CROSS JOIN ".join(parts), row_index, f"{ordinal} <= {row_count}")

    def bulk_insert_sql(self, table, row_count: int, origin: int = 0) -> str:
        # WITH belongs to the query part of INSERT in Trino
        source = self.row_source(row_count, origin)
        ctes = list(source.ctes)
        from_clause = source.from_clause
        for name, values in self.compiler.hoisted_lookups(table).items():
            ctes.append(self.compiler.lookup_definition(name, values))
            from_clause += f" CROSS JOIN {name}"
        columns = ", ".join(self.quote_identifier(c.name) for c in table.columns)
        select_list = ", ".join(
            self.compiler.compile_column(column, source.row_index, salt=position)
            for position, column in enumerate(table.columns, 1)
        )
        where = f" WHERE {source.where}" if source.where else ""
        return (f"INSERT INTO {self.table_ref(table.name)} ({columns}) "
                f"{self.with_clause(ctes)}SELECT {select_list} FROM {from_clause}{where}")

    def columns_query(self) -> Tuple[str, Dict[str, Any]]:
        return (
            f"SELECT column_name FROM {self.quote_identifier(self.catalog)}.information_schema.columns "
            "WHERE table_schema = :schema AND table_name = :name ORDER BY ordinal_position",
            {"schema": self.schema},
        )

    def tables_query(self) -> Tuple[str, Dict[str, Any]]:
        return (
            f"SELECT table_name FROM {self.quote_identifier(self.catalog)}.information_schema.tables "
            "WHERE table_schema = :schema",
            {"schema": self.schema},
        )

    def get_table_size(self, connection: DatabaseConnection, table_name: str) -> int:
        files = self.table_ref(f"{table_name}$files")
        size = connection.fetch_scalar(f"SELECT COALESCE(SUM(file_size_in_bytes), 0) FROM {files}")
        return int(size or 0)

    # Transformations

    def lookup_expression(self, table_name: str, transformation: LookupTransformation,
                          alias: str) -> str:
        q = self.quote_identifier
        return (f"(SELECT arbitrary({alias}.{q(transformation.from_column)}) "
                f"FROM {self.table_ref(transformation.from_table)} AS {alias} "
                f"WHERE {alias}.{q(transformation.lookup_column)} = "
                f"{q(table_name)}.{q(transformation.target_column)})")

    def _bound_mutation(self, transformation: MutateTransformation) -> str:
        """Mutation whose draws are bound once through a lambda argument."""
        needs_gate, needs_operation = self.mutate_draw_count(transformation)
        draws = []

        def draw() -> str:
            draws.append(self.random.unit())
            return f"_r[{len(draws)}]"

        gate = draw() if needs_gate else None
        operation = draw() if needs_operation else None
        column = self.quote_identifier(transformation.column)
        body = self.mutate_expression(column, transformation, gate, operation, draw())
        return f"element_at(transform(ARRAY[ARRAY[{', '.join(draws)}]], _r -> {body}), 1)"

    def transformation_statements(self, table_name: str, batch: TransformationBatch,
                                  columns: List[str], strict: bool = False) -> List[Statement]:
        """Template, mutate and lookup share one UPDATE; each swap follows as its own.

        A multi-column SET cannot share a per-row draw here, so a swap is a
        conditional two-column assignment. Swapped columns are never assigned
        by the shared UPDATE, so running swaps last keeps pre-batch reads.
        """
        target = self.table_ref(table_name)
        q = self.quote_identifier
        swaps: List[Statement] = []
        assignments: List[Tuple[str, str]] = []
        for index, transformation in enumerate(active_transformations(batch)):
            if isinstance(transformation, SwapTransformation):
                first, second = q(transformation.column1), q(transformation.column2)
                sql = f"UPDATE {target} SET {first} = {second}, {second} = {first}"
                if transformation.probability < 1:
                    sql += f" WHERE random() < {self.compiler.number(transformation.probability)}"
                swaps.append(sql)
            elif isinstance(transformation, TemplateTransformation):
                assignments.append((transformation.column, self.template_expression(
                    table_name, transformation, columns, strict, q)))
            elif isinstance(transformation, MutateTransformation):
                assignments.append((transformation.column, self._bound_mutation(transformation)))
            elif isinstance(transformation, LookupTransformation):
                assignments.append((transformation.column, self.lookup_expression(
                    table_name, transformation, f"_lk{index}")))
            else:
                raise UnsupportedTransformationError(self.name, str(transformation.kind.value))

        statements: List[Statement] = []
        if assignments:
            set_clause = ", ".join(f"{q(c)} = {e}" for c, e in assignments)
            statements.append(f"UPDATE {target} SET {set_clause}")
        return statements + swaps
