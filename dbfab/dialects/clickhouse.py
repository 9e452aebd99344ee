"""ClickHouse dialect.

ClickHouse has no correlated subqueries and no row-level UPDATE that can
read another table, so lookups and swaps rebuild the table through
``TableReplacementProtocol``. Templates and mutations run as a synchronous
``ALTER TABLE .. UPDATE`` mutation.

Identical ``rand()`` calls within one query are merged by common
subexpression elimination, so every draw carries a distinct tag argument.
"""

import math
from typing import Any, Callable, Dict, List, Optional, Tuple

from dbfab.core.database import DatabaseConnection
from dbfab.core.exceptions import UnsupportedTransformationError
from dbfab.core.models import (
    ColumnSpec, ColumnType, LookupTransformation, MutateTransformation, SwapTransformation,
    TableSpec, TemplateTransformation, Transformation, TransformationBatch,
)
from dbfab.dialects.base import (
    DrawTags, ExpressionCompiler, ReplacementPass, RowSource, SqlDialect, Statement, UniformDraw,
    active_transformations,
)


UUID_HEX_LENGTH = 32

# tag offset for draws made by transformations, away from column salts
TRANSFORM_TAG_BASE = 900


class ClickHouseRandom(UniformDraw):
    """``rand`` is UInt32 and ``rand64`` UInt64; the argument only defeats CSE."""

    def unit(self, tag: int = 0) -> str:
        return f"(rand({tag}) / 4294967296.0)"

    def integer(self, n: int, tag: int = 0) -> str:
        return f"toInt64(rand64({tag}) % {n})"


class ClickHouseCompiler(ExpressionCompiler):
    dialect_name = "clickhouse"
    type_map = {
        ColumnType.INTEGER: "Int32",
        ColumnType.BIGINT: "Int64",
        ColumnType.FLOAT: "Float64",
        ColumnType.STRING: "String",
        ColumnType.BOOLEAN: "Bool",
        ColumnType.DATETIME: "DateTime",
        ColumnType.DATE: "Date",
    }

    def column_type(self, column: ColumnSpec) -> str:
        physical = self.physical_type(column.type)
        return f"Nullable({physical})" if column.nullable else physical

    def random_string(self, length: int, tags: DrawTags) -> str:
        chunks = [
            f"replaceAll(toString(generateUUIDv4({tags.next()})), '-', '')"
            for _ in range(math.ceil(length / UUID_HEX_LENGTH))
        ]
        return f"substring({' || '.join(chunks)}, 1, {length})"

    def pick(self, items: str, n: int, tag: int) -> str:
        return f"[{items}][1 + {self.random.integer(n, tag)}]"

    def lookup_definition(self, name: str, values: Tuple[Any, ...]) -> str:
        items = ", ".join(self.literal(v) for v in values)
        return f"[{items}] AS {name}"

    def lookup_pick(self, name: str, n: int, tag: int) -> str:
        return f"{name}[1 + {self.random.integer(n, tag)}]"

    def from_epoch(self, seconds: str) -> str:
        return f"toDateTime({seconds}, 'UTC')"

    def uuid(self, tags: DrawTags) -> str:
        return f"generateUUIDv4({tags.next()})"

    def cast(self, expression: str, column: ColumnSpec) -> str:
        # NULL only casts to Nullable types
        return f"CAST({expression} AS {self.column_type(column)})"

    def null_wrap(self, expression: str, probability: float, tag: int) -> str:
        return f"if({self.random.unit(tag)} < {self.number(probability)}, NULL, {expression})"

    def text_cast(self, expression: str) -> str:
        return f"toString({expression})"

    def lower(self, expression: str) -> str:
        return f"lowerUTF8({expression})"

    def length(self, expression: str) -> str:
        return f"lengthUTF8({expression})"

    def substr(self, expression: str, start: str, length: Optional[str] = None) -> str:
        if length is None:
            return f"substringUTF8({expression}, {start})"
        return f"substringUTF8({expression}, {start}, {length})"

    def position(self, draw: str, expression: str) -> str:
        return f"(toInt64(floor({draw} * {self.length(expression)})) + 1)"


class ClickHouseDialect(SqlDialect):
    name = "clickhouse"
    label = "ClickHouse"
    compiler_class = ClickHouseCompiler
    random_class = ClickHouseRandom

    def column_definition(self, column: ColumnSpec) -> str:
        return f"{self.quote_identifier(column.name)} {self.compiler.column_type(column)}"

    def create_table_sql(self, table: TableSpec) -> str:
        columns = ", ".join(self.column_definition(c) for c in table.columns)
        sort_key = table.columns[0]
        sql = (f"CREATE TABLE IF NOT EXISTS {self.table_ref(table.name)} ({columns}) "
               f"ENGINE = MergeTree() ORDER BY {self.quote_identifier(sort_key.name)}")
        if sort_key.nullable:
            sql += " SETTINGS allow_nullable_key = 1"
        return sql

    def truncate_table_sql(self, table_name: str) -> str:
        return f"TRUNCATE TABLE IF EXISTS {self.table_ref(table_name)}"

    def optimize_statements(self, table_name: str) -> List[str]:
        return [f"OPTIMIZE TABLE {self.table_ref(table_name)} FINAL"]

    def row_source(self, row_count: int, origin: int = 0) -> RowSource:
        return RowSource([], f"numbers({row_count})", f"(toInt64(number) + {origin + 1})")

    def bulk_insert_sql(self, table: TableSpec, row_count: int, origin: int = 0) -> str:
        source = self.row_source(row_count, origin)
        lookups = [
            self.compiler.lookup_definition(name, values)
            for name, values in self.compiler.hoisted_lookups(table).items()
        ]
        columns = ", ".join(self.quote_identifier(c.name) for c in table.columns)
        select_list = ", ".join(
            self.compiler.compile_column(column, source.row_index, salt=position)
            for position, column in enumerate(table.columns, 1)
        )
        with_clause = f"WITH {', '.join(lookups)} " if lookups else ""
        return (f"INSERT INTO {self.table_ref(table.name)} ({columns}) "
                f"{with_clause}SELECT {select_list} FROM {source.from_clause}")

    def columns_query(self) -> Tuple[str, Dict[str, Any]]:
        return (
            "SELECT name FROM system.columns "
            "WHERE database = currentDatabase() AND table = :name ORDER BY position",
            {},
        )

    def tables_query(self) -> Tuple[str, Dict[str, Any]]:
        return "SELECT name FROM system.tables WHERE database = currentDatabase()", {}

    def get_table_size(self, connection: DatabaseConnection, table_name: str) -> int:
        rows = connection.execute_query(
            "SELECT total_bytes FROM system.tables "
            "WHERE database = currentDatabase() AND name = :name",
            {"name": table_name},
        )
        return int(rows[0][0] or 0) if rows else 0

    # Transformations

    def _bound_mutation(self, transformation: MutateTransformation, column: str, salt: int) -> str:
        """Mutation whose draws are bound once through a lambda argument."""
        tags = DrawTags(salt)
        needs_gate, needs_operation = self.mutate_draw_count(transformation)
        draws = []

        def draw() -> str:
            draws.append(self.random.unit(tags.next()))
            return f"_r[{len(draws)}]"

        gate = draw() if needs_gate else None
        operation = draw() if needs_operation else None
        body = self.mutate_expression(column, transformation, gate, operation, draw())
        return f"arrayElement(arrayMap(_r -> {body}, [[{', '.join(draws)}]]), 1)"

    def _row_expression(self, table_name: str, transformation: Transformation, columns: List[str],
                        strict: bool, ref: Callable[[str], str], salt: int) -> str:
        if isinstance(transformation, TemplateTransformation):
            return self.template_expression(table_name, transformation, columns, strict, ref)
        return self._bound_mutation(transformation, ref(transformation.column), salt)

    def transformation_statements(self, table_name: str, batch: TransformationBatch,
                                  columns: List[str], strict: bool = False) -> List[Statement]:
        """Lookups and swaps rebuild the table first, then one mutation runs.

        Templates and mutations of the sort key cannot be expressed as a
        mutation and join the rebuild instead.
        """
        sort_key = columns[0] if columns else None
        rebuild: List[Transformation] = []
        mutation: List[Tuple[int, Transformation]] = []
        for index, transformation in enumerate(active_transformations(batch)):
            if isinstance(transformation, (LookupTransformation, SwapTransformation)):
                rebuild.append(transformation)
            elif isinstance(transformation, (TemplateTransformation, MutateTransformation)):
                if transformation.column == sort_key:
                    rebuild.append(transformation)
                else:
                    mutation.append((index, transformation))
            else:
                raise UnsupportedTransformationError(self.name, str(transformation.kind.value))

        statements: List[Statement] = []
        if rebuild:
            statements.append(ReplacementPass(table_name, tuple(rebuild), strict))
        if mutation:
            assignments = ", ".join(
                f"{self.quote_identifier(t.column)} = "
                f"{self._row_expression(table_name, t, columns, strict, self.quote_identifier, TRANSFORM_TAG_BASE + i)}"
                for i, t in mutation
            )
            statements.append(
                f"ALTER TABLE {self.table_ref(table_name)} UPDATE {assignments} WHERE 1 "
                f"SETTINGS mutations_sync = 2, allow_nondeterministic_mutations = 1"
            )
        return statements

    def create_shadow_sql(self, table_name: str, shadow_name: str) -> str:
        return f"CREATE TABLE {self.table_ref(shadow_name)} AS {self.table_ref(table_name)}"

    def populate_shadow_sql(self, table_name: str, shadow_name: str, columns: List[str],
                            transformations: Tuple[Transformation, ...], strict: bool = False) -> str:
        """INSERT .. SELECT copying the table with lookups and swaps applied.

        Each swap's draw is taken once per row in the inner select; each
        lookup joins a de-duplicated projection of its source table.
        """
        q = self.quote_identifier

        def ref(column: str) -> str:
            return f"_src.{q(column)}"

        expressions = {column: ref(column) for column in columns}
        draws: List[str] = []
        joins: List[str] = []
        for index, transformation in enumerate(transformations):
            salt = TRANSFORM_TAG_BASE + index
            if isinstance(transformation, SwapTransformation):
                first, second = ref(transformation.column1), ref(transformation.column2)
                if transformation.probability >= 1:
                    expressions[transformation.column1] = second
                    expressions[transformation.column2] = first
                else:
                    name = f"_swap{index}"
                    draws.append(f"{self.random.unit(DrawTags(salt).next())} AS {name}")
                    condition = f"_src.{name} < {self.compiler.number(transformation.probability)}"
                    expressions[transformation.column1] = f"if({condition}, {second}, {first})"
                    expressions[transformation.column2] = f"if({condition}, {first}, {second})"
            elif isinstance(transformation, LookupTransformation):
                alias = f"_lk{index}"
                lookup_column = q(transformation.lookup_column)
                joins.append(
                    f"LEFT JOIN (SELECT {lookup_column} AS _k, any({q(transformation.from_column)}) AS _v "
                    f"FROM {self.table_ref(transformation.from_table)} GROUP BY {lookup_column}) AS {alias} "
                    f"ON {ref(transformation.target_column)} = {alias}._k"
                )
                expressions[transformation.column] = f"{alias}._v"
            else:
                expressions[transformation.column] = self._row_expression(
                    table_name, transformation, columns, strict, ref, salt)

        extra = "".join(f", {d}" for d in draws)
        select_list = ", ".join(expressions[column] for column in columns)
        join_clause = "".join(f" {join}" for join in joins)
        return (f"INSERT INTO {self.table_ref(shadow_name)} ({', '.join(q(c) for c in columns)}) "
                f"SELECT {select_list} FROM (SELECT *{extra} FROM {self.table_ref(table_name)}) AS _src"
                f"{join_clause} SETTINGS join_use_nulls = 1")

    def exchange_tables_sql(self, table_name: str, shadow_name: str, old_name: str) -> str:
        return (f"RENAME TABLE {self.table_ref(table_name)} TO {self.table_ref(old_name)}, "
                f"{self.table_ref(shadow_name)} TO {self.table_ref(table_name)}")
