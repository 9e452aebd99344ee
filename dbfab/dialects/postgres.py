"""PostgreSQL dialect."""

import math
from typing import Any, Dict, List, Tuple

from dbfab.core.database import DatabaseConnection
from dbfab.core.models import ColumnType, RandomFloatGenerator
from dbfab.dialects.base import DrawTags, ExpressionCompiler, RowSource, SqlDialect, UniformDraw


MD5_HEX_LENGTH = 32


class PostgresRandom(UniformDraw):
    """``random()`` is a double in [0, 1)."""

    def unit(self, tag: int = 0) -> str:
        return "random()"

    def integer(self, n: int, tag: int = 0) -> str:
        return f"floor(random() * {n})::bigint"


class PostgresCompiler(ExpressionCompiler):
    dialect_name = "postgresql"
    type_map = {
        ColumnType.INTEGER: "INTEGER",
        ColumnType.BIGINT: "BIGINT",
        ColumnType.FLOAT: "DOUBLE PRECISION",
        ColumnType.STRING: "TEXT",
        ColumnType.BOOLEAN: "BOOLEAN",
        ColumnType.DATETIME: "TIMESTAMP",
        ColumnType.DATE: "DATE",
    }

    def random_float(self, generator: RandomFloatGenerator, tags: DrawTags) -> str:
        # round(double, int) does not exist; go through numeric
        low = self.number(float(generator.min_value))
        span = self.number(float(generator.max_value - generator.min_value))
        return f"round(({low} + random() * {span})::numeric, {generator.precision})"

    def random_string(self, length: int, tags: DrawTags) -> str:
        chunks = math.ceil(length / MD5_HEX_LENGTH)
        hexed = " || ".join(["md5(random()::text)"] * chunks)
        return f"substr({hexed}, 1, {length})"

    def pick(self, items: str, n: int, tag: int) -> str:
        return f"(ARRAY[{items}])[1 + floor(random() * {n})::int]"

    def lookup_definition(self, name: str, values: Tuple[Any, ...]) -> str:
        items = ", ".join(self.literal(v) for v in values)
        return f"{name} AS (SELECT ARRAY[{items}] AS arr)"

    def lookup_pick(self, name: str, n: int, tag: int) -> str:
        return f"{name}.arr[1 + floor(random() * {n})::int]"

    def from_epoch(self, seconds: str) -> str:
        return f"(to_timestamp({seconds}) AT TIME ZONE 'UTC')"

    def uuid(self, tags: DrawTags) -> str:
        return "gen_random_uuid()"

    def position(self, draw: str, expression: str) -> str:
        # CAST rounds in PostgreSQL; floor keeps the offset within [1, length]
        return f"(floor({draw} * {self.length(expression)})::int + 1)"


class PostgresDialect(SqlDialect):
    name = "postgresql"
    label = "PostgreSQL"
    compiler_class = PostgresCompiler
    random_class = PostgresRandom
    row_id = "ctid"

    def optimize_statements(self, table_name: str) -> List[str]:
        return [f"VACUUM ANALYZE {self.table_ref(table_name)}"]

    def row_source(self, row_count: int, origin: int = 0) -> RowSource:
        row_index = f"(g.n + {origin})" if origin else "g.n"
        return RowSource([], f"generate_series(1::bigint, {row_count}::bigint) AS g(n)", row_index)

    def columns_query(self) -> Tuple[str, Dict[str, Any]]:
        return (
            "SELECT column_name FROM information_schema.columns "
            "WHERE table_schema = current_schema() AND table_name = :name "
            "ORDER BY ordinal_position",
            {},
        )

    def tables_query(self) -> Tuple[str, Dict[str, Any]]:
        return (
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = current_schema()",
            {},
        )

    def get_table_size(self, connection: DatabaseConnection, table_name: str) -> int:
        rows = connection.execute_query(
            "SELECT pg_total_relation_size(CAST(:name AS regclass))",
            {"name": self.table_ref(table_name)},
        )
        return int(rows[0][0] or 0) if rows else 0
