"""SQLite dialect."""

import json
import logging
import math
from typing import Any, Dict, List, Tuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from dbfab.core.database import DatabaseConnection
from dbfab.core.escaping import json_value
from dbfab.core.exceptions import ConfigurationError
from dbfab.core.models import ChoiceGenerator, ColumnSpec, ColumnType
from dbfab.dialects.base import DrawTags, ExpressionCompiler, RowSource, SqlDialect, UniformDraw


logger = logging.getLogger(__name__)

INT64_MAX = 9223372036854775807

# random() spans the whole signed 64-bit range and abs() overflows on its
# minimum, so the sign bit is masked off instead.
MASKED_RANDOM = f"(random() & {INT64_MAX})"


class SQLiteRandom(UniformDraw):
    """``random()`` is a signed 64-bit integer."""

    def unit(self, tag: int = 0) -> str:
        return f"({MASKED_RANDOM} / 9223372036854775808.0)"

    def integer(self, n: int, tag: int = 0) -> str:
        if n > INT64_MAX:
            raise ConfigurationError(f"SQLite cannot draw uniformly from a range of {n} values")
        return f"({MASKED_RANDOM} % {n})"


class SQLiteCompiler(ExpressionCompiler):
    dialect_name = "sqlite"
    type_map = {
        ColumnType.INTEGER: "INTEGER",
        ColumnType.BIGINT: "INTEGER",
        ColumnType.FLOAT: "REAL",
        ColumnType.STRING: "TEXT",
        ColumnType.BOOLEAN: "INTEGER",
        ColumnType.DATETIME: "TEXT",
        ColumnType.DATE: "TEXT",
    }

    def random_string(self, length: int, tags: DrawTags) -> str:
        return f"substr(lower(hex(randomblob({max(1, math.ceil(length / 2))}))), 1, {length})"

    def choice(self, generator: ChoiceGenerator, tags: DrawTags) -> str:
        values = generator.values
        if len(values) < 2:
            return super().choice(generator, tags)
        branches = " ".join(f"WHEN {i} THEN {self.literal(v)}" for i, v in enumerate(values))
        return f"CASE {self.random.integer(len(values), tags.next())} {branches} END"

    def lookup_definition(self, name: str, values: Tuple[Any, ...]) -> str:
        payload = json.dumps([json_value(v) for v in values], separators=(",", ":"))
        return f"{name}(arr) AS (SELECT {self.literal(payload)})"

    def lookup_pick(self, name: str, n: int, tag: int) -> str:
        return f"json_extract({name}.arr, '$[' || {self.random.integer(n, tag)} || ']')"

    def from_epoch(self, seconds: str) -> str:
        return f"datetime({seconds}, 'unixepoch')"

    def uuid(self, tags: DrawTags) -> str:
        # version 4 layout built from random bytes
        return (
            "lower(hex(randomblob(4)) || '-' || hex(randomblob(2)) || '-4' || "
            "substr(hex(randomblob(2)), 2) || '-' || "
            f"substr('89ab', 1 + {MASKED_RANDOM} % 4, 1) || "
            "substr(hex(randomblob(2)), 2) || '-' || hex(randomblob(6)))"
        )

    def cast(self, expression: str, column: ColumnSpec) -> str:
        if column.type == ColumnType.DATETIME:
            return f"datetime({expression})"
        if column.type == ColumnType.DATE:
            return f"date({expression})"
        return super().cast(expression, column)


class SQLiteDialect(SqlDialect):
    name = "sqlite"
    label = "SQLite"
    compiler_class = SQLiteCompiler
    random_class = SQLiteRandom
    row_id = "rowid"

    def truncate_table_sql(self, table_name: str) -> str:
        return f"DELETE FROM {self.table_ref(table_name)}"

    def optimize_statements(self, table_name: str) -> List[str]:
        return ["VACUUM", f"ANALYZE {self.table_ref(table_name)}"]

    def row_source(self, row_count: int, origin: int = 0) -> RowSource:
        counter = f"seq(n) AS (SELECT 1 UNION ALL SELECT n + 1 FROM seq WHERE n < {row_count})"
        row_index = f"(seq.n + {origin})" if origin else "seq.n"
        return RowSource([counter], "seq", row_index)

    def with_clause(self, ctes: List[str]) -> str:
        return f"WITH RECURSIVE {', '.join(ctes)} " if ctes else ""

    def columns_query(self) -> Tuple[str, Dict[str, Any]]:
        return "SELECT name FROM pragma_table_info(:name) ORDER BY cid", {}

    def tables_query(self) -> Tuple[str, Dict[str, Any]]:
        return "SELECT name FROM sqlite_master WHERE type = 'table'", {}

    def get_table_size(self, connection: DatabaseConnection, table_name: str) -> int:
        try:
            with connection.engine.connect() as conn:
                size = conn.execute(
                    text("SELECT SUM(pgsize) FROM dbstat WHERE name = :name"), {"name": table_name}
                ).scalar()
            return int(size or 0)
        except SQLAlchemyError as e:
            # dbstat is a compile-time option
            logger.debug(f"dbstat unavailable, using database page count: {e}")
        rows = connection.fetch_all("PRAGMA page_count")
        page_count = rows[0][0] if rows else 0
        rows = connection.fetch_all("PRAGMA page_size")
        page_size = rows[0][0] if rows else 0
        return int(page_count) * int(page_size)
