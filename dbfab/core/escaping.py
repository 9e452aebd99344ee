"""Identifier and literal quoting for every supported dialect.

Every table and column name that ends up in generated SQL passes through
``quote_identifier`` and every literal value through ``render_value``.
"""

import math
from datetime import date, datetime
from typing import Any

from sqlalchemy.dialects.postgresql.base import PGDialect
from sqlalchemy.dialects.sqlite.base import SQLiteDialect

from dbfab.core.exceptions import ConfigurationError


POSTGRESQL = "postgresql"
CLICKHOUSE = "clickhouse"
SQLITE = "sqlite"
TRINO = "trino"

SUPPORTED_DIALECTS = (POSTGRESQL, CLICKHOUSE, SQLITE, TRINO)

# Quote only when needed: reserved words, upper case, special characters.
_PREPARERS = {
    POSTGRESQL: PGDialect().identifier_preparer,
    SQLITE: SQLiteDialect().identifier_preparer,
}


def _check_dialect(dialect: str) -> None:
    if dialect not in SUPPORTED_DIALECTS:
        raise ConfigurationError(f"Unsupported dialect: {dialect}. Supported: {list(SUPPORTED_DIALECTS)}")


def quote_identifier(name: str, dialect: str) -> str:
    """Quote a table or column name for the given dialect."""
    _check_dialect(dialect)
    if not isinstance(name, str) or not name:
        raise ConfigurationError(f"Identifier must be a non-empty string, got {name!r}")
    if "\x00" in name:
        raise ConfigurationError(f"Identifier {name!r} contains a NUL character")

    if dialect == CLICKHOUSE:
        return "`" + name.replace("`", "``") + "`"
    if dialect == TRINO:
        # always quoted so that metadata tables such as "t$files" resolve
        return '"' + name.replace('"', '""') + '"'
    return _PREPARERS[dialect].quote(name)


def quote_literal(value: str, dialect: str) -> str:
    """Quote a string literal for the given dialect."""
    _check_dialect(dialect)
    if "\x00" in value:
        raise ConfigurationError("String literals must not contain NUL characters")

    if dialect == CLICKHOUSE:
        return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"
    if dialect == POSTGRESQL and "\\" in value:
        return "E'" + value.replace("\\", "\\\\").replace("'", "''") + "'"
    return "'" + value.replace("'", "''") + "'"


def render_float(value: float, dialect: str) -> str:
    if not math.isfinite(value):
        raise ConfigurationError(f"Cannot render non-finite float {value!r}")
    text = repr(float(value))
    if dialect == TRINO and "e" not in text.lower():
        # a bare decimal literal is DECIMAL in Trino
        text += "E0"
    return text


def render_value(value: Any, dialect: str) -> str:
    """Render a Python scalar as a SQL literal."""
    _check_dialect(dialect)
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        if dialect == SQLITE:
            return "1" if value else "0"
        if dialect == CLICKHOUSE:
            return "true" if value else "false"
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return render_float(value, dialect)
    if isinstance(value, datetime):
        text = value.strftime("%Y-%m-%d %H:%M:%S")
        if dialect == CLICKHOUSE:
            return f"toDateTime({quote_literal(text, dialect)})"
        if dialect == SQLITE:
            return quote_literal(text, dialect)
        return f"TIMESTAMP {quote_literal(text, dialect)}"
    if isinstance(value, date):
        text = value.isoformat()
        if dialect == CLICKHOUSE:
            return f"toDate({quote_literal(text, dialect)})"
        if dialect == SQLITE:
            return quote_literal(text, dialect)
        return f"DATE {quote_literal(text, dialect)}"
    if isinstance(value, str):
        return quote_literal(value, dialect)
    raise ConfigurationError(f"Cannot render value of type {type(value).__name__} as a SQL literal")


def json_value(value: Any) -> Any:
    """Convert a lookup value to something ``json.dumps`` accepts."""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.isoformat()
    return value
