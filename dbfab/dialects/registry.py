"""Lookup of dialect strategies by driver name."""

from typing import Dict, Optional, Type

from dbfab.core.database import DatabaseConfig
from dbfab.core.exceptions import ConfigurationError
from dbfab.dialects.base import SqlDialect
from dbfab.dialects.clickhouse import ClickHouseDialect
from dbfab.dialects.postgres import PostgresDialect
from dbfab.dialects.sqlite import SQLiteDialect
from dbfab.dialects.trino import TrinoDialect


DIALECTS: Dict[str, Type[SqlDialect]] = {
    PostgresDialect.name: PostgresDialect,
    ClickHouseDialect.name: ClickHouseDialect,
    SQLiteDialect.name: SQLiteDialect,
    TrinoDialect.name: TrinoDialect,
}


def get_dialect(name: str, config: Optional[DatabaseConfig] = None) -> SqlDialect:
    """Instantiate the dialect registered under ``name``."""
    try:
        dialect_class = DIALECTS[name]
    except KeyError:
        raise ConfigurationError(f"Unsupported dialect: {name}. Supported: {sorted(DIALECTS)}")
    return dialect_class(config)
