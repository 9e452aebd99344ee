"""
JaySoft-DBFab - Fabricate synthetic data directly inside SQL databases.

This package provides tools to:
- Describe tables with declarative column generators
- Compile each chunk of rows into a single INSERT .. SELECT per engine
- Apply post-generation transformations (templates, typos, lookups, swaps)
- Support multiple database engines (PostgreSQL, ClickHouse, SQLite, Trino/Iceberg)
"""

__version__ = "1.0.0"
__author__ = "JaySoft Development"
__email__ = "info@jaysoft.dev"

from dbfab.core.database import DatabaseConfig, DatabaseConnection
from dbfab.core.generator import DataGenerator
from dbfab.core.loader import load_document
from dbfab.dialects.registry import get_dialect

__all__ = [
    "DatabaseConfig",
    "DatabaseConnection",
    "DataGenerator",
    "get_dialect",
    "load_document",
]
