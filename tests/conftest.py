"""Test configuration and fixtures for DBFab tests."""

import pytest
import tempfile
import os
from datetime import datetime
from unittest.mock import Mock

from dbfab.core.database import DatabaseConnection, DatabaseConfig
from dbfab.core.generator import DataGenerator
from dbfab.core.models import (
    ChoiceByLookupGenerator, ChoiceGenerator, ColumnSpec, ColumnType, ConstantGenerator,
    DatetimeGenerator, GenerationSettings, RandomFloatGenerator, RandomIntGenerator,
    RandomStringGenerator, SequenceGenerator, TableSpec, UuidGenerator,
)


@pytest.fixture
def temp_db_file():
    """Create a temporary database file for SQLite testing."""
    fd, path = tempfile.mkstemp(suffix='.db')
    os.close(fd)
    yield path
    if os.path.exists(path):
        os.unlink(path)


@pytest.fixture
def sqlite_config(temp_db_file):
    """SQLite configuration pointing at a temporary file."""
    return DatabaseConfig(driver="sqlite", database=temp_db_file)


@pytest.fixture
def sqlite_generator(sqlite_config):
    """Connected DataGenerator backed by a temporary SQLite file."""
    generator = DataGenerator(DatabaseConnection(sqlite_config), GenerationSettings(optimize=False))
    generator.connect()
    yield generator
    generator.close()


@pytest.fixture
def mock_db_config():
    """Create a mock database configuration for testing."""
    return DatabaseConfig(
        host="localhost",
        port=5432,
        database="test_db",
        username="test_user",
        password="test_pass",
        driver="postgresql"
    )


@pytest.fixture
def mock_db_connection(mock_db_config):
    """Create a mock database connection for testing."""
    connection = Mock(spec=DatabaseConnection)
    connection.config = mock_db_config
    connection.fetch_scalar.return_value = None
    return connection


@pytest.fixture
def users_table():
    """Users table exercising every generator kind."""
    return TableSpec(
        name="users",
        columns=[
            ColumnSpec("id", ColumnType.BIGINT, SequenceGenerator()),
            ColumnSpec("first_name", ColumnType.STRING,
                       ChoiceByLookupGenerator(["John", "Jane", "Max"])),
            ColumnSpec("last_name", ColumnType.STRING, ChoiceGenerator(["Doe", "Smith"])),
            ColumnSpec("email", ColumnType.STRING, RandomStringGenerator(10), nullable=True),
            ColumnSpec("age", ColumnType.INTEGER, RandomIntGenerator(18, 90)),
            ColumnSpec("score", ColumnType.FLOAT, RandomFloatGenerator(0.0, 100.0, 2)),
            ColumnSpec("active", ColumnType.BOOLEAN, ConstantGenerator(True)),
            ColumnSpec("created_at", ColumnType.DATETIME,
                       DatetimeGenerator(datetime(2020, 1, 1), datetime(2020, 12, 31))),
            ColumnSpec("token", ColumnType.STRING, UuidGenerator()),
        ]
    )
