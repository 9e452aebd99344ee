"""Tests for the generation and transformation engines against a mocked connection."""

import pytest
from unittest.mock import Mock
from sqlalchemy.exc import SQLAlchemyError

from dbfab.core.database import DatabaseConfig, DatabaseConnection
from dbfab.core.exceptions import ConfigurationError, TableReplacementError
from dbfab.core.generation import GenerationEngine
from dbfab.core.models import (
    ColumnSpec, ColumnType, ConstantGenerator, GenerationSettings, LookupTransformation,
    SequenceGenerator, SwapTransformation, TableSpec, TemplateTransformation,
    TransformationBatch,
)
from dbfab.core.transformation import TransformationEngine, check_assignments, orphan_pattern
from dbfab.dialects.clickhouse import ClickHouseDialect
from dbfab.dialects.postgres import PostgresDialect


def executed(connection):
    return [c.args[0] for c in connection.execute.call_args_list]


@pytest.fixture
def clickhouse_connection():
    connection = Mock(spec=DatabaseConnection)
    connection.config = DatabaseConfig(driver="clickhouse", database="test_db")
    connection.execute_query.return_value = [("id",), ("user_id",), ("customer_email",)]
    return connection


@pytest.fixture
def counter_table():
    return TableSpec("t", [
        ColumnSpec("id", ColumnType.BIGINT, SequenceGenerator()),
        ColumnSpec("v", ColumnType.STRING, ConstantGenerator("x")),
    ])


class TestGenerationEngine:
    """Test GenerationEngine statement order."""

    def test_statement_order(self, mock_db_connection, counter_table):
        """Drop, create, chunked inserts, then optimize."""
        settings = GenerationSettings(batch_size=3, drop_first=True, truncate_first=True)
        engine = GenerationEngine(mock_db_connection, PostgresDialect(), settings)

        result = engine.generate(counter_table, 7)

        statements = executed(mock_db_connection)
        assert statements[0] == "DROP TABLE IF EXISTS t"
        assert statements[1].startswith("CREATE TABLE IF NOT EXISTS t")
        # truncate is skipped right after a drop
        assert not any(s.startswith("TRUNCATE") for s in statements)
        inserts = [s for s in statements if s.startswith("INSERT")]
        assert len(inserts) == 3
        assert "generate_series(1::bigint, 3::bigint)" in inserts[0]
        assert "(g.n + 3)" in inserts[1]
        assert "generate_series(1::bigint, 1::bigint)" in inserts[2]
        assert "(g.n + 6)" in inserts[2]
        assert statements[-1] == "VACUUM ANALYZE t"

        assert result.rows_inserted == 7
        assert result.chunks == 3

    def test_truncate_without_drop(self, mock_db_connection, counter_table):
        """Truncate runs when the table was not dropped."""
        settings = GenerationSettings(truncate_first=True, optimize=False)
        GenerationEngine(mock_db_connection, PostgresDialect(), settings).generate(counter_table, 2)
        assert "TRUNCATE TABLE t" in executed(mock_db_connection)

    def test_resume_after_existing_maximum(self, mock_db_connection, counter_table):
        """The row origin continues after the current maximum."""
        mock_db_connection.fetch_scalar.return_value = 41
        settings = GenerationSettings(optimize=False)
        GenerationEngine(mock_db_connection, PostgresDialect(), settings).generate(counter_table, 2)

        inserts = [s for s in executed(mock_db_connection) if s.startswith("INSERT")]
        assert "(g.n + 41)" in inserts[0]
        mock_db_connection.fetch_scalar.assert_called_once_with("SELECT MAX(id) FROM t")

    def test_resume_descending_sequence(self, mock_db_connection):
        """Descending sequences resume below the current minimum."""
        table = TableSpec("t", [ColumnSpec("id", ColumnType.BIGINT, SequenceGenerator(100, -1))])
        mock_db_connection.fetch_scalar.return_value = 98
        engine = GenerationEngine(mock_db_connection, PostgresDialect())

        assert engine.resolve_row_origin(table) == 3
        mock_db_connection.fetch_scalar.assert_called_once_with("SELECT MIN(id) FROM t")

    def test_resume_disabled(self, mock_db_connection, counter_table):
        """Without resume the existing maximum is not consulted."""
        settings = GenerationSettings(resume_sequences=False, optimize=False)
        GenerationEngine(mock_db_connection, PostgresDialect(), settings).generate(counter_table, 2)
        mock_db_connection.fetch_scalar.assert_not_called()

    def test_zero_rows(self, mock_db_connection, counter_table):
        """Zero rows still create the table but insert nothing."""
        settings = GenerationSettings(optimize=False)
        result = GenerationEngine(mock_db_connection, PostgresDialect(), settings).generate(
            counter_table, 0
        )
        assert result.rows_inserted == 0
        assert not any(s.startswith("INSERT") for s in executed(mock_db_connection))


class TestAssignments:
    """Test per-batch assignment checks."""

    def test_duplicate_column(self):
        batch = TransformationBatch([
            TemplateTransformation("email", "{a}"),
            SwapTransformation("email", "name", 0.5),
        ])
        with pytest.raises(ConfigurationError, match="assigned more than once"):
            check_assignments("users", batch)

    def test_inactive_transformations_ignored(self):
        batch = TransformationBatch([
            TemplateTransformation("email", "{a}"),
            SwapTransformation("email", "name", 0.0),
        ])
        check_assignments("users", batch)

    def test_orphan_pattern(self):
        pattern = orphan_pattern("orders")
        assert pattern.match("_orders_new_1700000000_abcdef12")
        assert pattern.match("_orders_old_1700000000_abcdef12")
        assert not pattern.match("_orders_items_new_1_abcdef12")
        assert not pattern.match("orders")


class TestTableReplacement:
    """Test the ClickHouse create/populate/rename/drop protocol."""

    def lookup_batch(self):
        return TransformationBatch([
            LookupTransformation("customer_email", "users", "email", "user_id", "id")
        ])

    def test_protocol_order(self, clickhouse_connection):
        """Statements run in create, populate, rename, drop order."""
        engine = TransformationEngine(clickhouse_connection, ClickHouseDialect())
        result = engine.apply("orders", [self.lookup_batch()])

        statements = executed(clickhouse_connection)
        assert len(statements) == 4
        assert statements[0].startswith("CREATE TABLE `_orders_new_")
        assert statements[0].endswith(" AS `orders`")
        assert statements[1].startswith("INSERT INTO `_orders_new_")
        assert statements[2].startswith("RENAME TABLE `orders` TO `_orders_old_")
        assert statements[3].startswith("DROP TABLE IF EXISTS `_orders_old_")
        assert result.replacement_passes == 1
        assert result.batches_applied == 1

    def test_populate_failure_reports_orphans(self, clickhouse_connection):
        """A failed populate leaves the shadow table and says so."""
        def fail_on_insert(sql):
            if sql.startswith("INSERT"):
                raise SQLAlchemyError("insert failed")

        clickhouse_connection.execute.side_effect = fail_on_insert
        engine = TransformationEngine(clickhouse_connection, ClickHouseDialect())

        with pytest.raises(TableReplacementError) as exc_info:
            engine.apply("orders", [self.lookup_batch()])

        error = exc_info.value
        assert error.step == "populate"
        assert len(error.orphaned_tables) == 1
        assert error.orphaned_tables[0].startswith("_orders_new_")
        assert not any(s.startswith("RENAME") for s in executed(clickhouse_connection))

    def test_rename_failure_reports_orphans(self, clickhouse_connection):
        """A failed rename leaves the populated shadow table."""
        def fail_on_rename(sql):
            if sql.startswith("RENAME"):
                raise SQLAlchemyError("rename failed")

        clickhouse_connection.execute.side_effect = fail_on_rename
        engine = TransformationEngine(clickhouse_connection, ClickHouseDialect())

        with pytest.raises(TableReplacementError) as exc_info:
            engine.apply("orders", [self.lookup_batch()])
        assert exc_info.value.step == "rename"
        assert exc_info.value.orphaned_tables[0].startswith("_orders_new_")

    def test_rebuild_before_mutation(self, clickhouse_connection):
        """Within one batch the rebuild runs before the ALTER mutation."""
        batch = TransformationBatch([
            TemplateTransformation("customer_email", "{user_id}@example.com"),
            SwapTransformation("id", "user_id", 1.0),
        ])
        clickhouse_connection.execute_query.return_value = [
            ("id",), ("user_id",), ("customer_email",)
        ]
        TransformationEngine(clickhouse_connection, ClickHouseDialect()).apply("orders", [batch])

        statements = executed(clickhouse_connection)
        assert [s.split()[0] for s in statements] == ["CREATE", "INSERT", "RENAME", "DROP", "ALTER"]

    def test_duplicate_assignment_rejected_before_execution(self, clickhouse_connection):
        batch = TransformationBatch([
            TemplateTransformation("customer_email", "{id}"),
            TemplateTransformation("customer_email", "{user_id}"),
        ])
        engine = TransformationEngine(clickhouse_connection, ClickHouseDialect())
        with pytest.raises(ConfigurationError):
            engine.apply("orders", [batch])
        clickhouse_connection.execute.assert_not_called()

    def test_empty_batches_skipped(self, clickhouse_connection):
        engine = TransformationEngine(clickhouse_connection, ClickHouseDialect())
        result = engine.apply("orders", [TransformationBatch()])
        assert result.batches_applied == 0
        clickhouse_connection.execute_query.assert_not_called()

    def test_sweep_orphaned_tables(self, clickhouse_connection):
        clickhouse_connection.execute_query.return_value = [
            ("orders",),
            ("_orders_new_1700000000_abcdef12",),
            ("_orders_old_1700000000_abcdef12",),
            ("_other_new_1700000000_abcdef12",),
        ]
        engine = TransformationEngine(clickhouse_connection, ClickHouseDialect())

        dropped = engine.sweep_orphaned_tables("orders")

        assert dropped == ["_orders_new_1700000000_abcdef12", "_orders_old_1700000000_abcdef12"]
        assert executed(clickhouse_connection) == [
            "DROP TABLE IF EXISTS `_orders_new_1700000000_abcdef12`",
            "DROP TABLE IF EXISTS `_orders_old_1700000000_abcdef12`",
        ]
