"""Basic usage examples for JaySoft-DBFab."""

import sys
from datetime import datetime
from pathlib import Path

# Add the parent directory to sys.path to import dbfab
sys.path.insert(0, str(Path(__file__).parent.parent))

from dbfab.core.database import create_database_connection
from dbfab.core.generator import DataGenerator
from dbfab.core.loader import load_document
from dbfab.core.models import (
    ChoiceGenerator, ColumnSpec, ColumnType, DatetimeGenerator, GenerationSettings,
    MutateTransformation, RandomIntGenerator, SequenceGenerator, TableSpec,
    TemplateTransformation, TransformationBatch,
)


def example_1_basic_usage():
    """Example 1: Generate and transform a table in SQLite."""
    print("🔍 Example 1: Basic Usage")
    print("=" * 50)

    db_conn = create_database_connection(driver="sqlite", database="demo.db")
    table = TableSpec("customers", [
        ColumnSpec("id", ColumnType.BIGINT, SequenceGenerator()),
        ColumnSpec("name", ColumnType.STRING, ChoiceGenerator(["Anna", "Ben", "Carla"])),
        ColumnSpec("email", ColumnType.STRING, ChoiceGenerator([""])),
        ColumnSpec("age", ColumnType.INTEGER, RandomIntGenerator(18, 90),
                   nullable=True, null_probability=0.1),
        ColumnSpec("joined_at", ColumnType.DATETIME,
                   DatetimeGenerator(datetime(2022, 1, 1), datetime(2022, 12, 31))),
    ])

    settings = GenerationSettings(batch_size=1000, drop_first=True)
    with DataGenerator(db_conn, settings) as generator:
        print("\n🎲 Generating 5,000 customers...")
        result = generator.generate(table, 5000)
        print(f"Inserted {result.rows_inserted} rows in {result.chunks} chunk(s)")

        generator.transform("customers", [
            TransformationBatch([TemplateTransformation("email", "{name}{id}@example.com",
                                                        lowercase=True)]),
            TransformationBatch([MutateTransformation("name", 0.05)]),
        ])

        print("\nSample customers:")
        for row in generator.query_rows("customers", limit=5, order_by="id"):
            print(f"   {row}")
        print(f"\nTable size: {generator.get_table_size_for_human('customers')}")

    print("\n✅ Example 1 completed!")


def example_2_scenario_file():
    """Example 2: Run the scenario declared in shop_scenario.yaml."""
    print("\n🎯 Example 2: Scenario File")
    print("=" * 50)

    document = load_document(Path(__file__).parent / "shop_scenario.yaml")
    db_conn = create_database_connection(**document.database.model_dump())

    with DataGenerator(db_conn, document.settings) as generator:
        result = generator.run_scenario(document.scenario)

    for table_name, stats in result.table_stats().items():
        print(f"   • {table_name}: {stats['rows_inserted']:,} rows, "
              f"{stats['batches_applied']} batch(es)")
    print(f"\n✅ Example 2 completed in {result.duration_ms / 1000:.2f} seconds!")


if __name__ == "__main__":
    example_1_basic_usage()
    example_2_scenario_file()
