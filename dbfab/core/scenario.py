"""Scenario orchestration: ordered generate and transform steps."""

import logging
import time
from typing import List, Optional

from dbfab.core.database import DatabaseConnection
from dbfab.core.exceptions import ConfigurationError
from dbfab.core.generation import GenerationEngine
from dbfab.core.models import (
    GenerateStep, GenerationSettings, Scenario, ScenarioResult, ScenarioStepResult, TransformStep,
)
from dbfab.core.transformation import TransformationEngine
from dbfab.dialects.base import SqlDialect


logger = logging.getLogger(__name__)


class ScenarioRunner:
    """Runs a scenario's steps sequentially against one database.

    There is no transaction across steps: a failing step leaves the work of
    earlier steps in place.
    """

    def __init__(self, db_connection: DatabaseConnection, dialect: SqlDialect,
                 settings: Optional[GenerationSettings] = None):
        self.settings = settings or GenerationSettings()
        self.generation = GenerationEngine(db_connection, dialect, self.settings)
        self.transformation = TransformationEngine(db_connection, dialect, self.settings)

    def run(self, scenario: Scenario) -> ScenarioResult:
        logger.info(f"Running scenario '{scenario.name}' with {len(scenario.steps)} step(s)")
        result = ScenarioResult(name=scenario.name)
        start_time = time.time()
        generated = set()
        touched: List[str] = []

        for number, step in enumerate(scenario.steps, 1):
            if isinstance(step, GenerateStep):
                table_name = step.table.name
                logger.info(f"Step {number}: generate {step.row_count} rows into {table_name}")
                # a table is only dropped the first time the scenario generates it
                drop_first = self.settings.drop_first and table_name not in generated
                generated.add(table_name)
                step_result = ScenarioStepResult(table_name=table_name)
                step_result.generate = self.generation.generate(
                    step.table, step.row_count, drop_first=drop_first, optimize=False
                )
                result.total_rows_inserted += step_result.generate.rows_inserted
                result.generate_ms += step_result.generate.generate_ms
                if step.batches:
                    step_result.transform = self.transformation.apply(table_name, step.batches)
                    result.transform_ms += step_result.transform.duration_ms
            elif isinstance(step, TransformStep):
                table_name = step.table_name
                logger.info(f"Step {number}: transform {table_name}")
                step_result = ScenarioStepResult(table_name=table_name)
                step_result.transform = self.transformation.apply(table_name, step.batches)
                result.transform_ms += step_result.transform.duration_ms
            else:
                raise ConfigurationError(f"Unknown scenario step: {type(step).__name__}")

            result.steps.append(step_result)
            if table_name not in touched:
                touched.append(table_name)

        if self.settings.optimize:
            for table_name in touched:
                result.optimize_ms += self.generation.optimize(table_name)
                result.optimized_tables.append(table_name)

        result.duration_ms = (time.time() - start_time) * 1000
        logger.info(f"Scenario '{scenario.name}' finished: {result.total_rows_inserted} rows "
                    f"in {result.duration_ms / 1000:.2f} seconds")
        return result


def run_scenario(db_connection: DatabaseConnection, dialect: SqlDialect, scenario: Scenario,
                 settings: Optional[GenerationSettings] = None) -> ScenarioResult:
    """Convenience wrapper around ``ScenarioRunner``."""
    return ScenarioRunner(db_connection, dialect, settings).run(scenario)
