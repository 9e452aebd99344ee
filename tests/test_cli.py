"""Tests for the command-line interface."""

import pytest
import yaml
from click.testing import CliRunner

from dbfab.cli import cli


SCENARIO = {
    "tables": {
        "users": {
            "columns": [
                {"name": "id", "type": "bigint", "generator": {"type": "sequence"}},
                {"name": "name", "type": "string",
                 "generator": {"type": "choice", "values": ["Ann", "Bob"]}},
                {"name": "email", "type": "string", "generator": {"type": "constant", "value": ""}},
            ]
        }
    },
    "settings": {"optimize": False},
    "scenario": {
        "name": "cli",
        "steps": [
            {"generate": {"table": "users", "rows": 10, "batches": [
                [{"type": "template", "column": "email", "template": "user{id}@x.com"}],
            ]}},
        ],
    },
}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def scenario_file(tmp_path, temp_db_file):
    document = dict(SCENARIO, database={"driver": "sqlite", "database": temp_db_file})
    path = tmp_path / "scenario.yaml"
    path.write_text(yaml.safe_dump(document))
    return str(path)


class TestCommands:
    """Test CLI commands against a temporary SQLite file."""

    def test_run(self, runner, scenario_file):
        """Test running a scenario file."""
        result = runner.invoke(cli, ['run', scenario_file])

        assert result.exit_code == 0, result.output
        assert "Scenario 'cli' completed successfully" in result.output
        assert "users: 10 rows inserted, 1 batch(es) applied" in result.output

    def test_run_then_info(self, runner, scenario_file):
        """Info reports on tables created by a run."""
        runner.invoke(cli, ['run', scenario_file])
        result = runner.invoke(cli, ['info', 'users', '--config', scenario_file])

        assert result.exit_code == 0, result.output
        assert "Rows: 10" in result.output
        assert "Columns: id, name, email" in result.output

    def test_info_missing_table(self, runner, scenario_file):
        result = runner.invoke(cli, ['info', 'ghosts', '--config', scenario_file])
        assert result.exit_code != 0
        assert "Table 'ghosts' not found" in result.output

    def test_generate(self, runner, scenario_file):
        """Generate one table with a batch size override."""
        result = runner.invoke(cli, ['generate', scenario_file, '--table', 'users', '--rows', '7',
                                     '--batch-size', '3'])

        assert result.exit_code == 0, result.output
        assert "users: 7 rows inserted in 3 chunk(s)" in result.output

    def test_generate_unknown_table(self, runner, scenario_file):
        result = runner.invoke(cli, ['generate', scenario_file, '-t', 'ghosts', '-r', '5'])

        assert result.exit_code != 0
        assert "is not declared" in result.output

    def test_invalid_batch_size(self, runner, scenario_file):
        result = runner.invoke(cli, ['run', scenario_file, '--batch-size', '0'])

        assert result.exit_code != 0
        assert "Invalid settings" in result.output

    def test_sweep_without_orphans(self, runner, scenario_file):
        result = runner.invoke(cli, ['sweep', 'users', '--config', scenario_file])

        assert result.exit_code == 0, result.output
        assert "No orphaned tables found for users" in result.output

    def test_demo(self, runner, temp_db_file):
        """The demo runs end to end on SQLite."""
        result = runner.invoke(cli, ['demo', '--database', temp_db_file, '--users', '20',
                                     '--orders', '50', '--seed', '1', '--no-optimize'])

        assert result.exit_code == 0, result.output
        assert "Scenario 'demo' completed successfully" in result.output
        assert "users: 20 rows inserted, 2 batch(es) applied" in result.output
        assert "orders: 50 rows inserted, 1 batch(es) applied" in result.output
        assert "Sample users" in result.output

    def test_help(self, runner):
        result = runner.invoke(cli, ['--help'])
        assert result.exit_code == 0
        for command in ('run', 'generate', 'demo', 'info', 'sweep'):
            assert command in result.output
