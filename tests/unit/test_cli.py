"""
CLI commands against an in-memory database.
"""
import pytest
from typer.testing import CliRunner

from tradesync.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr("tradesync.cli.setup_logging", lambda *args, **kwargs: None)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "environment: test\n"
        "data:\n  database_url: sqlite://\n"
        "monitoring:\n  log_level: WARNING\n  log_format: text\n  log_file: null\n"
    )
    return str(path)


def test_init_db(config_file):
    result = runner.invoke(app, ["init-db", "--config", config_file])
    assert result.exit_code == 0
    assert "Database tables created" in result.output


def test_stats_for_empty_user(config_file):
    result = runner.invoke(app, ["stats", "--user-id", "1", "--config", config_file])
    assert result.exit_code == 0
    assert "STATISTICS: user 1" in result.output
    assert "0.0%" in result.output


def test_sync_without_connection_exits_nonzero(config_file):
    result = runner.invoke(app, ["sync", "--user-id", "1", "--config", config_file])
    assert result.exit_code == 1
    assert '"status": "no_connection"' in result.output


def test_reset_with_confirmation_flag(config_file):
    result = runner.invoke(app, ["reset", "--user-id", "1", "--yes", "--config", config_file])
    assert result.exit_code == 0
    assert "Deleted 0 trades and 0 equity snapshots" in result.output


def test_reset_aborts_without_confirmation(config_file):
    result = runner.invoke(app, ["reset", "--user-id", "1", "--config", config_file], input="n\n")
    assert result.exit_code != 0
