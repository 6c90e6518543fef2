"""
Tests for the application entry point.
"""

import logging
from unittest.mock import patch

import pytest

from runwright.app import execute_run, main
from runwright.core.config import Config
from runwright.core.exceptions import ConfigError


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config(tmp_path, e2e_dir):
    config_path = tmp_path / "runwright.config.yaml"
    config_path.write_text(
        "fully_parallel: true\n"
        "workers: 2\n"
        "retries: 0\n"
        "auth:\n"
        "  enabled: false\n"
    )
    return Config(project_root=tmp_path, logs_dir=tmp_path / "logs", config_path=config_path)


def test_execute_run(config, scripted_engine, tmp_path):
    engine = scripted_engine()

    with patch("runwright.runner.PlaywrightCommandEngine", return_value=engine):
        outcome = execute_run(config)

    assert outcome.exit_code == 0
    assert len(outcome.results) == 3
    assert outcome.plan.worker_count == 2
    assert (tmp_path / "logs" / "runwright.log").exists()
    assert (tmp_path / "playwright-report" / outcome.run_id / "results.json").exists()


def test_execute_run_applies_overrides(config, scripted_engine):
    engine = scripted_engine()

    with patch("runwright.runner.PlaywrightCommandEngine", return_value=engine):
        outcome = execute_run(config, overrides={"fully_parallel": False})

    assert outcome.plan.worker_count == 1


def test_execute_run_uses_given_environment(config, scripted_engine):
    engine = scripted_engine()

    with patch("runwright.runner.PlaywrightCommandEngine", return_value=engine):
        outcome = execute_run(config, env={"BASE_URL": "http://staging:8080"})

    assert {c.base_url for c in engine.calls} == {"http://staging:8080"}
    assert outcome.plan.base_url == "http://staging:8080"


def test_missing_config_file(tmp_path):
    config = Config(
        project_root=tmp_path,
        logs_dir=tmp_path / "logs",
        config_path=tmp_path / "missing.yaml",
    )

    outcome = execute_run(config)

    assert outcome.exit_code == 1
    assert isinstance(outcome.error, ConfigError)


def test_main_returns_exit_code(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    # No tests/e2e directory in tmp_path
    assert main() == 1


def test_main_keyboard_interrupt():
    with patch("runwright.app.execute_run", side_effect=KeyboardInterrupt):
        assert main() == 130
