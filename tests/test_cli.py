import json

import pytest
import yaml
from click.testing import CliRunner

from chakravarti.cli import main

SPEC_DATA = {
    "id": "add_login",
    "goal": "Add a login page",
    "acceptance": ["Login form renders"],
    "verify": {"commands": ["pytest -q"]},
}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def home(tmp_path, monkeypatch):
    """A chakravarti home whose config keeps every path inside tmp_path."""
    home = tmp_path / "home"
    home.mkdir()
    specs = tmp_path / "specs"
    specs.mkdir()
    (specs / "add_login.yaml").write_text(yaml.safe_dump(SPEC_DATA))
    config = {
        "specs_dir": str(specs),
        "store_dir": str(tmp_path / "store"),
        "log_file": str(tmp_path / "logs" / "chakravarti.log"),
        "allowed_factory_modules": ["chakravarti.handlers"],
    }
    (home / "config.yaml").write_text(yaml.safe_dump(config))
    monkeypatch.setenv("CHAKRAVARTI_HOME", str(home))
    return home


def test_init_command_creates_files(runner, tmp_path, monkeypatch):
    home = tmp_path / "custom_home"
    monkeypatch.setenv("CHAKRAVARTI_HOME", str(home))

    result = runner.invoke(main, ["init"])
    assert result.exit_code == 0
    assert "Initialized chakravarti config" in result.output
    assert (home / "config.yaml").exists()
    assert (home / ".env").exists()

    cfg = yaml.safe_load((home / "config.yaml").read_text())
    assert cfg["max_attempts"] == 3


def test_init_does_not_overwrite_without_force(runner, tmp_path, monkeypatch):
    home = tmp_path / "custom_home"
    monkeypatch.setenv("CHAKRAVARTI_HOME", str(home))
    home.mkdir(parents=True)
    (home / "config.yaml").write_text("max_attempts: 9\n")

    result = runner.invoke(main, ["init"])
    assert result.exit_code == 1
    assert "Config already exists" in result.output
    assert (home / "config.yaml").read_text() == "max_attempts: 9\n"


def test_init_force_overwrites(runner, tmp_path, monkeypatch):
    home = tmp_path / "custom_home"
    monkeypatch.setenv("CHAKRAVARTI_HOME", str(home))
    home.mkdir(parents=True)
    (home / "config.yaml").write_text("max_attempts: 9\n")

    result = runner.invoke(main, ["init", "--force"])
    assert result.exit_code == 0
    assert yaml.safe_load((home / "config.yaml").read_text())["max_attempts"] == 3


def test_specs_lists_registry(runner, home):
    result = runner.invoke(main, ["specs"])
    assert result.exit_code == 0
    assert result.output.strip() == "add_login"


def test_plan_shows_batches(runner, home):
    result = runner.invoke(main, ["plan", "add_login"])
    assert result.exit_code == 0
    assert "for add_login: Add a login page" in result.output
    assert "1. analyze [analyze]" in result.output
    assert "4. commit [commit] (after test)" in result.output


def test_run_dry_run_succeeds(runner, home):
    result = runner.invoke(main, ["run", "add_login", "--dry-run"])
    assert result.exit_code == 0, result.output
    assert "DRY RUN MODE" in result.output
    assert "state pending -> planning" in result.output
    assert "step test completed" in result.output
    assert "succeeded after 1 attempt(s)" in result.output


def test_run_json_then_status(runner, home, tmp_path):
    spec_path = tmp_path / "specs" / "add_login.yaml"
    result = runner.invoke(main, ["run", str(spec_path), "--dry-run", "--json"])
    assert result.exit_code == 0, result.output
    record = json.loads(result.output)
    assert record["state"] == "succeeded"
    assert len(record["attempts"]) == 1

    status = runner.invoke(main, ["status", record["id"]])
    assert status.exit_code == 0
    assert "State: succeeded" in status.output
    assert "attempt 1: success" in status.output

    jobs = runner.invoke(main, ["jobs", "--state", "succeeded"])
    assert record["id"] in jobs.output
    assert "No jobs found." in runner.invoke(main, ["jobs", "--state", "failed"]).output


def test_run_requires_collaborators(runner, home):
    result = runner.invoke(main, ["run", "add_login"])
    assert result.exit_code == 2
    assert "--collaborators" in result.output


def test_run_rejects_factory_outside_allowlist(runner, home):
    result = runner.invoke(main, ["run", "add_login", "--collaborators", "os:system"])
    assert result.exit_code == 1
    assert "not in allowlist" in result.output


def test_run_rejects_factory_returning_wrong_type(runner, home):
    result = runner.invoke(main, ["run", "add_login", "--collaborators", "chakravarti.handlers.base:StepOutput"])
    assert result.exit_code == 1
    assert "expected Collaborators" in result.output


def test_run_unknown_spec(runner, home):
    result = runner.invoke(main, ["run", "ghost", "--dry-run"])
    assert result.exit_code == 1
    assert "Spec not found: ghost" in result.output


def test_status_unknown_job(runner, home):
    result = runner.invoke(main, ["status", "01NOPE"])
    assert result.exit_code == 1
    assert "Unknown job" in result.output


def test_invalid_config_reported(runner, tmp_path, monkeypatch):
    monkeypatch.setenv("CHAKRAVARTI_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("max_attempts: 0\n")
    result = runner.invoke(main, ["specs"])
    assert result.exit_code == 1
    assert "Invalid config" in result.output
