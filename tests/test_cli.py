"""
Tests for the recycle bin CLI module.
"""

import json
from datetime import date

import pandas as pd
import pytest
from click.testing import CliRunner
from hr_models import Base, Employee, LeaveRequest, Payroll
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from recycle_bin.cascade import DeletionManifest
from recycle_bin.cli import cli, load_registry


@pytest.fixture
def runner():
    """Create a CLI runner."""
    return CliRunner()


@pytest.fixture
def hr_database(tmp_path):
    """File-based HR database with two employees."""
    url = f"sqlite:///{tmp_path / 'hr.db'}"
    engine = create_engine(url)
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        session.add_all(
            [
                Employee(id=7, name="Dana Whitfield"),
                Employee(id=8, name="Sam Okafor"),
            ]
        )
        session.flush()
        session.add_all(
            [
                LeaveRequest(id=201, employee_id=8, starts_on=date(2024, 5, 6), days=2),
                Payroll(id=501, employee_id=7, period="2024-06", amount=4200.0),
            ]
        )
        session.commit()

    yield url, engine

    engine.dispose()


@pytest.fixture
def invoke(runner, hr_database):
    """Invoke the CLI against the HR database and registry."""
    url, _ = hr_database

    def _invoke(*args, **kwargs):
        return runner.invoke(
            cli,
            ["--database-url", url, "--registry", "hr_models:registry", *args],
            **kwargs,
        )

    return _invoke


def deletion_keys(engine):
    with Session(engine) as session:
        return list(session.scalars(select(DeletionManifest.deletion_key)))


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_cli_help(self, runner):
        """Test CLI help command."""
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Recycle Bin" in result.output
        assert "restore" in result.output

    def test_cli_version(self, runner):
        """Test CLI version command."""
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "version" in result.output.lower()

    def test_cli_no_command(self, runner):
        """Test CLI with no command shows info."""
        result = runner.invoke(cli, [])
        assert result.exit_code == 0
        assert "Recycle Bin" in result.output

    def test_invalid_command(self, runner):
        """Test invalid command."""
        result = runner.invoke(cli, ["invalid-command"])
        assert result.exit_code != 0
        assert "Usage" in result.output or "Error" in result.output


class TestConfigCommands:
    """Test configuration commands."""

    def test_config_show(self, runner):
        """Test config show command."""
        result = runner.invoke(cli, ["config", "show"])
        assert result.exit_code == 0
        assert "retention_days" in result.output

    def test_config_show_json(self, runner):
        """Test config show with JSON format."""
        result = runner.invoke(cli, ["config", "show", "--format", "json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["deletion_key_length"] == 40

    def test_config_show_yaml(self, runner):
        """Test config show with YAML format."""
        result = runner.invoke(cli, ["config", "show", "--format", "yaml"])
        assert result.exit_code == 0
        assert "retention_days: 30" in result.output


class TestRegistryLoading:
    """Test loading the cascade registry."""

    def test_load_registry(self):
        """Test loading a registry object."""
        registry = load_registry("hr_models:registry")
        assert "Employee" in registry.entity_types

    def test_load_registry_factory(self):
        """Test loading a registry from a factory function."""
        registry = load_registry("hr_models:build_registry")
        assert "LeaveRequest" in registry.entity_types

    def test_empty_registry(self):
        """Test that no path gives an empty registry."""
        assert load_registry(None).entity_types == []

    def test_bad_path(self, runner, hr_database):
        """Test that a malformed registry path is reported."""
        url, _ = hr_database
        result = runner.invoke(cli, ["--database-url", url, "--registry", "hr_models", "list"])
        assert result.exit_code == 1
        assert "module:attribute" in result.output


class TestDeletionCommands:
    """Test delete, list, show, restore and purge."""

    def test_list_empty(self, invoke):
        """Test listing an empty recycle bin."""
        result = invoke("list")
        assert result.exit_code == 0
        assert "empty" in result.output

    def test_delete_list_restore(self, invoke, hr_database):
        """Test the full operator workflow."""
        _, engine = hr_database

        result = invoke("delete", "Employee", "8", "--reason", "Duplicate", "--user", "ops-1")
        assert result.exit_code == 0, result.output
        assert "Deleted Employee:8" in result.output

        result = invoke("list", "--format", "json")
        assert result.exit_code == 0
        listed = json.loads(result.output)
        assert listed[0]["root_id"] == "8"
        assert listed[0]["deleted_by"] == "ops-1"
        assert listed[0]["table_order"] == ["leave_requests", "employees"]

        (key,) = deletion_keys(engine)
        result = invoke("show", key)
        assert result.exit_code == 0
        assert "leave_requests" in result.output

        result = invoke("restore", key)
        assert result.exit_code == 0, result.output
        assert "Restored Employee:8" in result.output
        assert deletion_keys(engine) == []

        with Session(engine) as session:
            assert session.get(LeaveRequest, 201).employee_id == 8

    def test_blocked_delete(self, invoke):
        """Test that blocker reasons are shown and the exit code is 1."""
        result = invoke("delete", "Employee", "7")
        assert result.exit_code == 1
        assert "payroll" in result.output

    def test_unknown_entity_type(self, invoke):
        """Test deleting an unregistered entity type."""
        result = invoke("delete", "Spaceship", "1")
        assert result.exit_code == 1
        assert "not registered" in result.output

    def test_restore_unknown_key(self, invoke):
        """Test restoring an unknown key."""
        result = invoke("restore", "bogus")
        assert result.exit_code == 1
        assert "bogus" in result.output

    def test_show_unknown_key(self, invoke):
        """Test showing an unknown key."""
        result = invoke("show", "bogus")
        assert result.exit_code == 1
        assert "No deletion manifest" in result.output

    def test_purge(self, invoke, hr_database):
        """Test purging one deletion."""
        _, engine = hr_database
        invoke("delete", "Employee", "8")
        (key,) = deletion_keys(engine)

        result = invoke("purge", key, "--yes")
        assert result.exit_code == 0
        assert deletion_keys(engine) == []

        result = invoke("restore", key)
        assert result.exit_code == 1

    def test_purge_requires_confirmation(self, invoke, hr_database):
        """Test that purge asks before discarding."""
        _, engine = hr_database
        invoke("delete", "Employee", "8")
        (key,) = deletion_keys(engine)

        result = invoke("purge", key, input="n\n")
        assert result.exit_code != 0
        assert deletion_keys(engine) == [key]

    def test_purge_expired(self, invoke, hr_database):
        """Test purging by age."""
        _, engine = hr_database
        invoke("delete", "Employee", "8")

        result = invoke("purge-expired", "--yes")
        assert result.exit_code == 0
        assert "Purged 0" in result.output

        result = invoke("purge-expired", "--days", "0", "--yes")
        assert result.exit_code == 0
        assert "Purged 1" in result.output
        assert deletion_keys(engine) == []

    def test_stats(self, invoke):
        """Test statistics output."""
        invoke("delete", "Employee", "8")

        result = invoke("stats")
        assert result.exit_code == 0
        assert "Recycle Bin Statistics" in result.output
        assert "Employee" in result.output


class TestExportCommand:
    """Test exporting the recycle bin contents."""

    @pytest.mark.parametrize("fmt,suffix", [("csv", "csv"), ("json", "json")])
    def test_export(self, invoke, tmp_path, fmt, suffix):
        """Test export to csv and json."""
        invoke("delete", "Employee", "8", "--reason", "Duplicate")
        output = tmp_path / f"deletions.{suffix}"

        result = invoke("export", "--output", str(output), "--format", fmt)
        assert result.exit_code == 0, result.output
        assert output.exists()

        df = pd.read_csv(output) if fmt == "csv" else pd.read_json(output)
        assert len(df) == 1
        assert df.loc[0, "reason"] == "Duplicate"
        assert df.loc[0, "table_order"] == "leave_requests, employees"
