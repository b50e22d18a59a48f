"""
Unit tests for the ghostsync CLI.
"""

import os
import tempfile

import pytest
import yaml
from unittest.mock import AsyncMock, MagicMock, patch

from ghostsync import __version__
from ghostsync.cli import main
from ghostsync.exceptions import SchemaError
from ghostsync.resolver import ResolutionResult, ResolutionStatus


def async_context(instance):
    """Make a mock usable as ``async with``."""
    instance.__aenter__ = AsyncMock(return_value=instance)
    instance.__aexit__ = AsyncMock(return_value=None)
    return instance


@pytest.fixture
def mock_service():
    with patch("ghostsync.service.GhostSyncService") as service_cls:
        service = async_context(MagicMock())
        service_cls.return_value = service
        yield service_cls, service


class TestMainGroup:
    """Test cases for the command group."""

    def test_help(self, runner):
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "validate-config" in result.output
        assert "setup-catalog" in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output


class TestInitAndValidate:
    """Test cases for init and validate-config."""

    def test_init_writes_valid_config(self, runner):
        with runner.isolated_filesystem():
            result = runner.invoke(main, ["init", "-o", "config.yaml"])
            assert result.exit_code == 0
            assert os.path.exists("config.yaml")

            result = runner.invoke(main, ["validate-config", "-c", "config.yaml"])
            assert result.exit_code == 0
            assert "Configuration is valid" in result.output

    def test_init_keeps_existing_file(self, runner):
        with runner.isolated_filesystem():
            with open("config.yaml", "w") as f:
                f.write("service_name: mine\n")

            result = runner.invoke(main, ["init", "-o", "config.yaml"], input="n\n")

            assert result.exit_code == 0
            with open("config.yaml") as f:
                assert f.read() == "service_name: mine\n"

    def test_validate_config(self, runner, temp_config_file):
        result = runner.invoke(main, ["validate-config", "-c", temp_config_file])

        assert result.exit_code == 0
        assert "globex" in result.output

    def test_validate_invalid_config(self, runner, sample_config_data):
        sample_config_data["tenants"][0]["database"] = "missing"
        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            yaml.dump(sample_config_data, f)
            path = f.name
        try:
            result = runner.invoke(main, ["validate-config", "-c", path])
        finally:
            os.unlink(path)

        assert result.exit_code == 1
        assert "Configuration error" in result.output


class TestRunCommand:
    """Test cases for the run command."""

    def test_requires_tenant_or_all(self, runner, temp_config_file):
        result = runner.invoke(main, ["run", "-c", temp_config_file])

        assert result.exit_code == 2

    def test_rejects_tenant_and_all(self, runner, temp_config_file):
        result = runner.invoke(main, ["run", "-c", temp_config_file, "--tenant", "acme", "--all"])

        assert result.exit_code == 2

    def test_run_single_tenant(self, runner, temp_config_file, mock_service):
        service_cls, service = mock_service
        service.run_tenant = AsyncMock(
            return_value=ResolutionResult(
                status=ResolutionStatus.SUCCESS,
                tenant="acme",
                created=["parks"],
            )
        )

        result = runner.invoke(main, ["run", "-c", temp_config_file, "--tenant", "acme"])

        assert result.exit_code == 0
        service.run_tenant.assert_awaited_once_with("acme")
        assert "registered parks" in result.output

    def test_run_all_reports_failures(self, runner, temp_config_file, mock_service):
        service_cls, service = mock_service
        service.run_all = AsyncMock(
            return_value={
                "acme": SchemaError("permission denied"),
                "globex": ResolutionResult(status=ResolutionStatus.SKIPPED, tenant="globex"),
            }
        )

        result = runner.invoke(main, ["run", "-c", temp_config_file, "--all"])

        assert result.exit_code == 1
        assert "permission denied" in result.output

    def test_dry_run(self, runner, temp_config_file, mock_service):
        service_cls, service = mock_service
        service.run_all = AsyncMock(return_value={})

        result = runner.invoke(main, ["run", "-c", temp_config_file, "--all", "--dry-run"])

        assert result.exit_code == 0
        assert "Dry run mode" in result.output
        assert service_cls.call_args.args[0].resolver.dry_run


class TestCatalogCommands:
    """Test cases for setup-catalog and check-catalog."""

    @pytest.fixture
    def schema_manager(self):
        with patch("ghostsync.database.connection.DatabaseManager") as databases_cls, patch(
            "ghostsync.catalog.metadata.CatalogSchemaManager"
        ) as manager_cls:
            databases = async_context(MagicMock())
            databases.get_pool = AsyncMock(return_value=MagicMock())
            databases_cls.return_value = databases
            manager = MagicMock()
            manager_cls.return_value = manager
            yield manager

    def test_setup_catalog(self, runner, temp_config_file, schema_manager):
        schema_manager.setup_catalog_schema = AsyncMock(
            return_value={
                "schema": "ghostsync_catalog",
                "tables_created": ["ghostsync_catalog.user_tables"],
                "errors": [],
            }
        )

        result = runner.invoke(main, ["setup-catalog", "-c", temp_config_file])

        assert result.exit_code == 0
        assert "user_tables" in result.output

    def test_setup_catalog_errors(self, runner, temp_config_file, schema_manager):
        schema_manager.setup_catalog_schema = AsyncMock(
            return_value={
                "schema": "ghostsync_catalog",
                "tables_created": [],
                "errors": ["Failed to create table user_tables"],
            }
        )

        result = runner.invoke(main, ["setup-catalog", "-c", temp_config_file])

        assert result.exit_code == 1

    def test_check_catalog_healthy(self, runner, temp_config_file, schema_manager):
        schema_manager.check_catalog_integrity = AsyncMock(return_value={"is_healthy": True})

        result = runner.invoke(main, ["check-catalog", "-c", temp_config_file])

        assert result.exit_code == 0
        assert "healthy" in result.output

    def test_check_catalog_missing_table(self, runner, temp_config_file, schema_manager):
        schema_manager.check_catalog_integrity = AsyncMock(
            return_value={
                "is_healthy": False,
                "missing_components": ["table:synchronizations"],
            }
        )

        result = runner.invoke(main, ["check-catalog", "-c", temp_config_file])

        assert result.exit_code == 1
        assert "synchronizations" in result.output
