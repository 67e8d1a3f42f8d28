"""Unit tests for the configuration manager."""

import pytest
from pydantic import ValidationError

from ldt_pipeline.infrastructure.config_manager import ConfigManager, DatabaseConfig


class TestDatabaseConfig:
    """Validation of store configuration."""

    def test_defaults_to_memory(self):
        config = DatabaseConfig()

        assert config.db_type == "memory"
        assert not config.is_durable

    def test_type_is_case_insensitive(self):
        assert DatabaseConfig(db_type="DuckDB").db_type == "duckdb"

    def test_unsupported_type(self):
        with pytest.raises(ValidationError, match="Unsupported database type"):
            DatabaseConfig(db_type="postgresql")

    def test_duckdb_defaults_to_in_memory_database(self):
        config = DatabaseConfig(db_type="duckdb")

        assert config.db_path == ":memory:"
        assert not config.is_durable

    def test_durable_duckdb(self, tmp_path):
        config = DatabaseConfig(db_type="duckdb", db_path=str(tmp_path / "ldt.duckdb"))

        assert config.is_durable

    def test_missing_parent_directory(self, tmp_path):
        with pytest.raises(ValidationError, match="does not exist"):
            DatabaseConfig(db_type="duckdb", db_path=str(tmp_path / "missing" / "ldt.duckdb"))


class TestConfigManager:
    """Loading configuration from the environment and from files."""

    def test_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("LDT_DB_TYPE", "duckdb")
        monkeypatch.setenv("LDT_DB_PATH", str(tmp_path / "ldt.duckdb"))

        config = ConfigManager.from_environment(env_file=str(tmp_path / "absent.env"))

        assert config.get_database_config().db_path == str(tmp_path / "ldt.duckdb")

    def test_env_file(self, monkeypatch, tmp_path):
        """Test a .env file fills variables the environment does not set."""
        # load_dotenv writes straight into os.environ; set-then-delete makes
        # monkeypatch restore the original state afterwards
        for name in ("LDT_DB_TYPE", "LDT_DB_PATH"):
            monkeypatch.setenv(name, "unset")
            monkeypatch.delenv(name)
        env_file = tmp_path / ".env"
        env_file.write_text(f"LDT_DB_TYPE=duckdb\nLDT_DB_PATH={tmp_path / 'env.duckdb'}\n", encoding="utf-8")

        config = ConfigManager.from_environment(env_file=str(env_file))

        assert config.get_database_config().db_type == "duckdb"
        assert config.get_database_config().db_path == str(tmp_path / "env.duckdb")
