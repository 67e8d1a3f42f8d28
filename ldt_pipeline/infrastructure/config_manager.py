"""Configuration Manager.

Loads the store configuration from environment variables (with an optional
``.env`` file) and validates it with Pydantic before anything connects.

Security Impact:
    - The database path is validated before use (parent directory must exist)
    - Configuration values are never logged, only their source

Architecture:
    - Infrastructure layer, isolated from the domain
    - Type-safe configuration using Pydantic models
    - Fail-fast validation prevents runtime errors
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

SUPPORTED_DB_TYPES = ("memory", "duckdb")


class DatabaseConfig(BaseModel):
    """Store configuration.

    Parameters:
        db_type: ``memory`` (process-local stores) or ``duckdb``
        db_path: DuckDB database file, or ``:memory:``
    """

    db_type: str = Field("memory", description="Store type (memory, duckdb)")
    db_path: Optional[str] = Field(None, description="Path to database file (for DuckDB)")

    @field_validator("db_type")
    @classmethod
    def validate_db_type(cls, v: str) -> str:
        if v.lower() not in SUPPORTED_DB_TYPES:
            raise ValueError(f"Unsupported database type: {v}. Supported: {list(SUPPORTED_DB_TYPES)}")
        return v.lower()

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: Optional[str]) -> Optional[str]:
        """Validate the database directory exists (the file may not yet)."""
        if v is None or v == ":memory:":
            return v
        db_path_obj = Path(v)
        if not db_path_obj.parent.exists():
            raise ValueError(f"Database directory does not exist: {db_path_obj.parent}")
        return str(db_path_obj)

    @model_validator(mode="after")
    def default_duckdb_path(self) -> "DatabaseConfig":
        if self.db_type == "duckdb" and not self.db_path:
            self.db_path = ":memory:"
        return self

    @property
    def is_durable(self) -> bool:
        return self.db_type == "duckdb" and self.db_path not in (None, ":memory:")


class ConfigManager:
    """Configuration loader.

    Example Usage:
        ```python
        config = ConfigManager.from_environment()
        db_config = config.get_database_config()
        ```
    """

    def __init__(self, config_data: Dict[str, Any]):
        self._config_data = config_data
        self._database_config: Optional[DatabaseConfig] = None

    @classmethod
    def from_environment(cls, env_file: Optional[str] = None) -> "ConfigManager":
        """Load configuration from ``LDT_DB_*`` environment variables.

        Environment Variables:
            - LDT_DB_TYPE: Store type (memory, duckdb)
            - LDT_DB_PATH: Path to the DuckDB file

        A ``.env`` file (``env_file`` or the working directory's) is loaded
        first; variables already set in the environment win.
        """
        env_path = Path(env_file) if env_file else Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path, override=False)
            logger.debug(f"Loaded environment variables from {env_path}")

        config_data = {
            "database": {
                "db_type": os.getenv("LDT_DB_TYPE", "memory"),
                "db_path": os.getenv("LDT_DB_PATH"),
            }
        }
        return cls(config_data)

    def get_database_config(self) -> DatabaseConfig:
        if self._database_config is None:
            self._database_config = DatabaseConfig(**self._config_data.get("database", {}))
        return self._database_config


def get_database_config() -> DatabaseConfig:
    """Database configuration from the environment (defaults to in-memory stores)."""
    return ConfigManager.from_environment().get_database_config()
