"""Application Settings.

Pipeline settings read from ``LDT_*`` environment variables with defaults
that match the LDT wire conventions, plus lazy access to the store
configuration.

Security Impact:
    - Settings never carry message content
    - Invalid values fail fast at startup instead of mid-batch
"""

import os
from typing import Optional

from ldt_pipeline.infrastructure.config_manager import DatabaseConfig, get_database_config

# Application metadata
APP_NAME = "LDT-Ingest"
APP_VERSION = "1.0.0"

DEFAULT_TERMINATOR_LENGTH = 0
DEFAULT_WRAPPER_TAG = "column1"
DEFAULT_FUZZY_THRESHOLD = 0.85
DEFAULT_LOOKUP_TIMEOUT = 5.0
DEFAULT_RETRY_MAX_ATTEMPTS = 5
DEFAULT_RETRY_BASE_DELAY = 60.0
DEFAULT_RETRY_MAX_DELAY = 3600.0


def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name, "").strip()
    return float(value) if value else None


class Settings:
    """Application settings loaded from the environment."""

    def __init__(self):
        self._db_config: Optional[DatabaseConfig] = None

        self.app_name = os.getenv("LDT_APP_NAME", APP_NAME)

        # Logging
        self.log_level = os.getenv("LDT_LOG_LEVEL", "INFO")
        self.log_json = os.getenv("LDT_LOG_JSON", "false").lower() == "true"

        # Codec
        self.terminator_length = int(os.getenv("LDT_TERMINATOR_LENGTH", str(DEFAULT_TERMINATOR_LENGTH)))
        self.wrapper_tag = os.getenv("LDT_WRAPPER_TAG", DEFAULT_WRAPPER_TAG)
        self.max_decode_failure_ratio = _optional_float("LDT_MAX_DECODE_FAILURE_RATIO")

        # Matching
        self.fuzzy_threshold = float(os.getenv("LDT_FUZZY_THRESHOLD", str(DEFAULT_FUZZY_THRESHOLD)))
        self.lookup_timeout = float(os.getenv("LDT_LOOKUP_TIMEOUT", str(DEFAULT_LOOKUP_TIMEOUT)))
        self.directory_file = os.getenv("LDT_DIRECTORY_FILE")

        # Retry
        self.retry_max_attempts = int(os.getenv("LDT_RETRY_MAX_ATTEMPTS", str(DEFAULT_RETRY_MAX_ATTEMPTS)))
        self.retry_base_delay = float(os.getenv("LDT_RETRY_BASE_DELAY", str(DEFAULT_RETRY_BASE_DELAY)))
        self.retry_max_delay = float(os.getenv("LDT_RETRY_MAX_DELAY", str(DEFAULT_RETRY_MAX_DELAY)))

        if self.terminator_length not in (0, 1, 2):
            raise ValueError("LDT_TERMINATOR_LENGTH must be 0, 1 or 2")
        if self.retry_max_attempts < 1:
            raise ValueError("LDT_RETRY_MAX_ATTEMPTS must be at least 1")

    @property
    def db_config(self) -> DatabaseConfig:
        """Store configuration, loaded lazily on first access."""
        if self._db_config is None:
            self._db_config = get_database_config()
        return self._db_config

    def get_db_path(self) -> str:
        """Database path for DuckDB, or ``:memory:``."""
        if self.db_config.db_type == "duckdb":
            return self.db_config.db_path or ":memory:"
        raise ValueError(f"Database type '{self.db_config.db_type}' does not use db_path")


# Global settings instance
settings = Settings()
