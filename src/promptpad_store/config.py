"""Configuration module for the Promptpad store."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")


logger = logging.getLogger(__name__)

DEFAULT_POOL_SIZE = 4


class StoreConfig(BaseModel):
    """Configuration for the note store and its host process."""

    # Base directory used to resolve a relative database path
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("PROMPTPAD_BASE_DIR", "."))
    )
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("PROMPTPAD_DATABASE_PATH", "data/promptpad.sqlite3")
        )
    )
    # Connection pool
    pool_size: int = Field(
        default_factory=lambda: int(
            os.getenv("PROMPTPAD_POOL_SIZE", str(DEFAULT_POOL_SIZE))
        )
    )
    pool_timeout: float = Field(
        default_factory=lambda: float(os.getenv("PROMPTPAD_POOL_TIMEOUT", "30"))
    )
    busy_timeout_ms: int = Field(
        default_factory=lambda: int(os.getenv("PROMPTPAD_BUSY_TIMEOUT_MS", "5000"))
    )
    # Logging
    log_level: str = Field(
        default_factory=lambda: os.getenv("PROMPTPAD_LOG_LEVEL", "INFO").upper()
    )
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("PROMPTPAD_LOG_DIR"))
            if os.getenv("PROMPTPAD_LOG_DIR")
            else None
        )
    )

    @model_validator(mode="after")
    def _validate_pool_settings(self) -> "StoreConfig":
        """Reject pool settings SQLAlchemy would otherwise misinterpret."""
        if self.pool_size < 1:
            raise ValueError("pool_size must be >= 1")
        if self.pool_timeout < 0:
            raise ValueError("pool_timeout must be >= 0")
        if self.busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_database_path(self) -> Path:
        """Get the absolute path of the SQLite database file."""
        return self.get_absolute_path(self.database_path)


# Create a global config instance
config = StoreConfig()
