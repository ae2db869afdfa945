"""Environment-driven configuration with Pydantic v2."""

from typing import Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Storage settings driven entirely by environment variables (LEARNSTORE_*)."""

    # Database Configuration
    database_dir: str = Field(default="./data")
    database_name: str = Field(default="learnstore.db", min_length=1)
    database_echo: bool = Field(default=False)
    database_foreign_keys: bool = Field(default=True)

    # Query instrumentation (wraps the connection, observability only)
    database_logging_enabled: bool = Field(default=False)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="console")
    log_file: Optional[str] = Field(default=None)

    @field_validator("database_dir")
    @classmethod
    def validate_database_dir(cls, v):
        """Ensure the datastore directory exists."""
        if v:
            Path(v).mkdir(parents=True, exist_ok=True)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    def database_path(self, name: str) -> str:
        """Resolve a datastore name to a file path (":memory:" is kept as is)."""
        if name == ":memory:":
            return name
        return str(Path(self.database_dir) / name)

    model_config = {
        "env_prefix": "LEARNSTORE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
    }
