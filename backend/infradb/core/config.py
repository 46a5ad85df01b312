"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly. Database selection happens here:
``DATABASE_TYPE`` picks the engine and the ``SQLITE_*`` / ``MYSQL_*``
variables describe the connection.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Literal, Optional, Union

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SQLITE_MEMORY = ":memory:"


@dataclass(frozen=True)
class SQLiteConfig:
    filename: str = SQLITE_MEMORY

    @property
    def is_memory(self) -> bool:
        return self.filename == SQLITE_MEMORY


@dataclass(frozen=True)
class MySQLConfig:
    host: str
    user: str
    password: str
    database: str
    port: int = 3306
    ssl: bool = False
    connection_limit: int = 10
    queue_limit: int = 0


DatabaseConfig = Union[SQLiteConfig, MySQLConfig]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "InfraDB"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Apply pending migrations when the API process starts
    run_migrations_on_startup: bool = True

    # ==========================================================================
    # Database selection
    # ==========================================================================
    database_type: Literal["sqlite", "mysql"] = "sqlite"

    # SQLite - ":memory:" gives a throwaway database
    sqlite_filename: str = "./data/infradb.db"

    # MySQL
    mysql_host: Optional[str] = None
    mysql_port: int = 3306
    mysql_user: Optional[str] = None
    mysql_password: Optional[str] = None
    mysql_database: Optional[str] = None
    mysql_ssl: bool = False
    mysql_conn_limit: int = 10
    mysql_queue_limit: int = 0

    @field_validator("database_type", mode="before")
    @classmethod
    def normalize_database_type(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("mysql_port")
    @classmethod
    def validate_mysql_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError(f"MYSQL_PORT must be between 1 and 65535 (got {v})")
        return v

    @field_validator("mysql_conn_limit")
    @classmethod
    def validate_conn_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MYSQL_CONN_LIMIT must be at least 1")
        return v

    @field_validator("mysql_queue_limit")
    @classmethod
    def validate_queue_limit(cls, v: int) -> int:
        if v < 0:
            raise ValueError("MYSQL_QUEUE_LIMIT cannot be negative")
        return v

    @model_validator(mode="after")
    def validate_database_settings(self) -> "Settings":
        """Fail fast when the selected engine is missing required settings."""
        if self.database_type == "mysql":
            required = {
                "MYSQL_HOST": self.mysql_host,
                "MYSQL_DATABASE": self.mysql_database,
                "MYSQL_USER": self.mysql_user,
                "MYSQL_PASSWORD": self.mysql_password,
            }
            missing = [name for name, value in required.items() if not value]
            if missing:
                raise ValueError(
                    "FATAL: DATABASE_TYPE=mysql requires the following environment "
                    f"variables: {', '.join(missing)}"
                )
        elif not self.sqlite_filename.strip():
            raise ValueError("FATAL: SQLITE_FILENAME cannot be empty")
        return self

    def database_config(self) -> DatabaseConfig:
        """Build the connection config for the selected engine."""
        if self.database_type == "mysql":
            return MySQLConfig(
                host=self.mysql_host,
                port=self.mysql_port,
                user=self.mysql_user,
                password=self.mysql_password,
                database=self.mysql_database,
                ssl=self.mysql_ssl,
                connection_limit=self.mysql_conn_limit,
                queue_limit=self.mysql_queue_limit,
            )
        return SQLiteConfig(filename=self.sqlite_filename)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
