# common/config_models.py
# -*- coding: utf-8 -*-
"""
Pydantic models for the GTFS editor configuration.

This module defines the structured settings for the editor table writer,
including defaults, type annotations, and descriptions.
It utilizes Pydantic for data validation and settings management.
"""

import re
from typing import Dict

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Default Static Values (can be overridden by config file/env) ---
PGHOST_DEFAULT: str = "127.0.0.1"
PGPORT_DEFAULT: int = 5432
PGDATABASE_DEFAULT: str = "gis"
PGUSER_DEFAULT: str = "osmuser"
PGPASSWORD_DEFAULT: str = "yourStrongPasswordHere"

NAMESPACE_DEFAULT: str = "public"
INSERT_BATCH_SIZE_DEFAULT: int = 500
LOG_PREFIX_DEFAULT: str = "[GTFS-EDITOR]"

NAMESPACE_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

SYMBOLS_DEFAULT: Dict[str, str] = {
    "success": "✅", "error": "❌", "warning": "⚠️", "info": "ℹ️",
    "step": "➡️", "critical": "🔥", "debug": "🐛",
}


class PostgresSettings(BaseSettings):
    """PostgreSQL connection settings."""
    model_config = SettingsConfigDict(
        env_prefix='PG_',
        extra='ignore'
    )

    host: str = Field(default=PGHOST_DEFAULT, description="PostgreSQL host.")
    port: int = Field(default=PGPORT_DEFAULT, description="PostgreSQL port.")
    database: str = Field(default=PGDATABASE_DEFAULT, description="PostgreSQL database name.")
    user: str = Field(default=PGUSER_DEFAULT, description="PostgreSQL username.")
    password: str = Field(default=PGPASSWORD_DEFAULT, description="PostgreSQL password.", exclude=True)


class EditorSettings(BaseSettings):
    """Main settings for the editor table writer."""
    model_config = SettingsConfigDict(
        env_prefix='GTFS_EDITOR_',
        extra='ignore'
    )

    namespace: str = Field(
        default=NAMESPACE_DEFAULT,
        description="Database schema holding the editable feed tables.",
    )
    insert_batch_size: int = Field(
        default=INSERT_BATCH_SIZE_DEFAULT,
        gt=0,
        description="Maximum number of child rows sent in a single batched insert.",
    )
    log_level: str = Field(default="INFO", description="Logging level name.")
    log_prefix: str = Field(default=LOG_PREFIX_DEFAULT, description="Prefix for log messages.")

    pg: PostgresSettings = Field(default_factory=PostgresSettings)

    symbols: Dict[str, str] = Field(default_factory=lambda: dict(SYMBOLS_DEFAULT))

    @field_validator("namespace")
    @classmethod
    def check_namespace(cls, v: str) -> str:
        """Namespaces end up as SQL identifiers, so only plain names are allowed."""
        if not NAMESPACE_PATTERN.match(v):
            raise ValueError(f"Namespace '{v}' is not a valid schema name.")
        return v

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level '{v}'.")
        return level
