# common/db_utils.py
# -*- coding: utf-8 -*-
"""
PostgreSQL connection helpers built on Psycopg 3.
"""

import logging
from typing import Dict, Optional

import psycopg

from common.config_models import PGPASSWORD_DEFAULT, PostgresSettings

module_logger = logging.getLogger(__name__)


def build_conninfo(pg_settings: PostgresSettings) -> str:
    """
    Build a libpq key/value connection string from PostgresSettings.

    Args:
        pg_settings: The connection settings to render.

    Returns:
        A conninfo string such as "dbname=gis user=osmuser ... port=5432".
    """
    conn_kwargs: Dict[str, object] = {
        "dbname": pg_settings.database,
        "user": pg_settings.user,
        "password": pg_settings.password,
        "host": pg_settings.host,
        "port": pg_settings.port,
    }
    return " ".join(
        f"{key}={value}" for key, value in conn_kwargs.items() if value is not None
    )


def get_db_connection(
    pg_settings: Optional[PostgresSettings] = None,
) -> Optional[psycopg.Connection]:
    """
    Attempts to establish a connection to the editor database.

    The returned connection has autocommit disabled so callers control the
    transaction boundaries.

    Args:
        pg_settings: Connection settings. When omitted, PostgresSettings is
            built from defaults and PG_* environment variables.

    Returns:
        Optional[psycopg.Connection]: An open connection, or None if the
        connection attempt failed. Failures are logged.
    """
    settings_to_use = pg_settings if pg_settings else PostgresSettings()

    if settings_to_use.password == PGPASSWORD_DEFAULT:
        module_logger.critical(
            "CRITICAL: Default placeholder password is being used for database "
            "connection. Please configure a strong password via PG_PASSWORD "
            "or the editor configuration file."
        )

    conninfo_str = build_conninfo(settings_to_use)
    try:
        module_logger.debug(
            f"Attempting to connect to database {settings_to_use.database} on "
            f"{settings_to_use.host}:{settings_to_use.port} using Psycopg 3."
        )
        conn = psycopg.connect(conninfo_str, autocommit=False)
        module_logger.info(
            f"Connected to database {settings_to_use.database} on "
            f"{settings_to_use.host}:{settings_to_use.port} using Psycopg 3."
        )
        return conn
    except psycopg.OperationalError as e:
        module_logger.error(
            f"Psycopg 3 database connection failed (OperationalError): {e}",
            exc_info=True,
        )
    except psycopg.Error as e:
        module_logger.error(
            f"Psycopg 3 database connection failed: {e}", exc_info=True
        )
    return None
