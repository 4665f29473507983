# gtfs_editor/db_setup.py
# -*- coding: utf-8 -*-
"""
Creates and drops the schema holding one feed's editor tables.
"""
import logging

import psycopg
from psycopg import Connection as PgConnection

from . import statements
from .schema_definitions import EDITOR_TABLES

module_logger = logging.getLogger(__name__)


def create_editor_tables(conn: PgConnection, namespace: str) -> None:
    """
    Create the namespace schema and every editor table in it.

    Each table gets a SERIAL `id` primary key and an index on its key field.
    Existing tables are left untouched. Runs in its own transaction block.

    Raises:
        psycopg.Error: If any statement fails. Nothing is created then.
    """
    module_logger.info(f"Setting up editor tables in schema '{namespace}'...")
    with conn.transaction():
        with conn.cursor() as cursor:
            cursor.execute(statements.create_schema(namespace))
            for table in EDITOR_TABLES.values():
                try:
                    cursor.execute(statements.create_table(namespace, table))
                    cursor.execute(statements.create_key_index(namespace, table))
                except psycopg.Error as e:
                    module_logger.error(
                        f"Error creating table {namespace}.{table.name}: "
                        f"{e.diag.message_primary if e.diag else str(e)}"
                    )
                    raise
                module_logger.debug(f"Table {namespace}.{table.name} ensured.")
    module_logger.info(f"{len(EDITOR_TABLES)} editor tables ensured in '{namespace}'.")


def drop_editor_schema(conn: PgConnection, namespace: str) -> None:
    """Drop the namespace schema and everything in it."""
    with conn.transaction():
        with conn.cursor() as cursor:
            cursor.execute(statements.drop_schema(namespace))
    module_logger.info(f"Schema '{namespace}' dropped.")
