# gtfs_editor/readers.py
# -*- coding: utf-8 -*-
"""
Read-only helpers over the editor tables.

Rows come back as plain dicts keyed by column name, with the surrogate `id`
first. All readers run on the caller's cursor so they see uncommitted
changes of the current transaction.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from psycopg import Cursor as PgCursor

from . import statements
from .schema_definitions import Table

module_logger = logging.getLogger(__name__)


def read_ordered(
    cursor: PgCursor,
    namespace: str,
    table: Table,
    key_value: Any,
    key_field: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Rows of `table` matching a key value, sorted by the table's order field.

    Args:
        cursor: Active Psycopg 3 cursor.
        namespace: Schema holding the editor tables.
        table: Table to read.
        key_value: Value to match.
        key_field: Field to match on. Defaults to the table's key field.

    Returns:
        A list of row dicts. Tables without an order field are sorted by id.
    """
    columns = [statements.ID_COLUMN] + table.field_names
    cursor.execute(
        statements.select_rows(
            namespace,
            table,
            columns,
            where_field=key_field or table.key_field,
            order_by=table.order_field or statements.ID_COLUMN,
        ),
        (key_value,),
    )
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def get_ids_for_condition(
    cursor: PgCursor, namespace: str, table: Table, field_name: str, value: Any
) -> List[int]:
    """Surrogate ids of the rows where `field_name` equals `value`."""
    cursor.execute(
        statements.select_ids_where(namespace, table, field_name), (value,)
    )
    ids = [row[0] for row in cursor.fetchall()]
    module_logger.debug(
        f"{len(ids)} {table.name} row(s) where {field_name}={value}: {ids}"
    )
    return ids


def get_value_for_id(
    cursor: PgCursor, namespace: str, table: Table, entity_id: int, field_name: str
) -> Optional[Any]:
    """Value of one field for the row with the given surrogate id, or None."""
    cursor.execute(
        statements.select_value_for_id(namespace, table, field_name), (entity_id,)
    )
    row = cursor.fetchone()
    return row[0] if row else None


def get_row_count(cursor: PgCursor, namespace: str, table: Table) -> int:
    cursor.execute(statements.count_rows(namespace, table))
    row = cursor.fetchone()
    return int(row[0]) if row else 0


def count_where(
    cursor: PgCursor, namespace: str, table: Table, field_name: str, value: Any
) -> int:
    """Rows whose field equals (or, for list fields, contains) `value`."""
    cursor.execute(statements.count_where(namespace, table, field_name), (value,))
    row = cursor.fetchone()
    return int(row[0]) if row else 0


def find_existing_keys(
    cursor: PgCursor, namespace: str, table: Table, values: Iterable[str]
) -> Set[str]:
    """The subset of `values` present as key values in `table`."""
    wanted = sorted(set(values))
    if not wanted:
        return set()
    cursor.execute(statements.select_existing_keys(namespace, table), (wanted,))
    return {row[0] for row in cursor.fetchall()}
