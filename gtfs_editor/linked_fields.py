# gtfs_editor/linked_fields.py
# -*- coding: utf-8 -*-
"""
Propagation of duplicated ("linked") field values.

Some values live in one place in the editor but are repeated on other rows in
GTFS, for example routes.wheelchair_accessible on every trip of the route, or
pattern_stops.timepoint on the matching stop time of every trip of the
pattern. After the source entity is written, one UPDATE copies the values
into the dependent rows.
"""

import logging
from typing import Any, Dict, List

from psycopg import Cursor as PgCursor

from . import statements
from .schema_definitions import LinkedFields, Table

module_logger = logging.getLogger(__name__)


def propagate_linked_fields(
    cursor: PgCursor,
    namespace: str,
    source_table: Table,
    linked: LinkedFields,
    values: Dict[str, Any],
) -> int:
    """
    Copy `linked.fields` from a prepared source row into the linked table.

    Args:
        cursor: Active Psycopg 3 cursor.
        namespace: Schema holding the editor tables.
        source_table: Table of the entity providing the values.
        linked: Which fields go where.
        values: The source entity's prepared row.

    Returns:
        Number of rows updated. Zero is normal (e.g. a pattern without trips).
    """
    if not linked.fields:
        return 0
    key_value = values.get(linked.key_field)
    if key_value is None:
        module_logger.debug(
            f"No {linked.key_field} on {source_table.name} row; skipping linked {linked.target_table} fields."
        )
        return 0

    order_field = source_table.order_field if linked.match_order_field else None
    params: List[Any] = [values.get(name) for name in linked.fields]
    params.append(key_value)
    if order_field:
        params.append(values.get(order_field))

    cursor.execute(
        statements.update_linked_fields(namespace, linked, order_field), params
    )
    updated = cursor.rowcount if cursor.rowcount and cursor.rowcount > 0 else 0
    module_logger.debug(
        f"{updated} {linked.target_table} linked field(s) {list(linked.fields)} updated from {source_table.name} {key_value}"
    )
    return updated


def propagate_all(
    cursor: PgCursor, namespace: str, source_table: Table, values: Dict[str, Any]
) -> int:
    """Apply every linked field set declared by `source_table`."""
    if not source_table.linked_fields:
        module_logger.debug(f"No linked fields to update for {source_table.name}.")
        return 0
    return sum(
        propagate_linked_fields(cursor, namespace, source_table, linked, values)
        for linked in source_table.linked_fields
    )
