# gtfs_editor/integrity.py
# -*- coding: utf-8 -*-
"""
Key field checks for the entity being written.

Before the primary row is inserted or updated, its key value must be present
(or generated), unique within the table, and, when it changed, every
reference to the old value must follow it.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from psycopg import Cursor as PgCursor

from . import readers
from .cascade import CascadeManager
from .documents import is_empty
from .exceptions import ConflictError, EntityValidationError
from .schema_definitions import KeyGeneration, Table

module_logger = logging.getLogger(__name__)


def ensure_referential_integrity(
    cursor: PgCursor,
    namespace: str,
    table: Table,
    document: Dict[str, Any],
    entity_id: Optional[int] = None,
    cascade: Optional[CascadeManager] = None,
) -> Optional[str]:
    """
    Check the document's key value and rename references when it changed.

    An empty string key counts as a missing key. A missing key is generated
    for tables with generated keys, allowed for a table whose key is only
    required once it holds more than one row, and rejected otherwise.

    Args:
        cursor: Active Psycopg 3 cursor.
        namespace: Schema holding the editor tables.
        table: Table of the entity.
        document: The entity document. Its key may be filled in.
        entity_id: Surrogate id of the row being updated, None when creating.
        cascade: Cascade manager used to rename references.

    Returns:
        The key value the entity will be stored with.

    Raises:
        EntityValidationError: If the key is missing and cannot be omitted.
        ConflictError: If the key value is already used by another row.
    """
    is_creating = entity_id is None
    key_field = table.key_field

    if is_empty(document.get(key_field)):
        if table.key_generation is KeyGeneration.GENERATED:
            document[key_field] = str(uuid.uuid4())
            module_logger.debug(f"Generated {key_field} {document[key_field]}")
        elif table.key_generation is KeyGeneration.OPTIONAL_IF_SINGLE:
            module_logger.warning(f"{key_field} field for {table.name} id={entity_id} is null.")
            row_count = readers.get_row_count(cursor, namespace, table)
            if row_count > 1 or (is_creating and row_count > 0):
                raise EntityValidationError(
                    f"{key_field} must not be null if more than one {table.name} exists.",
                    table_name=table.name,
                    field_name=key_field,
                )
            document[key_field] = None
            return None
        else:
            raise EntityValidationError(
                f"Key field {key_field} must not be null",
                table_name=table.name,
                field_name=key_field,
            )

    key_value = str(document[key_field])
    document[key_field] = key_value
    matching_ids = readers.get_ids_for_condition(cursor, namespace, table, key_field, key_value)
    size = len(matching_ids)

    if size == 0:
        if not is_creating:
            # The key is changing to a value nobody uses yet.
            manager = cascade or CascadeManager(cursor, namespace)
            manager.rename_references(table, entity_id, key_value)
        return key_value

    if size == 1:
        if is_creating:
            raise ConflictError(
                f"New {table.entity_name}'s {key_field} value ({key_value}) conflicts with an existing record in table.",
                table_name=table.name,
                field_name=key_field,
                values=[key_value],
            )
        if matching_ids[0] != entity_id:
            raise ConflictError(
                "Key field must be unique and request parameter ID must exist.",
                table_name=table.name,
                field_name=key_field,
                values=[key_value],
            )
        return key_value

    message = (
        f"{size} {table.name} entities shares the same key field ({key_field}={key_value})! "
        "Key field must be unique."
    )
    module_logger.error(message)
    raise ConflictError(
        message,
        table_name=table.name,
        field_name=key_field,
        values=[key_value],
    )
