# gtfs_editor/cascade.py
# -*- coding: utf-8 -*-
"""
Cascading deletes and key renames.

When an entity is deleted, every row referencing its key value is deleted as
well, after the rows that would otherwise be orphaned one level further down
(pattern halts and shape points of a route's patterns, stop times and
frequencies of its trips). Tables flagged as cascade-restricted refuse the
delete instead while anything references them.

When an entity's key value changes, every reference to the old value is
pointed at the new one. List fields have only the matching element replaced.

Relationships are read from the table metadata, never hardcoded here.
"""

import logging
from typing import List, Optional, Tuple

from psycopg import Cursor as PgCursor

from . import readers, statements
from .exceptions import ConflictError
from .schema_definitions import (
    Table,
    TableField,
    child_tables,
    referencing_fields,
)

module_logger = logging.getLogger(__name__)


class CascadeManager:
    """Applies DELETE and rename cascades inside the caller's transaction."""

    def __init__(self, cursor: PgCursor, namespace: str):
        self.cursor = cursor
        self.namespace = namespace

    def _key_value_for(self, table: Table, entity_id: int, action: str) -> Optional[str]:
        key_value = readers.get_value_for_id(
            self.cursor, self.namespace, table, entity_id, table.key_field
        )
        if key_value is None:
            module_logger.warning(
                f"Entity {entity_id} to {action} has null value for {table.name}.{table.key_field}. "
                "Skipping references check."
            )
        return key_value

    # --- DELETE ---

    def delete_references(self, table: Table, entity_id: int) -> int:
        """
        Remove everything depending on the entity before it is deleted.

        Returns:
            Number of dependent rows deleted.

        Raises:
            ConflictError: If the table is cascade-restricted and rows
                reference the entity. Nothing is deleted in that case.
        """
        references = referencing_fields(table.name)
        if not references:
            return 0
        key_value = self._key_value_for(table, entity_id, "delete")
        if key_value is None:
            return 0

        if table.cascade_delete_restricted:
            self._check_restriction(table, key_value, references)

        deleted = self._delete_descendants(table, key_value, references)
        for referencing_table, field in references:
            self.cursor.execute(
                statements.delete_where(self.namespace, referencing_table, field.name),
                (key_value,),
            )
            count = max(self.cursor.rowcount, 0)
            deleted += count
            if count:
                module_logger.info(
                    f"{count} reference(s) in {self.namespace}.{referencing_table.name} DELETED!"
                )
            else:
                module_logger.debug(
                    f"No references in {self.namespace}.{referencing_table.name}.{field.name} found."
                )
        return deleted

    def _check_restriction(
        self, table: Table, key_value: str, references: List[Tuple[Table, TableField]]
    ) -> None:
        for referencing_table, field in references:
            count = readers.count_where(
                self.cursor, self.namespace, referencing_table, field.name, key_value
            )
            if count:
                message = (
                    f"Cannot delete {table.entity_name} {table.key_field}={key_value}. "
                    f"{count} {referencing_table.name} reference this {table.entity_name}."
                )
                module_logger.warning(message)
                raise ConflictError(
                    message,
                    table_name=table.name,
                    field_name=table.key_field,
                    values=[key_value],
                    blocking_count=count,
                )

    def _delete_descendants(
        self, table: Table, key_value: str, references: List[Tuple[Table, TableField]]
    ) -> int:
        """
        Delete rows two levels below the entity, while the rows joining them
        to it still exist.
        """
        deleted = 0
        for referencing_table, field in references:
            for grandchild in child_tables(referencing_table.name):
                if grandchild.copy_on_write_owner == referencing_table.name:
                    deleted += self._delete_unshared_geometry(
                        grandchild, referencing_table, field.name, key_value
                    )
                    continue
                self.cursor.execute(
                    statements.delete_children_through(
                        self.namespace, grandchild, referencing_table, field.name
                    ),
                    (key_value,),
                )
                count = max(self.cursor.rowcount, 0)
                deleted += count
                module_logger.info(
                    f"Deleted {count} {grandchild.name} for {table.name} {key_value}"
                )
        for own_child in child_tables(table.name):
            if own_child.copy_on_write_owner == table.name:
                deleted += self._delete_unshared_geometry(
                    own_child, table, table.key_field, key_value
                )
        return deleted

    def _delete_unshared_geometry(
        self, geometry: Table, owner: Table, owner_field: str, key_value: str
    ) -> int:
        """Delete shape points of the selected owners unless used elsewhere."""
        users = [t for t, _ in referencing_fields(geometry.name)]
        self.cursor.execute(
            statements.delete_unshared_geometry(
                self.namespace, geometry, owner, owner_field, users
            ),
            statements.unshared_geometry_params(key_value, owner_field, users),
        )
        count = max(self.cursor.rowcount, 0)
        module_logger.info(
            f"Deleted {count} {geometry.name} for {owner.name} {owner_field}={key_value}; "
            "shared ones were kept"
        )
        return count

    # --- UPDATE (rename) ---

    def rename_references(self, table: Table, entity_id: int, new_key_value: str) -> int:
        """
        Point every reference to the entity's current key at `new_key_value`.

        Must run before the entity row itself is updated. Self-references
        (e.g. stops.parent_station) are renamed too.

        Returns:
            Number of referencing rows updated.
        """
        references = referencing_fields(table.name, include_self=True)
        if not references:
            return 0
        key_value = self._key_value_for(table, entity_id, "update")
        if key_value is None or key_value == new_key_value:
            return 0

        updated = 0
        for referencing_table, field in references:
            if field.is_list:
                params: Tuple[str, ...] = (key_value, new_key_value, key_value)
            else:
                params = (new_key_value, key_value)
            self.cursor.execute(
                statements.rename_reference(self.namespace, referencing_table, field.name),
                params,
            )
            count = max(self.cursor.rowcount, 0)
            updated += count
            if count:
                module_logger.info(
                    f"{count} reference(s) in {referencing_table.name}.{field.name} UPDATED "
                    f"({key_value} -> {new_key_value})"
                )
        return updated

