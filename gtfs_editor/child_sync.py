# gtfs_editor/child_sync.py
# -*- coding: utf-8 -*-
"""
Replacement of an entity's child collections.

Child rows (shape points, pattern halts, stop times, frequencies, ...) are
never diffed: on update they are deleted and inserted again from the
document. Shape points are the exception, since one shape may be shared by
several patterns. Editing a shared shape forks it to a new key instead of
changing the points other patterns still use.
"""

import logging
import uuid
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from psycopg import Cursor as PgCursor

from . import readers, statements
from .documents import prepare_row
from .exceptions import EntityValidationError
from .linked_fields import propagate_all
from .reference_checker import verify_references
from .schema_definitions import Table, get_table

if TYPE_CHECKING:  # pragma: no cover
    from .pattern_reconciliation import PatternReconciliation

module_logger = logging.getLogger(__name__)


def insert_rows(
    cursor: PgCursor,
    namespace: str,
    table: Table,
    rows: Sequence[Dict[str, Any]],
    batch_size: int,
) -> int:
    """
    Insert prepared rows with `executemany`, `batch_size` rows at a time.

    Chunking only bounds statement size; all chunks belong to the caller's
    transaction.

    Returns:
        Number of rows inserted.
    """
    if not rows:
        module_logger.info(f"No inserts to execute for {table.name}.")
        return 0
    field_names = table.field_names
    query = statements.insert_row(namespace, table, field_names, returning_id=False)
    inserted = 0
    for start in range(0, len(rows), batch_size):
        chunk = rows[start:start + batch_size]
        cursor.executemany(
            query, [tuple(row.get(name) for name in field_names) for row in chunk]
        )
        inserted += len(chunk)
        module_logger.info(
            f"Executed batch insert ({inserted}/{len(rows)}) for {namespace}.{table.name}"
        )
    return inserted


def check_order(table: Table, rows: Sequence[Dict[str, Any]]) -> None:
    """
    Validate the order field of a child collection.

    Strict tables need exactly 0..n-1 in order. Pattern halt tables only need
    unique, strictly increasing values; gaps are fine.

    Raises:
        EntityValidationError: Naming the first offending index and value.
    """
    order_field = table.order_field
    if not order_field:
        return
    seen = set()
    previous: Optional[int] = None
    for index, row in enumerate(rows):
        value = row.get(order_field)
        if table.has_strict_order:
            in_order = value == index
        else:
            in_order = previous is None or value > previous
        if value in seen or not in_order:
            if value in seen:
                problem = "duplicate"
            elif table.has_strict_order and index == 0:
                problem = "non-zero"
            else:
                problem = "non-incrementing/non-increasing"
            raise EntityValidationError(
                f"{table.name} {order_field} values must be zero-based, unique, and incrementing. "
                f"PatternHalt values must be increasing and unique only. "
                f"Entity at index {index} had {problem} illegal value of {value}",
                table_name=table.name,
                field_name=order_field,
                values=[value],
            )
        seen.add(value)
        previous = value


class ChildTableSynchronizer:
    """
    Replaces the child rows of one parent entity, table by table.

    Args:
        cursor: Cursor of the writer's open transaction.
        namespace: Schema holding the editor tables.
        parent_table: Table of the entity owning the children.
        insert_batch_size: Rows per batched insert.
    """

    def __init__(
        self,
        cursor: PgCursor,
        namespace: str,
        parent_table: Table,
        insert_batch_size: int = 500,
    ):
        self.cursor = cursor
        self.namespace = namespace
        self.parent_table = parent_table
        self.insert_batch_size = insert_batch_size

    def sync(
        self,
        child_table: Table,
        documents: List[Dict[str, Any]],
        parent_id: int,
        uses_frequencies: bool = False,
        is_creating: bool = False,
        reconciliation: Optional["PatternReconciliation"] = None,
    ) -> Optional[str]:
        """
        Replace the `child_table` rows of the parent with `documents`.

        Every row is validated (fields, order, references) before anything is
        written.

        Args:
            child_table: Metadata of the child collection.
            documents: Child documents in order. Their key field is
                overwritten with the parent's key value.
            parent_id: Surrogate id of the (already written) parent row.
            uses_frequencies: Whether the parent's pattern is frequency-based.
            is_creating: The parent was just inserted, so it has no children.
            reconciliation: Collects pattern halts for stop time rebuilding.

        Returns:
            The key value stamped on the children. It differs from the
            parent's stored value when a shared shape was forked or a new
            shape key was generated.
        """
        key_field = child_table.key_field
        key_value = readers.get_value_for_id(
            self.cursor, self.namespace, self.parent_table, parent_id, key_field
        )

        if child_table.requires_frequency_pattern and not uses_frequencies and documents:
            raise EntityValidationError(
                "Cannot create or update frequency entries for a timetable-based pattern.",
                table_name=child_table.name,
            )

        repoint = False
        delete_existing = not is_creating
        if child_table.copy_on_write_owner == self.parent_table.name:
            key_value, repoint, delete_existing = self._resolve_shared_key(
                child_table, key_value, parent_id, bool(documents), is_creating
            )

        rows: List[Dict[str, Any]] = []
        for index, document in enumerate(documents):
            if not isinstance(document, dict):
                raise EntityValidationError(
                    f"{child_table.name} entity at index {index} must be an object.",
                    table_name=child_table.name,
                )
            document[key_field] = key_value
            rows.append(prepare_row(child_table, document))
        check_order(child_table, rows)
        verify_references(
            self.cursor,
            self.namespace,
            child_table,
            rows,
            skip_tables=[self.parent_table.name],
        )

        if reconciliation is not None and child_table.is_pattern_halt:
            reconciliation.stage(child_table, rows, key_value)

        if repoint:
            self.cursor.execute(
                statements.update_field_for_id(self.namespace, self.parent_table, key_field),
                (key_value, parent_id),
            )
        if delete_existing and key_value is not None:
            self.cursor.execute(
                statements.delete_where(self.namespace, child_table, key_field),
                (key_value,),
            )
            module_logger.info(f"Deleted {self.cursor.rowcount} {child_table.name}")

        inserted = insert_rows(
            self.cursor, self.namespace, child_table, rows, self.insert_batch_size
        )
        if child_table.linked_fields:
            for row in rows:
                propagate_all(self.cursor, self.namespace, child_table, row)
        module_logger.info(
            f"Stored {inserted} {child_table.name} for {self.parent_table.name} {key_field}={key_value}"
        )
        return key_value

    def _resolve_shared_key(
        self,
        child_table: Table,
        key_value: Optional[str],
        parent_id: int,
        has_rows: bool,
        is_creating: bool,
    ) -> Tuple[Optional[str], bool, bool]:
        """
        Decide the key for shared geometry rows.

        Returns:
            (key value, repoint the parent to it, delete existing rows first)
        """
        if key_value is None:
            if not has_rows:
                return None, False, False
            new_key = str(uuid.uuid4())
            module_logger.info(
                f"Creating new {child_table.key_field} ({new_key}) for {self.parent_table.name} id={parent_id}."
            )
            return new_key, True, False
        if is_creating and not has_rows:
            return key_value, False, False

        owner = get_table(child_table.copy_on_write_owner)
        owners = readers.count_where(
            self.cursor, self.namespace, owner, child_table.key_field, key_value
        )
        if is_creating:
            # The new parent already counts as one owner.
            existing_rows = readers.count_where(
                self.cursor, self.namespace, child_table, child_table.key_field, key_value
            )
            if owners <= 1 and existing_rows == 0:
                return key_value, False, False
            module_logger.info(
                f"{child_table.key_field} {key_value} is already in use "
                f"({owners} {owner.name} row(s), {existing_rows} {child_table.name} row(s))."
            )
        elif owners <= 1:
            return key_value, False, True
        else:
            module_logger.info(
                f"More than one {owner.name} row references {child_table.key_field}: {key_value}"
            )
        if not has_rows:
            module_logger.info(
                f"Detaching {self.parent_table.name} id={parent_id} from shared {child_table.key_field} {key_value}."
            )
            return None, True, False
        new_key = str(uuid.uuid4())
        module_logger.info(
            f"Creating new {child_table.key_field} ({new_key}) for {self.parent_table.name} id={parent_id}."
        )
        return new_key, True, False
