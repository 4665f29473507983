#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Write orchestrator for the editor tables.

`TableWriter` is the public entry point. Each create, update or delete call
runs inside one transaction: the primary row is checked and written, its
child collections are replaced, pattern stop times are reconciled, linked
fields are propagated, and only then is the transaction committed. Any
failure rolls the whole call back.

Example:
    with TableWriter("routes") as writer:
        route = writer.create({"route_id": "R1", "route_type": 3})
"""

import copy
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Union

import psycopg
from psycopg import Connection as PgConnection
from psycopg import Cursor as PgCursor

from common.config_loader import load_editor_settings
from common.config_models import EditorSettings
from common.db_utils import get_db_connection

from . import readers, statements
from .cascade import CascadeManager
from .child_sync import ChildTableSynchronizer
from .documents import prepare_row
from .exceptions import (
    EntityNotFoundError,
    EntityValidationError,
    StorageError,
    TableWriterError,
)
from .integrity import ensure_referential_integrity
from .linked_fields import propagate_all
from .pattern_reconciliation import PatternReconciliation, normalize_stop_times
from .reference_checker import verify_references
from .schema_definitions import (
    Table,
    child_tables,
    get_table,
    shared_geometry_tables,
)

module_logger = logging.getLogger(__name__)

Document = Dict[str, Any]


class TableWriter:
    """
    Creates, updates and deletes entities of one editor table.

    Args:
        table: Table name or metadata.
        connection: Open Psycopg 3 connection with autocommit off. When
            omitted, one is opened from `settings.pg`.
        settings: Editor settings. Loaded from defaults, environment and
            gtfs_editor.yaml when omitted.

    Calls made with `auto_commit=True` commit and close the connection when
    they finish. Pass `auto_commit=False` to group several calls into one
    transaction, then call `commit()`.
    """

    def __init__(
        self,
        table: Union[str, Table],
        connection: Optional[PgConnection] = None,
        settings: Optional[EditorSettings] = None,
    ):
        self.table = get_table(table) if isinstance(table, str) else table
        self.settings = settings if settings else load_editor_settings()
        self.namespace = self.settings.namespace
        if connection is None:
            connection = get_db_connection(self.settings.pg)
            if connection is None:
                raise StorageError(
                    f"Could not connect to database {self.settings.pg.database} "
                    f"on {self.settings.pg.host}:{self.settings.pg.port}.",
                    table_name=self.table.name,
                )
        self.connection = connection

    def __enter__(self) -> "TableWriter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # --- Transaction handling ---

    @contextmanager
    def _transaction_scope(self, auto_commit: bool, action: str) -> Iterator[PgCursor]:
        """
        Yield a cursor for one top-level call.

        Commits when `auto_commit` is set. On any error the transaction is
        rolled back and the error re-raised, with psycopg errors wrapped in
        StorageError. The connection is closed afterwards when `auto_commit`
        is set, whatever the outcome.
        """
        try:
            with self.connection.cursor() as cursor:
                yield cursor
            if auto_commit:
                module_logger.info("Committing transaction.")
                self.connection.commit()
        except psycopg.Error as e:
            module_logger.error(f"Error {action} {self.table.name} entity: {e}")
            self._rollback()
            raise StorageError(
                f"Database error {action} {self.table.name} entity: {e}",
                table_name=self.table.name,
                original_error=e,
            ) from e
        except Exception as e:
            module_logger.error(f"Error {action} {self.table.name} entity: {e}")
            self._rollback()
            raise
        finally:
            if auto_commit:
                self.close()

    def _rollback(self) -> None:
        if self.connection.closed:
            return
        try:
            self.connection.rollback()
        except psycopg.Error as e:
            module_logger.error(f"Rollback failed: {e}")

    def commit(self) -> None:
        """Commit the open transaction and close the connection."""
        try:
            self.connection.commit()
        except psycopg.Error as e:
            self._rollback()
            raise StorageError(
                f"Could not commit {self.table.name} changes: {e}",
                table_name=self.table.name,
                original_error=e,
            ) from e
        finally:
            self.close()

    def close(self) -> None:
        if not self.connection.closed:
            self.connection.close()

    # --- Create / update ---

    def create(
        self, document: Union[Document, List[Document]], auto_commit: bool = True
    ) -> Union[Document, List[Document]]:
        """Create one entity, or every entity of a list, in one transaction."""
        return self.update(None, document, auto_commit)

    def update(
        self,
        entity_id: Optional[int],
        document: Union[Document, List[Document]],
        auto_commit: bool = True,
    ) -> Union[Document, List[Document]]:
        """
        Create or update an entity together with its child collections.

        Args:
            entity_id: Surrogate id of the row to update. None creates. For a
                list input, each element's own `id` is used unless creating.
            document: The entity document, or a list of them. Not modified.
            auto_commit: Commit (and close) when done.

        Returns:
            The document(s) as persisted: `id` set, values coerced, empty
            strings nulled and forked shape keys replaced.

        Raises:
            TableWriterError: Any failure; nothing is committed.
        """
        is_creating = entity_id is None
        action = "creating" if is_creating else "updating"
        payload = copy.deepcopy(document)
        with self._transaction_scope(auto_commit, action) as cursor:
            if isinstance(payload, list):
                results: List[Document] = []
                for index, node in enumerate(payload):
                    if not isinstance(node, dict):
                        raise EntityValidationError(
                            f"{self.table.name} entity at index {index} must be an object.",
                            table_name=self.table.name,
                        )
                    node_id = None if is_creating else node.get("id")
                    results.append(self._write_entity(cursor, node_id, node))
                module_logger.info(f"Wrote {len(results)} {self.table.name} entities.")
                return results
            if not isinstance(payload, dict):
                raise EntityValidationError(
                    f"{self.table.name} input must be an object or a list of objects.",
                    table_name=self.table.name,
                )
            return self._write_entity(cursor, entity_id, payload)

    def _write_entity(
        self, cursor: PgCursor, entity_id: Optional[int], document: Document
    ) -> Document:
        is_creating = entity_id is None
        cascade = CascadeManager(cursor, self.namespace)
        ensure_referential_integrity(
            cursor, self.namespace, self.table, document, entity_id, cascade
        )
        row = prepare_row(self.table, document)
        new_id = self._persist_row(cursor, entity_id, row)

        uses_frequencies = self._referenced_pattern_uses_frequencies(cursor, row)
        if not is_creating and not uses_frequencies:
            self._clear_timetable_pattern_frequencies(cursor, row)
        reconciliation = PatternReconciliation(
            cursor, self.namespace, self.settings.insert_batch_size
        )
        synchronizer = ChildTableSynchronizer(
            cursor, self.namespace, self.table, self.settings.insert_batch_size
        )
        for child_table in child_tables(self.table.name):
            child_documents = document.get(child_table.name)
            if child_table.child_array_optional and not isinstance(child_documents, list):
                child_documents = []
            if not isinstance(child_documents, list):
                raise EntityValidationError(
                    f"Child entities {child_table.name} must be an array and not null",
                    table_name=child_table.name,
                )
            key_value = synchronizer.sync(
                child_table,
                child_documents,
                new_id,
                uses_frequencies=uses_frequencies,
                is_creating=is_creating,
                reconciliation=reconciliation,
            )
            document[child_table.name] = child_documents
            document[child_table.key_field] = key_value
            row[child_table.key_field] = key_value

        reconciliation.reconcile()
        if uses_frequencies and reconciliation.has_staged_halts:
            reconciliation.propagate_default_times()

        verify_references(
            cursor,
            self.namespace,
            self.table,
            [row],
            skip_tables=[t.name for t in shared_geometry_tables()],
        )
        propagate_all(cursor, self.namespace, self.table, row)

        document["id"] = new_id
        return document

    def _persist_row(
        self, cursor: PgCursor, entity_id: Optional[int], row: Dict[str, Any]
    ) -> int:
        field_names = list(row.keys())
        values = [row[name] for name in field_names]
        if entity_id is None:
            cursor.execute(
                statements.insert_row(self.namespace, self.table, field_names), values
            )
            if cursor.rowcount == 0:
                raise StorageError(
                    "Creating entity failed, no rows affected.", table_name=self.table.name
                )
            inserted = cursor.fetchone()
            if not inserted:
                raise StorageError(
                    "Creating entity failed, no ID obtained.", table_name=self.table.name
                )
            module_logger.info(f"Created {self.table.name} id={inserted[0]}")
            return inserted[0]

        cursor.execute(
            statements.update_row(self.namespace, self.table, field_names),
            values + [entity_id],
        )
        if cursor.rowcount == 0:
            raise EntityNotFoundError(
                "Updating entity failed, no rows affected.",
                table_name=self.table.name,
                values=[entity_id],
            )
        module_logger.info(f"Updated {self.table.name} id={entity_id}")
        return entity_id

    def _referenced_pattern_uses_frequencies(
        self, cursor: PgCursor, row: Dict[str, Any]
    ) -> bool:
        """Whether the pattern named by the row's pattern_id is frequency-based."""
        pattern_id = row.get("pattern_id")
        if pattern_id is None:
            return False
        patterns = get_table("patterns")
        cursor.execute(
            statements.select_rows(
                self.namespace, patterns, ["use_frequency"], where_field="pattern_id"
            ),
            (pattern_id,),
        )
        result = cursor.fetchone()
        return bool(result and result[0])

    def _clear_timetable_pattern_frequencies(
        self, cursor: PgCursor, row: Dict[str, Any]
    ) -> None:
        """Drop the frequencies of trips on a pattern that is no longer frequency-based."""
        if self.table.name != "patterns" or row.get("pattern_id") is None:
            return
        cursor.execute(
            statements.delete_children_through(
                self.namespace, get_table("frequencies"), get_table("trips"), "pattern_id"
            ),
            (row["pattern_id"],),
        )
        if cursor.rowcount and cursor.rowcount > 0:
            module_logger.info(
                f"Deleted {cursor.rowcount} frequencies of timetable-based pattern {row['pattern_id']}"
            )

    # --- Delete ---

    def delete(self, entity_id: int, auto_commit: bool = True) -> int:
        """
        Delete an entity and everything depending on it.

        Returns:
            Number of primary rows deleted (1).

        Raises:
            EntityNotFoundError: If no row has that id.
            ConflictError: If a cascade-restricted entity is still referenced.
        """
        with self._transaction_scope(auto_commit, "deleting") as cursor:
            return self._delete_entity(cursor, entity_id)

    def delete_where(self, field_name: str, value: Any, auto_commit: bool = True) -> int:
        """
        Delete every entity whose `field_name` equals `value`.

        Returns:
            Number of entities deleted.
        """
        if field_name != statements.ID_COLUMN and not self.table.has_field(field_name):
            raise EntityValidationError(
                f"Unknown field {field_name} for table {self.table.name}.",
                table_name=self.table.name,
                field_name=field_name,
            )
        with self._transaction_scope(auto_commit, "deleting") as cursor:
            ids = readers.get_ids_for_condition(
                cursor, self.namespace, self.table, field_name, value
            )
            for entity_id in ids:
                self._delete_entity(cursor, entity_id)
            module_logger.info(f"Deleted {len(ids)} {self.table.name} entities")
            return len(ids)

    def _delete_entity(self, cursor: PgCursor, entity_id: int) -> int:
        CascadeManager(cursor, self.namespace).delete_references(self.table, entity_id)
        cursor.execute(statements.delete_by_id(self.namespace, self.table), (entity_id,))
        if cursor.rowcount == 0:
            raise EntityNotFoundError(
                f"Could not delete {self.table.name} entity with id: {entity_id}",
                table_name=self.table.name,
                values=[entity_id],
            )
        module_logger.info(f"Deleted {self.table.name} id={entity_id}")
        return cursor.rowcount

    # --- Maintenance ---

    def normalize_stop_times_for_pattern(
        self, pattern_id: int, begin_with_sequence: int
    ) -> int:
        """
        Recompute stop times of a pattern's trips from a stop_sequence on.

        Runs in its own transaction, which is committed.

        Args:
            pattern_id: Surrogate id of the pattern row.
            begin_with_sequence: First stop_sequence (inclusive) to recompute.

        Returns:
            Number of stop time rows updated.
        """
        with self._transaction_scope(True, "normalizing stop times for") as cursor:
            return normalize_stop_times(
                cursor, self.namespace, pattern_id, begin_with_sequence
            )


__all__ = ["TableWriter", "TableWriterError"]
