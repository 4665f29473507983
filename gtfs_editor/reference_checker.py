# gtfs_editor/reference_checker.py
# -*- coding: utf-8 -*-
"""
Batched existence checks for reference fields.

References are collected row by row while a batch is prepared and checked
once per referenced table afterwards. A field with several candidate tables
is satisfied when each value exists in at least one of them.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from psycopg import Cursor as PgCursor

from . import readers
from .exceptions import InvalidReferenceError
from .schema_definitions import Table, get_table

module_logger = logging.getLogger(__name__)


class ReferenceCollector:
    """
    Accumulates reference values of one table and verifies they exist.

    Args:
        table: The table whose rows hold the references.
        skip_tables: Candidate tables to ignore (usually the parent table,
            whose key is stamped onto every child row by the writer).
    """

    def __init__(self, table: Table, skip_tables: Iterable[str] = ()):
        self.table = table
        self.skip_tables = set(skip_tables)
        self._references: Dict[Tuple[str, Tuple[str, ...]], Set[str]] = {}

    def add_row(self, row: Dict[str, object]) -> None:
        for field in self.table.reference_fields():
            candidates = tuple(
                name for name in field.reference_tables if name not in self.skip_tables
            )
            if not candidates:
                continue
            value = row.get(field.name)
            if value is None:
                continue
            values = value if isinstance(value, list) else [value]
            self._references.setdefault((field.name, candidates), set()).update(
                str(v) for v in values
            )

    @property
    def is_empty(self) -> bool:
        return not any(self._references.values())

    def verify(self, cursor: PgCursor, namespace: str) -> None:
        """
        Check every collected reference, querying each candidate table once.

        Raises:
            InvalidReferenceError: Listing every value found in none of its
                candidate tables.
        """
        known: Dict[str, Set[str]] = {}
        for (field_name, candidates), values in self._references.items():
            remaining = set(values)
            for table_name in candidates:
                if not remaining:
                    break
                found = known.setdefault(table_name, set())
                unchecked = remaining - found
                if unchecked:
                    module_logger.info(
                        f"Checking {len(unchecked)} {self.table.name}.{field_name} reference(s) against {table_name}"
                    )
                    found.update(
                        readers.find_existing_keys(
                            cursor, namespace, get_table(table_name), unchecked
                        )
                    )
                remaining -= found
            if remaining:
                invalid = sorted(remaining)
                checked = self._describe_candidates(candidates)
                message = (
                    f"{self.table.name} entities must contain valid {field_name} references. "
                    f"(Invalid references: {', '.join(invalid)}; checked {', '.join(checked)})"
                )
                module_logger.error(message)
                raise InvalidReferenceError(
                    message,
                    table_name=self.table.name,
                    field_name=field_name,
                    values=invalid,
                    candidate_tables=candidates,
                )

    @staticmethod
    def _describe_candidates(candidates: Tuple[str, ...]) -> List[str]:
        return [f"{name}.{get_table(name).key_field}" for name in candidates]


def verify_references(
    cursor: PgCursor,
    namespace: str,
    table: Table,
    rows: Iterable[Dict[str, object]],
    skip_tables: Optional[Iterable[str]] = None,
) -> None:
    """Collect and verify the references of `rows` in one call."""
    collector = ReferenceCollector(table, skip_tables or ())
    for row in rows:
        collector.add_row(row)
    if not collector.is_empty:
        collector.verify(cursor, namespace)
