# gtfs_editor/exceptions.py
# -*- coding: utf-8 -*-
"""
Typed failures raised by the editor table writer.

Every error aborts the whole top-level transaction. The message is meant for
the caller and names the table, field and offending value(s) where known.
"""

from typing import Any, Optional, Sequence, Tuple


class TableWriterError(Exception):
    """Base class for errors raised while writing editor tables."""

    def __init__(
        self,
        message: str,
        table_name: Optional[str] = None,
        field_name: Optional[str] = None,
        values: Optional[Sequence[Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        self.table_name = table_name
        self.field_name = field_name
        self.values: Tuple[Any, ...] = tuple(values) if values else ()
        self.original_error = original_error
        super().__init__(message)


class EntityValidationError(TableWriterError):
    """Missing required field, bad order sequence, or an illegal frequency edit."""


class ConflictError(TableWriterError):
    """Key uniqueness violation, or a delete blocked by dependent rows."""

    def __init__(
        self,
        message: str,
        table_name: Optional[str] = None,
        field_name: Optional[str] = None,
        values: Optional[Sequence[Any]] = None,
        blocking_count: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        self.blocking_count = blocking_count
        super().__init__(
            message,
            table_name=table_name,
            field_name=field_name,
            values=values,
            original_error=original_error,
        )


class InvalidReferenceError(TableWriterError):
    """One or more reference values were found in none of the candidate tables."""

    def __init__(
        self,
        message: str,
        table_name: Optional[str] = None,
        field_name: Optional[str] = None,
        values: Optional[Sequence[Any]] = None,
        candidate_tables: Optional[Sequence[str]] = None,
    ):
        self.candidate_tables: Tuple[str, ...] = (
            tuple(candidate_tables) if candidate_tables else ()
        )
        super().__init__(
            message, table_name=table_name, field_name=field_name, values=values
        )


class EntityNotFoundError(TableWriterError):
    """An update or delete matched no row."""


class StorageError(TableWriterError):
    """The database rejected a statement or could not be reached."""
