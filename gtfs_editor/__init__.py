"""
GTFS editor table writer.

This package keeps a namespace of editable GTFS tables consistent while
entities are created, updated and deleted: key uniqueness, references,
child collections, shared shapes, pattern stop times and cascades.
"""

from gtfs_editor.exceptions import (
    ConflictError,
    EntityNotFoundError,
    EntityValidationError,
    InvalidReferenceError,
    StorageError,
    TableWriterError,
)
from gtfs_editor.schema_definitions import EDITOR_TABLES, get_table
from gtfs_editor.table_writer import TableWriter

__all__ = [
    "TableWriter",
    "TableWriterError",
    "EntityValidationError",
    "ConflictError",
    "InvalidReferenceError",
    "EntityNotFoundError",
    "StorageError",
    "EDITOR_TABLES",
    "get_table",
]
