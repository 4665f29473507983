# gtfs_editor/documents.py
# -*- coding: utf-8 -*-
"""
Entity document preparation.

An entity document is a dict keyed by field name. Before a row is written,
its values are checked against the table metadata and coerced to the stored
types. The coerced values are written back into the document so the caller
sees what was actually persisted (empty strings become None, "0:01:30"
becomes 90, and so on).
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List

from pydantic import TypeAdapter, ValidationError

from .exceptions import EntityValidationError
from .schema_definitions import FieldType, Table, TableField

module_logger = logging.getLogger(__name__)

_INT_ADAPTER = TypeAdapter(int)
_FLOAT_ADAPTER = TypeAdapter(float)
_TIME_PATTERN = re.compile(r"^\s*(\d+):([0-5]\d):([0-5]\d)\s*$")


def is_empty(value: Any) -> bool:
    """None and the empty string both count as a missing value."""
    return value is None or (isinstance(value, str) and value == "")


def parse_time(value: Any) -> int:
    """
    Convert a GTFS time to seconds after midnight.

    Accepts integer seconds, numeric strings, or "H:MM:SS" (hours may exceed
    23 for service past midnight).

    Raises:
        ValueError: If the value is not a time or is negative.
    """
    if isinstance(value, str):
        match = _TIME_PATTERN.match(value)
        if match:
            hours, minutes, seconds = (int(part) for part in match.groups())
            return hours * 3600 + minutes * 60 + seconds
    seconds = _INT_ADAPTER.validate_python(value)
    if seconds < 0:
        raise ValueError(f"Time value {value!r} must not be negative.")
    return seconds


def parse_date(value: Any) -> str:
    """Check a YYYYMMDD date and return it as text."""
    text = str(value).strip()
    if len(text) != 8 or not text.isdigit():
        raise ValueError(f"Date value {value!r} must be formatted YYYYMMDD.")
    datetime.strptime(text, "%Y%m%d")
    return text


def parse_string_list(value: Any) -> List[str]:
    """A list of strings, or a comma-delimited string split into one."""
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if not is_empty(item)]
    return [part.strip() for part in str(value).split(",") if part.strip()]


def coerce_value(field: TableField, value: Any) -> Any:
    """
    Convert a non-empty document value to the field's stored type.

    Raises:
        ValueError: (or pydantic.ValidationError) if the value does not fit.
    """
    if field.type is FieldType.INTEGER:
        if isinstance(value, bool):
            return int(value)
        return _INT_ADAPTER.validate_python(value)
    if field.type is FieldType.DOUBLE:
        return _FLOAT_ADAPTER.validate_python(value)
    if field.type is FieldType.TIME:
        return parse_time(value)
    if field.type is FieldType.DATE:
        return parse_date(value)
    if field.type is FieldType.STRING_LIST:
        return parse_string_list(value)
    if isinstance(value, (dict, list)):
        raise ValueError(f"Expected text, got {type(value).__name__}.")
    return str(value)


def prepare_row(table: Table, document: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate and coerce a document into a row for `table`.

    Every field of the table appears in the returned row and in the
    document afterwards. Absent optional fields and empty strings become
    None. Keys that are not fields (child collections, `id`, unknown keys)
    are ignored.

    Args:
        table: Metadata of the target table.
        document: The entity document. Updated in place with coerced values.

    Returns:
        A dict of field name to stored value, in field order.

    Raises:
        EntityValidationError: If mandatory fields are missing (all of them
            are listed) or a value cannot be coerced.
    """
    row: Dict[str, Any] = {}
    missing: List[str] = []
    for field in table.fields:
        raw = document.get(field.name)
        if is_empty(raw):
            if field.is_mandatory:
                missing.append(field.name)
            row[field.name] = None
        else:
            try:
                row[field.name] = coerce_value(field, raw)
            except (ValidationError, ValueError) as e:
                raise EntityValidationError(
                    f"Invalid value for {table.name}.{field.name}: {raw!r}",
                    table_name=table.name,
                    field_name=field.name,
                    values=[raw],
                    original_error=e,
                ) from e
        document[field.name] = row[field.name]

    if missing:
        raise EntityValidationError(
            f"{table.name} is missing required field(s): {', '.join(missing)}",
            table_name=table.name,
            field_name=missing[0],
            values=missing,
        )
    return row
