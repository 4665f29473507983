#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Table metadata for the editable GTFS feed.

Each editable table is described by a frozen Pydantic `Table` model listing
its fields, key field, optional order field, parent table and the tables each
field may reference. The writer never hardcodes relationships between
tables: child collections, cascades and reference checks are all derived from
the `EDITOR_TABLES` registry defined here.

Every table also carries an integer surrogate `id` column that is not listed
among its fields.
"""

import logging
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

module_logger = logging.getLogger(__name__)


class FieldType(str, Enum):
    """Storage types understood by the editor."""

    STRING = "string"
    INTEGER = "integer"
    DOUBLE = "double"
    TIME = "time"  # seconds after midnight
    DATE = "date"  # YYYYMMDD text
    STRING_LIST = "string_list"

    @property
    def sql_type(self) -> str:
        return _SQL_TYPES[self]


_SQL_TYPES: Dict[FieldType, str] = {
    FieldType.STRING: "TEXT",
    FieldType.INTEGER: "INTEGER",
    FieldType.DOUBLE: "DOUBLE PRECISION",
    FieldType.TIME: "INTEGER",
    FieldType.DATE: "VARCHAR(8)",
    FieldType.STRING_LIST: "TEXT[]",
}


class KeyGeneration(str, Enum):
    """How a missing key field value is handled on write."""

    NONE = "none"
    GENERATED = "generated"
    OPTIONAL_IF_SINGLE = "optional_if_single"


class TableField(BaseModel):
    """A single column of an editor table."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: FieldType = FieldType.STRING
    required: bool = False
    empty_value_permitted: bool = False
    reference_tables: Tuple[str, ...] = ()

    @property
    def is_reference(self) -> bool:
        return bool(self.reference_tables)

    @property
    def is_list(self) -> bool:
        return self.type is FieldType.STRING_LIST

    @property
    def is_mandatory(self) -> bool:
        """Required and may not be left empty."""
        return self.required and not self.empty_value_permitted


class LinkedFields(BaseModel):
    """
    Fields duplicated from a source entity into rows of another table.

    Attributes:
        target_table: Table whose rows receive the values.
        key_field: Field shared by the source entity and the target rows.
        fields: Names of the duplicated fields.
        join_table: When set, target rows are matched through this table
            (e.g. stop_times are matched to a pattern through trips).
        join_field: Column joining the target table to `join_table`.
        match_order_field: Also match the source's order field against the
            same-named column of the target rows.
    """

    model_config = ConfigDict(frozen=True)

    target_table: str
    key_field: str
    fields: Tuple[str, ...]
    join_table: Optional[str] = None
    join_field: Optional[str] = None
    match_order_field: bool = False


class Table(BaseModel):
    """Metadata for one editable table."""

    model_config = ConfigDict(frozen=True)

    name: str
    entity_name: str
    key_field: str
    fields: Tuple[TableField, ...]
    order_field: Optional[str] = None
    parent_table: Optional[str] = None
    extra_child_tables: Tuple[str, ...] = ()
    cascade_delete_restricted: bool = False
    key_generation: KeyGeneration = KeyGeneration.NONE
    is_pattern_halt: bool = False
    copy_on_write_owner: Optional[str] = Field(
        default=None,
        description="Parent table that may share rows of this table between several of its entities.",
    )
    requires_frequency_pattern: bool = False
    child_array_optional: bool = False
    linked_fields: Tuple[LinkedFields, ...] = ()

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    @property
    def has_strict_order(self) -> bool:
        """Order values must be exactly 0..n-1 (halt tables only need to increase)."""
        return self.order_field is not None and not self.is_pattern_halt

    def has_field(self, name: str) -> bool:
        return any(f.name == name for f in self.fields)

    def get_field(self, name: str) -> TableField:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(f"Table '{self.name}' has no field '{name}'.")

    def reference_fields(self) -> List[TableField]:
        return [f for f in self.fields if f.is_reference]


def _f(
    name: str,
    type_: FieldType = FieldType.STRING,
    required: bool = False,
    refs: Tuple[str, ...] = (),
    empty_ok: bool = False,
) -> TableField:
    return TableField(
        name=name,
        type=type_,
        required=required,
        empty_value_permitted=empty_ok,
        reference_tables=refs,
    )


I, D, T, DT, SL = (
    FieldType.INTEGER,
    FieldType.DOUBLE,
    FieldType.TIME,
    FieldType.DATE,
    FieldType.STRING_LIST,
)

STOP_TIME_LINKED_FIELDS: Tuple[str, ...] = (
    "timepoint",
    "drop_off_type",
    "pickup_type",
    "continuous_pickup",
    "continuous_drop_off",
    "shape_dist_traveled",
    "pickup_booking_rule_id",
    "drop_off_booking_rule_id",
)
FLEX_STOP_TIME_LINKED_FIELDS: Tuple[str, ...] = tuple(
    name for name in STOP_TIME_LINKED_FIELDS if name != "shape_dist_traveled"
)


def _halt_linked_fields(fields: Tuple[str, ...]) -> Tuple[LinkedFields, ...]:
    return (
        LinkedFields(
            target_table="stop_times",
            key_field="pattern_id",
            fields=fields,
            join_table="trips",
            join_field="trip_id",
            match_order_field=True,
        ),
    )


def _halt_common_fields() -> Tuple[TableField, ...]:
    return (
        _f("drop_off_type", I),
        _f("pickup_type", I),
        _f("continuous_pickup", I),
        _f("continuous_drop_off", I),
        _f("shape_dist_traveled", D),
        _f("timepoint", I),
        _f("pickup_booking_rule_id", refs=("booking_rules",)),
        _f("drop_off_booking_rule_id", refs=("booking_rules",)),
    )


def _flex_halt_fields(
    reference_field: str, reference_table: str
) -> Tuple[TableField, ...]:
    return (
        _f("pattern_id", required=True, refs=("patterns",)),
        _f("stop_sequence", I, required=True),
        _f(reference_field, required=True, refs=(reference_table,)),
        *_halt_common_fields(),
        _f("flex_default_travel_time", T),
        _f("flex_default_zone_time", T),
        _f("mean_duration_factor", D),
        _f("mean_duration_offset", D),
        _f("safe_duration_factor", D),
        _f("safe_duration_offset", D),
    )


AGENCY = Table(
    name="agency",
    entity_name="Agency",
    key_field="agency_id",
    key_generation=KeyGeneration.OPTIONAL_IF_SINGLE,
    cascade_delete_restricted=True,
    fields=(
        _f("agency_id"),
        _f("agency_name", required=True),
        _f("agency_url", required=True),
        _f("agency_timezone", required=True),
        _f("agency_lang"),
        _f("agency_phone"),
        _f("agency_fare_url"),
        _f("agency_email"),
    ),
)

CALENDAR = Table(
    name="calendar",
    entity_name="Calendar",
    key_field="service_id",
    cascade_delete_restricted=True,
    fields=(
        _f("service_id", required=True),
        *(
            _f(day, I, required=True)
            for day in (
                "monday", "tuesday", "wednesday", "thursday",
                "friday", "saturday", "sunday",
            )
        ),
        _f("start_date", DT, required=True),
        _f("end_date", DT, required=True),
        _f("description"),
    ),
)

STOPS = Table(
    name="stops",
    entity_name="Stop",
    key_field="stop_id",
    fields=(
        _f("stop_id", required=True),
        _f("stop_code"),
        _f("stop_name"),
        _f("stop_desc"),
        _f("stop_lat", D),
        _f("stop_lon", D),
        _f("zone_id"),
        _f("stop_url"),
        _f("location_type", I),
        _f("parent_station", refs=("stops",)),
        _f("stop_timezone"),
        _f("wheelchair_boarding", I),
    ),
)

LOCATIONS = Table(
    name="locations",
    entity_name="Location",
    key_field="location_id",
    fields=(
        _f("location_id", required=True),
        _f("stop_name"),
        _f("stop_desc"),
        _f("zone_id"),
        _f("stop_url"),
        _f("geometry_type"),
    ),
)

LOCATION_SHAPES = Table(
    name="location_shapes",
    entity_name="LocationShape",
    key_field="location_id",
    parent_table="locations",
    fields=(
        _f("location_id", required=True, refs=("locations",)),
        _f("geometry_id", required=True),
        _f("geometry_pt_lat", D, required=True),
        _f("geometry_pt_lon", D, required=True),
    ),
)

LOCATION_GROUPS = Table(
    name="location_groups",
    entity_name="LocationGroup",
    key_field="location_group_id",
    fields=(
        _f("location_group_id", required=True),
        _f("location_id", SL, refs=("locations", "stops")),
        _f("location_group_name"),
    ),
)

BOOKING_RULES = Table(
    name="booking_rules",
    entity_name="BookingRule",
    key_field="booking_rule_id",
    fields=(
        _f("booking_rule_id", required=True),
        _f("booking_type", I, required=True),
        _f("prior_notice_duration_min", I),
        _f("prior_notice_duration_max", I),
        _f("message"),
        _f("phone_number"),
        _f("info_url"),
        _f("booking_url"),
    ),
)

ROUTES = Table(
    name="routes",
    entity_name="Route",
    key_field="route_id",
    fields=(
        _f("route_id", required=True),
        _f("agency_id", refs=("agency",)),
        _f("route_short_name"),
        _f("route_long_name"),
        _f("route_desc"),
        _f("route_type", I, required=True),
        _f("route_url"),
        _f("route_color"),
        _f("route_text_color"),
        _f("route_sort_order", I),
        _f("continuous_pickup", I),
        _f("continuous_drop_off", I),
        _f("wheelchair_accessible", I),
        _f("status", I),
        _f("publicly_visible", I),
    ),
    linked_fields=(
        LinkedFields(
            target_table="trips",
            key_field="route_id",
            fields=("wheelchair_accessible",),
        ),
    ),
)

SHAPES = Table(
    name="shapes",
    entity_name="ShapePoint",
    key_field="shape_id",
    order_field="shape_pt_sequence",
    copy_on_write_owner="patterns",
    fields=(
        _f("shape_id", required=True),
        _f("shape_pt_sequence", I, required=True),
        _f("shape_pt_lat", D, required=True),
        _f("shape_pt_lon", D, required=True),
        _f("shape_dist_traveled", D),
        _f("point_type", I),
    ),
)

PATTERNS = Table(
    name="patterns",
    entity_name="Pattern",
    key_field="pattern_id",
    extra_child_tables=("shapes",),
    fields=(
        _f("pattern_id", required=True),
        _f("route_id", required=True, refs=("routes",)),
        _f("name"),
        _f("direction_id", I),
        _f("use_frequency", I),
        _f("shape_id", refs=("shapes",)),
    ),
    linked_fields=(
        LinkedFields(
            target_table="trips",
            key_field="pattern_id",
            fields=("direction_id", "shape_id"),
        ),
    ),
)

PATTERN_STOPS = Table(
    name="pattern_stops",
    entity_name="PatternStop",
    key_field="pattern_id",
    order_field="stop_sequence",
    parent_table="patterns",
    is_pattern_halt=True,
    fields=(
        _f("pattern_id", required=True, refs=("patterns",)),
        _f("stop_sequence", I, required=True),
        _f("stop_id", required=True, refs=("stops",)),
        _f("default_travel_time", T),
        _f("default_dwell_time", T),
        *_halt_common_fields(),
    ),
    linked_fields=_halt_linked_fields(STOP_TIME_LINKED_FIELDS),
)

PATTERN_LOCATIONS = Table(
    name="pattern_locations",
    entity_name="PatternLocation",
    key_field="pattern_id",
    order_field="stop_sequence",
    parent_table="patterns",
    is_pattern_halt=True,
    child_array_optional=True,
    fields=_flex_halt_fields("location_id", "locations"),
    linked_fields=_halt_linked_fields(FLEX_STOP_TIME_LINKED_FIELDS),
)

PATTERN_LOCATION_GROUPS = Table(
    name="pattern_location_groups",
    entity_name="PatternLocationGroup",
    key_field="pattern_id",
    order_field="stop_sequence",
    parent_table="patterns",
    is_pattern_halt=True,
    child_array_optional=True,
    fields=_flex_halt_fields("location_group_id", "location_groups"),
    linked_fields=_halt_linked_fields(FLEX_STOP_TIME_LINKED_FIELDS),
)

TRIPS = Table(
    name="trips",
    entity_name="Trip",
    key_field="trip_id",
    key_generation=KeyGeneration.GENERATED,
    fields=(
        _f("trip_id", required=True),
        _f("route_id", required=True, refs=("routes",)),
        _f("service_id", required=True, refs=("calendar",)),
        _f("trip_headsign"),
        _f("trip_short_name"),
        _f("direction_id", I),
        _f("block_id"),
        _f("shape_id", refs=("shapes",)),
        _f("pattern_id", refs=("patterns",)),
        _f("wheelchair_accessible", I),
        _f("bikes_allowed", I),
    ),
)

STOP_TIMES = Table(
    name="stop_times",
    entity_name="StopTime",
    key_field="trip_id",
    order_field="stop_sequence",
    parent_table="trips",
    fields=(
        _f("trip_id", required=True, refs=("trips",)),
        _f("stop_sequence", I, required=True),
        _f("stop_id", required=True, refs=("stops", "locations", "location_groups")),
        _f("arrival_time", T),
        _f("departure_time", T),
        _f("start_pickup_dropoff_window", T),
        _f("end_pickup_dropoff_window", T),
        _f("stop_headsign"),
        *_halt_common_fields(),
    ),
)

FREQUENCIES = Table(
    name="frequencies",
    entity_name="Frequency",
    key_field="trip_id",
    parent_table="trips",
    requires_frequency_pattern=True,
    fields=(
        _f("trip_id", required=True, refs=("trips",)),
        _f("start_time", T, required=True),
        _f("end_time", T, required=True),
        _f("headway_secs", I, required=True),
        _f("exact_times", I),
    ),
)

FARE_ATTRIBUTES = Table(
    name="fare_attributes",
    entity_name="FareAttribute",
    key_field="fare_id",
    fields=(
        _f("fare_id", required=True),
        _f("price", D, required=True),
        _f("currency_type", required=True),
        _f("payment_method", I, required=True),
        _f("transfers", I, required=True, empty_ok=True),
        _f("agency_id", refs=("agency",)),
        _f("transfer_duration", I),
    ),
)

FARE_RULES = Table(
    name="fare_rules",
    entity_name="FareRule",
    key_field="fare_id",
    parent_table="fare_attributes",
    fields=(
        _f("fare_id", required=True, refs=("fare_attributes",)),
        _f("route_id", refs=("routes",)),
        _f("origin_id"),
        _f("destination_id"),
        _f("contains_id"),
    ),
)

# Creation order: referenced tables come before the tables pointing at them.
EDITOR_TABLES: Dict[str, Table] = {
    table.name: table
    for table in (
        AGENCY,
        CALENDAR,
        STOPS,
        LOCATIONS,
        LOCATION_SHAPES,
        LOCATION_GROUPS,
        BOOKING_RULES,
        ROUTES,
        SHAPES,
        PATTERNS,
        PATTERN_STOPS,
        PATTERN_LOCATIONS,
        PATTERN_LOCATION_GROUPS,
        TRIPS,
        STOP_TIMES,
        FREQUENCIES,
        FARE_ATTRIBUTES,
        FARE_RULES,
    )
}


def get_table(name: str) -> Table:
    """
    Look up table metadata by name.

    Raises:
        KeyError: If no editable table has that name.
    """
    try:
        return EDITOR_TABLES[name]
    except KeyError:
        raise KeyError(f"Unknown editor table '{name}'.") from None


def child_tables(table_name: str) -> List[Table]:
    """
    Tables whose rows are replaced along with an entity of `table_name`.

    This is every table declaring `table_name` as its parent, followed by the
    table's extra children (a pattern's shared shape points).
    """
    parent = get_table(table_name)
    children = [t for t in EDITOR_TABLES.values() if t.parent_table == table_name]
    children.extend(get_table(name) for name in parent.extra_child_tables)
    return children


def referencing_fields(
    table_name: str, include_self: bool = False
) -> List[Tuple[Table, TableField]]:
    """
    Every (table, field) pair whose field may reference `table_name`.

    Args:
        table_name: The referenced table.
        include_self: Also return fields of `table_name` that point back at it
            (e.g. stops.parent_station).
    """
    found: List[Tuple[Table, TableField]] = []
    for table in EDITOR_TABLES.values():
        if table.name == table_name and not include_self:
            continue
        for field in table.reference_fields():
            if table_name in field.reference_tables:
                found.append((table, field))
    return found


def shared_geometry_tables() -> List[Table]:
    """Tables whose rows may be shared between several owning entities."""
    return [t for t in EDITOR_TABLES.values() if t.copy_on_write_owner]
