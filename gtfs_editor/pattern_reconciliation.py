# gtfs_editor/pattern_reconciliation.py
# -*- coding: utf-8 -*-
"""
Keeps trip stop times consistent with a pattern's ordered halts.

A pattern is an ordered sequence of halts of three kinds (pattern stops,
pattern locations and pattern location groups) sharing one stop_sequence
domain. After the halts of a pattern are replaced, every trip generated from
the pattern gets its stop times rebuilt to follow the new sequence, and
frequency-based trips get their times recomputed from the halts' default
travel and dwell times.

The arithmetic is the same everywhere: a halt's arrival is the previous
cumulative time plus its travel time, and its departure is the arrival plus
its dwell (or flex zone) time.
"""

import difflib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from psycopg import Cursor as PgCursor

from . import readers, statements
from .child_sync import insert_rows
from .exceptions import EntityNotFoundError
from .schema_definitions import Table, get_table

module_logger = logging.getLogger(__name__)


class HaltKind(Enum):
    """The three row kinds that make up a pattern."""

    STOP = (
        "pattern_stops",
        "stop_id",
        "default_travel_time",
        "default_dwell_time",
        ("arrival_time", "departure_time"),
    )
    LOCATION = (
        "pattern_locations",
        "location_id",
        "flex_default_travel_time",
        "flex_default_zone_time",
        ("start_pickup_dropoff_window", "end_pickup_dropoff_window"),
    )
    LOCATION_GROUP = (
        "pattern_location_groups",
        "location_group_id",
        "flex_default_travel_time",
        "flex_default_zone_time",
        ("start_pickup_dropoff_window", "end_pickup_dropoff_window"),
    )

    def __init__(
        self,
        table_name: str,
        reference_field: str,
        travel_field: str,
        dwell_field: str,
        time_fields: Tuple[str, str],
    ):
        self.table_name = table_name
        self.reference_field = reference_field
        self.travel_field = travel_field
        self.dwell_field = dwell_field
        self.time_fields = time_fields

    @property
    def table(self) -> Table:
        return get_table(self.table_name)

    @classmethod
    def for_table(cls, table_name: str) -> "HaltKind":
        for kind in cls:
            if kind.table_name == table_name:
                return kind
        raise ValueError(f"Table '{table_name}' does not hold pattern halts.")


@dataclass(frozen=True)
class PatternHalt:
    """One position of a pattern, whatever its kind."""

    kind: HaltKind
    pattern_id: str
    stop_sequence: int
    reference_id: str
    travel_time: int = 0
    dwell_time: int = 0
    linked_values: Dict[str, Any] = field(
        default_factory=dict, compare=False, hash=False
    )

    @classmethod
    def from_row(cls, kind: HaltKind, row: Dict[str, Any]) -> "PatternHalt":
        linked_values: Dict[str, Any] = {}
        for linked in kind.table.linked_fields:
            if linked.target_table == "stop_times":
                linked_values.update({name: row.get(name) for name in linked.fields})
        return cls(
            kind=kind,
            pattern_id=row["pattern_id"],
            stop_sequence=int(row["stop_sequence"]),
            reference_id=row[kind.reference_field],
            travel_time=row.get(kind.travel_field) or 0,
            dwell_time=row.get(kind.dwell_field) or 0,
            linked_values=linked_values,
        )

    @property
    def identity(self) -> Tuple[HaltKind, str]:
        return self.kind, self.reference_id

    @property
    def time_contribution(self) -> int:
        return self.travel_time + self.dwell_time


def merge_halts(halts: Iterable[PatternHalt]) -> List[PatternHalt]:
    """All halts in stop_sequence order (stable for equal sequences)."""
    return sorted(halts, key=lambda halt: halt.stop_sequence)


def accumulate_halt_times(
    halts: Sequence[PatternHalt], start: int = 0
) -> List[Tuple[PatternHalt, int, int]]:
    """
    Walk halts in order, returning (halt, arrival, departure) for each.

    Halts with (travel, dwell) of (60, 0) then (120, 30), starting from 0,
    give (60, 60) then (180, 210).
    """
    cumulative = start
    timings: List[Tuple[PatternHalt, int, int]] = []
    for halt in halts:
        arrival = cumulative + halt.travel_time
        departure = arrival + halt.dwell_time
        timings.append((halt, arrival, departure))
        cumulative = departure
    return timings


def plan_stop_time_sequence(
    original_halts: Sequence[PatternHalt],
    updated_halts: Sequence[PatternHalt],
    existing_stop_times: Iterable[Dict[str, Any]],
) -> List[Tuple[PatternHalt, Optional[Dict[str, Any]]]]:
    """
    Pair each updated halt with the existing stop time it keeps, if any.

    Halts present in both sequences (same kind and referenced id, in the same
    relative order) keep the stop time found at their original stop_sequence.
    Inserted halts are paired with None.
    """
    by_sequence = {row["stop_sequence"]: row for row in existing_stop_times}
    matcher = difflib.SequenceMatcher(
        a=[halt.identity for halt in original_halts],
        b=[halt.identity for halt in updated_halts],
        autojunk=False,
    )
    kept: List[Optional[Dict[str, Any]]] = [None] * len(updated_halts)
    for block in matcher.get_matching_blocks():
        for offset in range(block.size):
            original = original_halts[block.a + offset]
            kept[block.b + offset] = by_sequence.get(original.stop_sequence)
    return list(zip(updated_halts, kept))


def build_stop_time_rows(
    trip_id: str, plan: Sequence[Tuple[PatternHalt, Optional[Dict[str, Any]]]]
) -> List[Dict[str, Any]]:
    """Stop time rows for one trip following a planned halt sequence."""
    stop_times = get_table("stop_times")
    rows: List[Dict[str, Any]] = []
    for halt, existing in plan:
        if existing:
            row = {name: existing.get(name) for name in stop_times.field_names}
        else:
            row = dict.fromkeys(stop_times.field_names)
            row["stop_id"] = halt.reference_id
        row.update(halt.linked_values)
        row["trip_id"] = trip_id
        row["stop_sequence"] = halt.stop_sequence
        rows.append(row)
    return rows


def update_stop_times_for_halts(
    cursor: PgCursor,
    namespace: str,
    halts: Sequence[PatternHalt],
    start: int = 0,
    trip_id: Optional[str] = None,
) -> int:
    """
    Write cumulative halt times into the matching stop times.

    Stop halts set arrival/departure times; flex halts set the pickup/drop-off
    window instead.

    Args:
        cursor: Active Psycopg 3 cursor.
        namespace: Schema holding the editor tables.
        halts: Halts in stop_sequence order.
        start: Cumulative time before the first halt.
        trip_id: Restrict the update to one trip. Every trip of the pattern
            is updated when omitted.

    Returns:
        Number of stop time rows updated.
    """
    updated = 0
    for halt, arrival, departure in accumulate_halt_times(halts, start):
        params: List[Any] = [arrival, departure, halt.pattern_id, halt.stop_sequence]
        if trip_id is not None:
            params.append(trip_id)
        cursor.execute(
            statements.update_stop_time_window(
                namespace, halt.kind.time_fields, single_trip=trip_id is not None
            ),
            params,
        )
        rowcount = cursor.rowcount if cursor.rowcount and cursor.rowcount > 0 else 0
        module_logger.debug(
            f"{rowcount} stop_time {halt.kind.time_fields} set to ({arrival}, {departure}) "
            f"for {halt.pattern_id} sequence {halt.stop_sequence}"
        )
        updated += rowcount
    return updated


class PatternReconciliation:
    """
    Collects a pattern's original and replacement halts, then rebuilds the
    stop times of its trips once all halt tables have been written.
    """

    def __init__(self, cursor: PgCursor, namespace: str, insert_batch_size: int = 500):
        self.cursor = cursor
        self.namespace = namespace
        self.insert_batch_size = insert_batch_size
        self.pattern_id: Optional[str] = None
        self._original: Dict[HaltKind, List[PatternHalt]] = {}
        self._updated: Dict[HaltKind, List[PatternHalt]] = {}

    def stage(self, table: Table, rows: Sequence[Dict[str, Any]], pattern_id: str) -> None:
        """Record the stored and the incoming halts of one halt table."""
        kind = HaltKind.for_table(table.name)
        self.pattern_id = pattern_id
        stored = readers.read_ordered(self.cursor, self.namespace, table, pattern_id)
        self._original[kind] = [PatternHalt.from_row(kind, row) for row in stored]
        self._updated[kind] = [PatternHalt.from_row(kind, row) for row in rows]

    @property
    def has_staged_halts(self) -> bool:
        return bool(self._updated)

    @property
    def original_halts(self) -> List[PatternHalt]:
        return merge_halts(h for halts in self._original.values() for h in halts)

    @property
    def updated_halts(self) -> List[PatternHalt]:
        return merge_halts(h for halts in self._updated.values() for h in halts)

    @property
    def sequence_changed(self) -> bool:
        def signature(halts: List[PatternHalt]) -> List[Tuple[Any, ...]]:
            return [(h.kind, h.reference_id, h.stop_sequence) for h in halts]

        return signature(self.original_halts) != signature(self.updated_halts)

    def reconcile(self) -> int:
        """
        Rebuild the stop times of every trip on the pattern if its halt
        sequence changed.

        Returns:
            Number of trips whose stop times were rebuilt.
        """
        if not self._updated or self.pattern_id is None:
            return 0
        if not self.sequence_changed:
            module_logger.debug(
                f"Halt sequence of pattern {self.pattern_id} unchanged; stop times kept."
            )
            return 0

        trips = get_table("trips")
        stop_times = get_table("stop_times")
        trip_rows = readers.read_ordered(
            self.cursor, self.namespace, trips, self.pattern_id, key_field="pattern_id"
        )
        original = self.original_halts
        updated = self.updated_halts
        for trip in trip_rows:
            trip_id = trip["trip_id"]
            existing = readers.read_ordered(self.cursor, self.namespace, stop_times, trip_id)
            plan = plan_stop_time_sequence(original, updated, existing)
            self.cursor.execute(
                statements.delete_where(self.namespace, stop_times, "trip_id"), (trip_id,)
            )
            insert_rows(
                self.cursor,
                self.namespace,
                stop_times,
                build_stop_time_rows(trip_id, plan),
                self.insert_batch_size,
            )
        module_logger.info(
            f"Rebuilt stop times of {len(trip_rows)} trip(s) for pattern {self.pattern_id} "
            f"({len(original)} -> {len(updated)} halts)"
        )
        return len(trip_rows)

    def propagate_default_times(self, start: int = 0) -> int:
        """Apply the halts' default times to every trip of the pattern."""
        updated = update_stop_times_for_halts(
            self.cursor, self.namespace, self.updated_halts, start
        )
        module_logger.info(
            f"{updated} stop time(s) of pattern {self.pattern_id} follow default travel times"
        )
        return updated


def normalize_stop_times(
    cursor: PgCursor, namespace: str, pattern_row_id: int, begin_with_sequence: int
) -> int:
    """
    Recompute stop times of every trip on a pattern from a given sequence on.

    Each trip is seeded with the departure (or flex window end) of its stop
    time before the first affected halt, or with the arrival (or window
    start) at that halt when nothing precedes it. Trips with no seed are
    skipped.

    Args:
        cursor: Active Psycopg 3 cursor.
        namespace: Schema holding the editor tables.
        pattern_row_id: Surrogate id of the pattern row.
        begin_with_sequence: First stop_sequence (inclusive) to recompute.

    Returns:
        Number of stop time rows updated.

    Raises:
        EntityNotFoundError: If no pattern has that id.
    """
    pattern_id = readers.get_value_for_id(
        cursor, namespace, get_table("patterns"), pattern_row_id, "pattern_id"
    )
    if pattern_id is None:
        raise EntityNotFoundError(
            f"No pattern found with id {pattern_row_id}.",
            table_name="patterns",
            values=[pattern_row_id],
        )

    halts: List[PatternHalt] = []
    for kind in HaltKind:
        for row in readers.read_ordered(cursor, namespace, kind.table, pattern_id):
            if row["stop_sequence"] >= begin_with_sequence:
                halts.append(PatternHalt.from_row(kind, row))
    halts = merge_halts(halts)
    if not halts:
        module_logger.warning(
            f"Pattern {pattern_id} has no halts at or after sequence {begin_with_sequence}."
        )
        return 0

    first_sequence = halts[0].stop_sequence
    cursor.execute(
        statements.select_stop_time_seeds(namespace),
        (first_sequence, first_sequence, pattern_id),
    )
    seeds = cursor.fetchall()

    # Starting at the first halt seeds from its own arrival, so that halt's
    # travel time is added on top of it.
    updated = 0
    for trip_id, seed in seeds:
        if seed is None:
            module_logger.warning(
                f"Trip {trip_id} has no stop time to start from at sequence {first_sequence}; skipped."
            )
            continue
        updated += update_stop_times_for_halts(cursor, namespace, halts, seed, trip_id)
    module_logger.info(
        f"Normalized {updated} stop time(s) across {len(seeds)} trip(s) of pattern {pattern_id}"
    )
    return updated
