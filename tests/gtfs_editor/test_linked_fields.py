from gtfs_editor.linked_fields import propagate_all, propagate_linked_fields
from gtfs_editor.schema_definitions import get_table


def test_route_accessibility_is_copied_to_trips(cursor):
    """One UPDATE per linked field set, binding values then the key."""
    cursor.respond('UPDATE "public"."trips"', rowcount=4)
    routes = get_table("routes")

    updated = propagate_all(cursor, "public", routes, {"route_id": "R1", "wheelchair_accessible": 1})

    assert updated == 4
    assert cursor.executed == [
        (
            'UPDATE "public"."trips" SET "wheelchair_accessible" = %s WHERE "route_id" = %s',
            (1, "R1"),
        )
    ]


def test_halt_fields_match_stop_sequence(cursor):
    """Pattern halt values go to the stop time at the same position of every trip."""
    pattern_stops = get_table("pattern_stops")
    row = {name: None for name in pattern_stops.field_names}
    row.update({"pattern_id": "P1", "stop_sequence": 4, "timepoint": 1, "pickup_type": 2})

    propagate_linked_fields(
        cursor, "public", pattern_stops, pattern_stops.linked_fields[0], row
    )

    _, params = cursor.executed[0]
    assert params[0] == 1  # timepoint
    assert params[2] == 2  # pickup_type
    assert params[-2:] == ("P1", 4)


def test_zero_rows_is_not_an_error(cursor):
    """A pattern with no trips yet simply updates nothing."""
    assert propagate_all(cursor, "public", get_table("patterns"), {"pattern_id": "P1"}) == 0
    assert len(cursor.executed) == 1


def test_missing_key_or_no_links_skip_the_update(cursor):
    assert propagate_all(cursor, "public", get_table("routes"), {"route_id": None}) == 0
    assert propagate_all(cursor, "public", get_table("stops"), {"stop_id": "S1"}) == 0
    assert cursor.executed == []
