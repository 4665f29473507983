from gtfs_editor import readers
from gtfs_editor.schema_definitions import get_table


def test_read_ordered_zips_rows_by_column(cursor):
    """Rows come back as dicts with the id first, in order-field order."""
    pattern_stops = get_table("pattern_stops")
    width = 1 + len(pattern_stops.field_names)
    cursor.respond('FROM "public"."pattern_stops"', rows=[tuple(range(width))])

    rows = readers.read_ordered(cursor, "public", pattern_stops, "P1")

    sql_text, params = cursor.executed[-1]
    assert sql_text.endswith('WHERE "pattern_id" = %s ORDER BY "stop_sequence"')
    assert params == ("P1",)
    assert rows[0]["id"] == 0
    assert rows[0]["pattern_id"] == 1
    assert rows[0]["stop_sequence"] == 2


def test_read_ordered_by_other_field_defaults_to_id_order(cursor):
    readers.read_ordered(cursor, "public", get_table("trips"), "P1", key_field="pattern_id")
    assert cursor.executed[-1][0].endswith('WHERE "pattern_id" = %s ORDER BY "id"')


def test_get_ids_and_values(cursor):
    cursor.respond('SELECT "id" FROM "public"."routes"', rows=[(3,), (7,)])
    cursor.respond('SELECT "route_id" FROM "public"."routes"', rows=[("R9",)])

    routes = get_table("routes")
    assert readers.get_ids_for_condition(cursor, "public", routes, "route_id", "R") == [3, 7]
    assert readers.get_value_for_id(cursor, "public", routes, 3, "route_id") == "R9"
    assert readers.get_value_for_id(cursor, "public", get_table("stops"), 3, "stop_id") is None


def test_counts(cursor):
    cursor.respond('SELECT COUNT(*) FROM "public"."agency" WHERE', rows=[(4,)])
    cursor.respond('SELECT COUNT(*) FROM "public"."agency"', rows=[(2,)])

    agency = get_table("agency")
    assert readers.get_row_count(cursor, "public", agency) == 2
    assert readers.count_where(cursor, "public", agency, "agency_id", "A") == 4


def test_find_existing_keys_sends_one_sorted_list(cursor):
    """Lookups are batched into one ANY() query, and skipped when empty."""
    cursor.respond('FROM "public"."stops"', rows=[("S1",)])
    stops = get_table("stops")

    found = readers.find_existing_keys(cursor, "public", stops, ["S2", "S1", "S2"])

    assert found == {"S1"}
    assert cursor.executed[-1][1] == (["S1", "S2"],)
    assert readers.find_existing_keys(cursor, "public", stops, []) == set()
    assert len(cursor.executed) == 1
