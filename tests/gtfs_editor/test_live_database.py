"""
End-to-end behaviour of the table writer against a real PostgreSQL schema.

Every test here needs GTFS_EDITOR_TEST_DSN; the `live_db` fixture skips
otherwise.
"""
import pytest

from gtfs_editor.exceptions import ConflictError, EntityValidationError, InvalidReferenceError

EIGHT_AM = 8 * 3600


def halt(sequence, stop_id, travel=0, dwell=0):
    return {
        "stop_sequence": sequence,
        "stop_id": stop_id,
        "default_travel_time": travel,
        "default_dwell_time": dwell,
    }


def stop_time(sequence, stop_id, arrival, departure=None):
    return {
        "stop_sequence": sequence,
        "stop_id": stop_id,
        "arrival_time": arrival,
        "departure_time": arrival if departure is None else departure,
    }


def shape_points(count, lat=-42.88):
    return [
        {"shape_pt_sequence": i, "shape_pt_lat": lat + i / 1000, "shape_pt_lon": 147.32}
        for i in range(count)
    ]


def pattern_document(pattern_id, route_id, shape_id, stops, shapes=None, use_frequency=0):
    return {
        "pattern_id": pattern_id,
        "route_id": route_id,
        "name": f"{route_id} outbound",
        "direction_id": 0,
        "use_frequency": use_frequency,
        "shape_id": shape_id,
        "shapes": shape_points(3) if shapes is None else shapes,
        "pattern_stops": stops,
    }


def trip_document(trip_id, route_id, pattern_id, stop_times, frequencies=None):
    return {
        "trip_id": trip_id,
        "route_id": route_id,
        "service_id": "WK",
        "pattern_id": pattern_id,
        "stop_times": stop_times,
        "frequencies": frequencies or [],
    }


@pytest.fixture
def network(live_db):
    """An agency, calendar and route with four stops, pattern P1 and trip T1."""
    live_db.writer("agency").create({
        "agency_id": "A1",
        "agency_name": "Metro Tasmania",
        "agency_url": "https://www.metrotas.com.au",
        "agency_timezone": "Australia/Hobart",
    })
    live_db.writer("calendar").create({
        "service_id": "WK",
        "monday": 1, "tuesday": 1, "wednesday": 1, "thursday": 1, "friday": 1,
        "saturday": 0, "sunday": 0,
        "start_date": "20260101",
        "end_date": "20261231",
    })
    live_db.writer("routes").create({"route_id": "R1", "agency_id": "A1", "route_type": 3})
    for index, stop_id in enumerate(("S1", "S2", "S3", "S4")):
        live_db.writer("stops").create({
            "stop_id": stop_id,
            "stop_name": f"Stop {index + 1}",
            "stop_lat": -42.88 + index / 100,
            "stop_lon": 147.32,
        })
    pattern = live_db.writer("patterns").create(
        pattern_document(
            "P1", "R1", "SH1",
            [halt(0, "S1"), halt(1, "S2", 60), halt(2, "S3", 120, 30)],
        )
    )
    trip = live_db.writer("trips").create(
        trip_document(
            "T1", "R1", "P1",
            [
                stop_time(0, "S1", EIGHT_AM),
                stop_time(1, "S2", EIGHT_AM + 300),
                stop_time(2, "S3", EIGHT_AM + 600, EIGHT_AM + 630),
            ],
        )
    )
    return {"pattern": pattern, "trip": trip}


def stop_times_of(live_db, trip_id):
    return live_db.rows("stop_times", "trip_id = %s", (trip_id,))


def test_route_round_trip(live_db):
    """Created fields come back from the table, updates replace them."""
    live_db.writer("agency").create({
        "agency_id": "A1",
        "agency_name": "Metro",
        "agency_url": "https://example.org",
        "agency_timezone": "Australia/Hobart",
    })

    created = live_db.writer("routes").create(
        {"route_id": "R1", "agency_id": "A1", "route_type": "3", "route_short_name": "X1"}
    )
    stored = live_db.rows("routes")
    assert len(stored) == 1
    assert stored[0]["id"] == created["id"]
    assert stored[0]["route_type"] == 3
    assert stored[0]["route_short_name"] == "X1"

    live_db.writer("routes").update(
        created["id"], {"route_id": "R1", "agency_id": "A1", "route_type": 3, "route_short_name": ""}
    )
    assert live_db.rows("routes")[0]["route_short_name"] is None

    assert live_db.writer("routes").delete(created["id"]) == 1
    assert live_db.rows("routes") == []


def test_duplicate_key_is_refused(network, live_db):
    with pytest.raises(ConflictError):
        live_db.writer("routes").create({"route_id": "R1", "route_type": 3})
    assert len(live_db.rows("routes")) == 1


def test_bad_stop_time_order_leaves_nothing_behind(network, live_db):
    """A rejected child collection rolls back the parent row as well."""
    with pytest.raises(EntityValidationError, match="illegal value of 2"):
        live_db.writer("trips").create(
            trip_document(
                "T2", "R1", "P1",
                [stop_time(0, "S1", EIGHT_AM), stop_time(2, "S2", EIGHT_AM + 60)],
            )
        )
    assert live_db.rows("trips", "trip_id = %s", ("T2",)) == []


def test_unknown_reference_is_refused(network, live_db):
    with pytest.raises(InvalidReferenceError):
        live_db.writer("trips").create(
            trip_document("T2", "R1", "P1", [stop_time(0, "NOPE", EIGHT_AM)])
        )
    assert live_db.rows("trips", "trip_id = %s", ("T2",)) == []


def test_frequencies_need_a_frequency_pattern(network, live_db):
    frequency = {"start_time": "06:00:00", "end_time": "09:00:00", "headway_secs": 600}
    with pytest.raises(EntityValidationError, match="timetable-based pattern"):
        live_db.writer("trips").create(
            trip_document("T2", "R1", "P1", [stop_time(0, "S1", EIGHT_AM)], [frequency])
        )
    assert live_db.rows("frequencies") == []


def test_stop_rename_follows_every_reference(network, live_db):
    """Scalar fields, list elements and child stations all see the new key."""
    live_db.writer("stops").create({"stop_id": "S5", "parent_station": "S1"})
    live_db.writer("location_groups").create(
        {"location_group_id": "LG1", "location_id": ["S1", "S2"]}
    )
    s1 = live_db.rows("stops", "stop_id = %s", ("S1",))[0]

    live_db.writer("stops").update(s1["id"], {"stop_id": "S9", "stop_name": "Stop 1"})

    assert live_db.rows("location_groups")[0]["location_id"] == ["S9", "S2"]
    assert live_db.rows("stops", "stop_id = %s", ("S5",))[0]["parent_station"] == "S9"
    assert [r["stop_id"] for r in live_db.rows("pattern_stops")] == ["S9", "S2", "S3"]
    assert [r["stop_id"] for r in stop_times_of(live_db, "T1")] == ["S9", "S2", "S3"]


def test_route_delete_cascades_but_keeps_shared_shape(network, live_db):
    """Descendants of the route go; a shape another route still uses stays."""
    live_db.writer("routes").create({"route_id": "R2", "agency_id": "A1", "route_type": 3})
    live_db.writer("patterns").create(
        pattern_document("P2", "R2", "SH1", [halt(0, "S1"), halt(1, "S4", 90)], shapes=[])
    )
    r1 = live_db.rows("routes", "route_id = %s", ("R1",))[0]

    live_db.writer("routes").delete(r1["id"])

    assert [r["pattern_id"] for r in live_db.rows("patterns")] == ["P2"]
    assert live_db.rows("trips") == []
    assert stop_times_of(live_db, "T1") == []
    assert [r["stop_id"] for r in live_db.rows("pattern_stops")] == ["S1", "S4"]
    assert len(live_db.rows("shapes", "shape_id = %s", ("SH1",))) == 3


def test_restricted_agency_delete(network, live_db):
    agency = live_db.rows("agency")[0]
    with pytest.raises(ConflictError, match="1 routes reference this Agency"):
        live_db.writer("agency").delete(agency["id"])
    assert len(live_db.rows("agency")) == 1


def test_editing_a_shared_shape_forks_it(network, live_db):
    """The edited pattern gets its own copy; the other keeps the original."""
    live_db.writer("patterns").create(
        pattern_document("P2", "R1", "SH1", [halt(0, "S1")], shapes=[])
    )
    document = pattern_document(
        "P1", "R1", "SH1",
        [halt(0, "S1"), halt(1, "S2", 60), halt(2, "S3", 120, 30)],
        shapes=shape_points(2, lat=-43.0),
    )

    result = live_db.writer("patterns").update(network["pattern"]["id"], document)

    new_shape_id = result["shape_id"]
    assert new_shape_id not in (None, "SH1")
    assert len(live_db.rows("shapes", "shape_id = %s", ("SH1",))) == 3
    assert len(live_db.rows("shapes", "shape_id = %s", (new_shape_id,))) == 2
    p1 = live_db.rows("patterns", "pattern_id = %s", ("P1",))[0]
    assert p1["shape_id"] == new_shape_id
    assert live_db.rows("trips")[0]["shape_id"] == new_shape_id


def test_inserted_halt_rebuilds_trip_stop_times(network, live_db):
    """Existing stop times keep their times; the new halt gets an empty row."""
    document = pattern_document(
        "P1", "R1", "SH1",
        [halt(0, "S1"), halt(1, "S4", 30), halt(2, "S2", 30), halt(3, "S3", 120, 30)],
    )

    live_db.writer("patterns").update(network["pattern"]["id"], document)

    rows = stop_times_of(live_db, "T1")
    assert [(r["stop_sequence"], r["stop_id"]) for r in rows] == [
        (0, "S1"), (1, "S4"), (2, "S2"), (3, "S3"),
    ]
    assert rows[1]["arrival_time"] is None
    assert rows[2]["arrival_time"] == EIGHT_AM + 300
    assert rows[3]["departure_time"] == EIGHT_AM + 630


def test_normalize_applies_default_times(network, live_db):
    """Travel/dwell of (0, 0), (60, 0), (120, 30) from 08:00 give 08:01 and 08:03:00-08:03:30."""
    updated = live_db.writer("patterns").normalize_stop_times_for_pattern(
        network["pattern"]["id"], 0
    )

    assert updated == 3
    rows = stop_times_of(live_db, "T1")
    assert [(r["arrival_time"], r["departure_time"]) for r in rows] == [
        (EIGHT_AM, EIGHT_AM),
        (EIGHT_AM + 60, EIGHT_AM + 60),
        (EIGHT_AM + 180, EIGHT_AM + 210),
    ]


def test_normalize_from_later_sequence_keeps_earlier_times(network, live_db):
    live_db.writer("patterns").normalize_stop_times_for_pattern(network["pattern"]["id"], 2)

    rows = stop_times_of(live_db, "T1")
    assert rows[1]["departure_time"] == EIGHT_AM + 300
    assert (rows[2]["arrival_time"], rows[2]["departure_time"]) == (EIGHT_AM + 420, EIGHT_AM + 450)


def test_route_accessibility_reaches_trips(network, live_db):
    r1 = live_db.rows("routes", "route_id = %s", ("R1",))[0]
    live_db.writer("routes").update(
        r1["id"], {"route_id": "R1", "agency_id": "A1", "route_type": 3, "wheelchair_accessible": 1}
    )
    assert live_db.rows("trips")[0]["wheelchair_accessible"] == 1


def test_new_pattern_posting_points_for_a_used_shape_gets_a_copy(network, live_db):
    """Points sent with an existing shape key never land in another pattern's shape."""
    created = live_db.writer("patterns").create(
        pattern_document("P2", "R1", "SH1", [halt(0, "S1")], shapes=shape_points(2, lat=-43.0))
    )

    assert created["shape_id"] not in (None, "SH1")
    assert len(live_db.rows("shapes", "shape_id = %s", ("SH1",))) == 3
    assert len(live_db.rows("shapes", "shape_id = %s", (created["shape_id"],))) == 2
    p2 = live_db.rows("patterns", "pattern_id = %s", ("P2",))[0]
    assert p2["shape_id"] == created["shape_id"]


def test_pattern_switched_to_timetable_loses_trip_frequencies(network, live_db):
    stops = [halt(0, "S1"), halt(1, "S2", 60)]
    pattern = live_db.writer("patterns").create(
        pattern_document("P3", "R1", None, stops, shapes=[], use_frequency=1)
    )
    live_db.writer("trips").create(
        trip_document(
            "T3", "R1", "P3",
            [stop_time(0, "S1", EIGHT_AM), stop_time(1, "S2", EIGHT_AM + 60)],
            [{"start_time": "06:00:00", "end_time": "09:00:00", "headway_secs": 600}],
        )
    )
    assert len(live_db.rows("frequencies")) == 1

    live_db.writer("patterns").update(
        pattern["id"], pattern_document("P3", "R1", None, stops, shapes=[], use_frequency=0)
    )

    assert live_db.rows("frequencies") == []
    assert len(stop_times_of(live_db, "T3")) == 2
