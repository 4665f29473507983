from unittest.mock import MagicMock

import psycopg
import pytest

from gtfs_editor.db_setup import create_editor_tables, drop_editor_schema
from gtfs_editor.schema_definitions import EDITOR_TABLES


def make_connection(cursor):
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn


def test_create_editor_tables_issues_schema_tables_and_indexes(cursor):
    conn = make_connection(cursor)

    create_editor_tables(conn, "feed_1")

    conn.transaction.assert_called_once()
    texts = [text for text, _ in cursor.executed]
    assert texts[0] == 'CREATE SCHEMA IF NOT EXISTS "feed_1"'
    assert len(cursor.statements_containing("CREATE TABLE")) == len(EDITOR_TABLES)
    assert len(cursor.statements_containing("CREATE INDEX")) == len(EDITOR_TABLES)
    assert 'CREATE INDEX IF NOT EXISTS "routes_route_id_idx" ON "feed_1"."routes" ("route_id")' in texts


def test_create_editor_tables_propagates_failures(cursor):
    cursor.respond('"feed_1"."stops"', error=psycopg.Error("permission denied"))
    conn = make_connection(cursor)

    with pytest.raises(psycopg.Error):
        create_editor_tables(conn, "feed_1")


def test_drop_editor_schema(cursor):
    conn = make_connection(cursor)

    drop_editor_schema(conn, "feed_1")

    assert cursor.executed == [('DROP SCHEMA IF EXISTS "feed_1" CASCADE', ())]


def test_bad_namespace_is_refused(cursor):
    with pytest.raises(ValueError):
        create_editor_tables(make_connection(cursor), "feed; DROP SCHEMA public")
    assert cursor.executed == []
