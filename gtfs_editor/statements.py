# gtfs_editor/statements.py
# -*- coding: utf-8 -*-
"""
SQL statement builder for the editor tables.

Every statement is composed with `psycopg.sql`. Schema, table and column
names come only from the table metadata (checked by `column`) or from a
validated namespace, and every value is bound as a `%s` parameter.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from psycopg import sql

from common.config_models import NAMESPACE_PATTERN

from .schema_definitions import LinkedFields, Table, get_table

module_logger = logging.getLogger(__name__)

ID_COLUMN = "id"


def qualified(namespace: str, table_name: str) -> sql.Identifier:
    """
    Schema-qualified identifier for an editor table.

    Raises:
        ValueError: If the namespace is not a plain schema name or the table
            is not an editor table.
    """
    if not NAMESPACE_PATTERN.match(namespace):
        raise ValueError(f"Invalid namespace '{namespace}'.")
    return sql.Identifier(namespace, get_table(table_name).name)


def column(table: Table, name: str, alias: Optional[str] = None) -> sql.Identifier:
    """
    Identifier for a column of `table`, optionally qualified by an alias.

    Raises:
        ValueError: If the column is neither a declared field nor the id.
    """
    if name != ID_COLUMN and not table.has_field(name):
        raise ValueError(f"Unknown column '{name}' for table '{table.name}'.")
    if alias:
        return sql.Identifier(alias, name)
    return sql.Identifier(name)


def _column_list(table: Table, names: Iterable[str], alias: Optional[str] = None) -> sql.Composed:
    return sql.SQL(", ").join(column(table, name, alias) for name in names)


def _equals(table: Table, field_name: str, alias: Optional[str] = None) -> sql.Composed:
    """`field = %s`, or `%s = ANY(field)` for list fields."""
    col = column(table, field_name, alias)
    if field_name != ID_COLUMN and table.get_field(field_name).is_list:
        return sql.SQL("{} = ANY({})").format(sql.Placeholder(), col)
    return sql.SQL("{} = {}").format(col, sql.Placeholder())


# --- Single table reads ---

def select_rows(
    namespace: str,
    table: Table,
    columns: Sequence[str],
    where_field: Optional[str] = None,
    order_by: Optional[str] = None,
) -> sql.Composed:
    query = sql.SQL("SELECT {} FROM {}").format(
        _column_list(table, columns), qualified(namespace, table.name)
    )
    if where_field:
        query = sql.SQL("{} WHERE {}").format(query, _equals(table, where_field))
    if order_by:
        query = sql.SQL("{} ORDER BY {}").format(query, column(table, order_by))
    return query


def select_ids_where(namespace: str, table: Table, field_name: str) -> sql.Composed:
    return select_rows(
        namespace, table, [ID_COLUMN], where_field=field_name, order_by=ID_COLUMN
    )


def select_value_for_id(namespace: str, table: Table, field_name: str) -> sql.Composed:
    return select_rows(namespace, table, [field_name], where_field=ID_COLUMN)


def count_rows(namespace: str, table: Table) -> sql.Composed:
    return sql.SQL("SELECT COUNT(*) FROM {}").format(qualified(namespace, table.name))


def count_where(namespace: str, table: Table, field_name: str) -> sql.Composed:
    return sql.SQL("SELECT COUNT(*) FROM {} WHERE {}").format(
        qualified(namespace, table.name), _equals(table, field_name)
    )


def select_existing_keys(namespace: str, table: Table) -> sql.Composed:
    """Key values of `table` present in the bound list parameter."""
    key = column(table, table.key_field)
    return sql.SQL("SELECT DISTINCT {} FROM {} WHERE {} = ANY({})").format(
        key, qualified(namespace, table.name), key, sql.Placeholder()
    )


# --- Single table writes ---

def insert_row(
    namespace: str, table: Table, field_names: Sequence[str], returning_id: bool = True
) -> sql.Composed:
    query = sql.SQL("INSERT INTO {} ({}) VALUES ({})").format(
        qualified(namespace, table.name),
        _column_list(table, field_names),
        sql.SQL(", ").join([sql.Placeholder()] * len(field_names)),
    )
    if returning_id:
        query = sql.SQL("{} RETURNING {}").format(query, sql.Identifier(ID_COLUMN))
    return query


def update_row(namespace: str, table: Table, field_names: Sequence[str]) -> sql.Composed:
    assignments = sql.SQL(", ").join(
        sql.SQL("{} = {}").format(column(table, name), sql.Placeholder())
        for name in field_names
    )
    return sql.SQL("UPDATE {} SET {} WHERE {} = {}").format(
        qualified(namespace, table.name),
        assignments,
        sql.Identifier(ID_COLUMN),
        sql.Placeholder(),
    )


def update_field_for_id(namespace: str, table: Table, field_name: str) -> sql.Composed:
    return update_row(namespace, table, [field_name])


def delete_by_id(namespace: str, table: Table) -> sql.Composed:
    return sql.SQL("DELETE FROM {} WHERE {} = {}").format(
        qualified(namespace, table.name), sql.Identifier(ID_COLUMN), sql.Placeholder()
    )


def delete_where(namespace: str, table: Table, field_name: str) -> sql.Composed:
    """Delete rows whose field equals (or, for lists, contains) the bound value."""
    return sql.SQL("DELETE FROM {} WHERE {}").format(
        qualified(namespace, table.name), _equals(table, field_name)
    )


def rename_reference(namespace: str, table: Table, field_name: str) -> sql.Composed:
    """
    Point references at a new key value.

    Scalar fields bind (new, old). List fields bind (old, new, old) and only
    the matching element is replaced.
    """
    target = qualified(namespace, table.name)
    col = column(table, field_name)
    if table.get_field(field_name).is_list:
        return sql.SQL(
            "UPDATE {} SET {} = array_replace({}, {}::text, {}::text) WHERE {}"
        ).format(
            target, col, col, sql.Placeholder(), sql.Placeholder(), _equals(table, field_name)
        )
    return sql.SQL("UPDATE {} SET {} = {} WHERE {}").format(
        target, col, sql.Placeholder(), _equals(table, field_name)
    )


# --- Statements joining two tables ---

def update_linked_fields(
    namespace: str, linked: LinkedFields, order_field: Optional[str] = None
) -> sql.Composed:
    """
    Copy duplicated values into rows of the linked table.

    Binds the field values in order, then the key value, then the order value
    when `order_field` is given.
    """
    target = get_table(linked.target_table)
    assignments = sql.SQL(", ").join(
        sql.SQL("{} = {}").format(column(target, name), sql.Placeholder())
        for name in linked.fields
    )
    if linked.join_table is None:
        return sql.SQL("UPDATE {} SET {} WHERE {}").format(
            qualified(namespace, target.name),
            assignments,
            _equals(target, linked.key_field),
        )

    join = get_table(linked.join_table)
    conditions: List[sql.Composable] = [
        sql.SQL("{} = {}").format(
            column(target, linked.join_field, "tgt"), column(join, linked.join_field, "j")
        ),
        sql.SQL("{} = {}").format(column(join, linked.key_field, "j"), sql.Placeholder()),
    ]
    if order_field:
        conditions.append(
            sql.SQL("{} = {}").format(column(target, order_field, "tgt"), sql.Placeholder())
        )
    return sql.SQL("UPDATE {} AS tgt SET {} FROM {} AS j WHERE {}").format(
        qualified(namespace, target.name),
        assignments,
        qualified(namespace, join.name),
        sql.SQL(" AND ").join(conditions),
    )


def update_stop_time_window(
    namespace: str, time_fields: Sequence[str], single_trip: bool = False
) -> sql.Composed:
    """
    Set the two time columns of the stop time at a pattern position.

    Binds (start, end, pattern_id, stop_sequence[, trip_id]).
    """
    stop_times = get_table("stop_times")
    trips = get_table("trips")
    start_field, end_field = time_fields
    conditions: List[sql.Composable] = [
        sql.SQL("{} = {}").format(column(stop_times, "trip_id", "st"), column(trips, "trip_id", "t")),
        sql.SQL("{} = {}").format(column(trips, "pattern_id", "t"), sql.Placeholder()),
        sql.SQL("{} = {}").format(column(stop_times, "stop_sequence", "st"), sql.Placeholder()),
    ]
    if single_trip:
        conditions.append(
            sql.SQL("{} = {}").format(column(stop_times, "trip_id", "st"), sql.Placeholder())
        )
    return sql.SQL(
        "UPDATE {} AS st SET {} = {}, {} = {} FROM {} AS t WHERE {}"
    ).format(
        qualified(namespace, stop_times.name),
        column(stop_times, start_field),
        sql.Placeholder(),
        column(stop_times, end_field),
        sql.Placeholder(),
        qualified(namespace, trips.name),
        sql.SQL(" AND ").join(conditions),
    )


def select_stop_time_seeds(namespace: str) -> sql.Composed:
    """
    Per trip of a pattern, the time preceding a given stop_sequence.

    The seed is the departure (or flex window end) of the nearest earlier
    stop time, falling back to the arrival (or window start) at the sequence
    itself. Binds (stop_sequence, stop_sequence, pattern_id).
    """
    stop_times = qualified(namespace, "stop_times")
    return sql.SQL(
        "SELECT t.trip_id, COALESCE("
        "(SELECT COALESCE(p.departure_time, p.end_pickup_dropoff_window) FROM {} AS p "
        "WHERE p.trip_id = t.trip_id AND p.stop_sequence < {} "
        "ORDER BY p.stop_sequence DESC LIMIT 1), "
        "(SELECT COALESCE(c.arrival_time, c.start_pickup_dropoff_window) FROM {} AS c "
        "WHERE c.trip_id = t.trip_id AND c.stop_sequence = {} LIMIT 1)"
        ") FROM {} AS t WHERE t.pattern_id = {} ORDER BY t.trip_id"
    ).format(
        stop_times,
        sql.Placeholder(),
        stop_times,
        sql.Placeholder(),
        qualified(namespace, "trips"),
        sql.Placeholder(),
    )


def delete_children_through(
    namespace: str, child: Table, via: Table, via_field: str
) -> sql.Composed:
    """
    Delete `child` rows belonging to `via` rows that match a bound value.

    e.g. stop_times of every trip whose route_id equals the bound value.
    """
    return sql.SQL(
        "DELETE FROM {} AS c USING {} AS v WHERE {} = {} AND {}"
    ).format(
        qualified(namespace, child.name),
        qualified(namespace, via.name),
        column(child, child.key_field, "c"),
        column(via, child.key_field, "v"),
        _equals(via, via_field, "v"),
    )


def delete_unshared_geometry(
    namespace: str,
    geometry: Table,
    owner: Table,
    owner_field: str,
    users: Sequence[Table],
) -> sql.Composed:
    """
    Delete shared-geometry rows of owners matching a bound value, keeping any
    geometry still used by a row outside that selection.

    `users` are the tables pointing at the geometry key. A user table that
    has `owner_field` only counts rows whose `owner_field` differs from the
    bound value. Binds the owner value once, then once per such user table.
    """
    key = geometry.key_field
    still_used: List[sql.Composable] = []
    for index, user in enumerate(users):
        alias = f"u{index}"
        condition = sql.SQL("{} = {}").format(column(user, key, alias), column(geometry, key, "g"))
        if user.has_field(owner_field):
            condition = sql.SQL("{} AND {} IS DISTINCT FROM {}").format(
                condition, column(user, owner_field, alias), sql.Placeholder()
            )
        still_used.append(
            sql.SQL("NOT EXISTS (SELECT 1 FROM {} AS {} WHERE {})").format(
                qualified(namespace, user.name), sql.Identifier(alias), condition
            )
        )
    conditions: List[sql.Composable] = [
        sql.SQL("{} = {}").format(column(geometry, key, "g"), column(owner, key, "o")),
        _equals(owner, owner_field, "o"),
        *still_used,
    ]
    return sql.SQL("DELETE FROM {} AS g USING {} AS o WHERE {}").format(
        qualified(namespace, geometry.name),
        qualified(namespace, owner.name),
        sql.SQL(" AND ").join(conditions),
    )


def unshared_geometry_params(
    value: str, owner_field: str, users: Sequence[Table]
) -> List[str]:
    """Parameters matching `delete_unshared_geometry` for the same arguments."""
    return [value] + [value for user in users if user.has_field(owner_field)]


# --- DDL ---

def create_schema(namespace: str) -> sql.Composed:
    if not NAMESPACE_PATTERN.match(namespace):
        raise ValueError(f"Invalid namespace '{namespace}'.")
    return sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(namespace))


def drop_schema(namespace: str) -> sql.Composed:
    if not NAMESPACE_PATTERN.match(namespace):
        raise ValueError(f"Invalid namespace '{namespace}'.")
    return sql.SQL("DROP SCHEMA IF EXISTS {} CASCADE").format(sql.Identifier(namespace))


def create_table(namespace: str, table: Table) -> sql.Composed:
    column_defs = [sql.SQL("{} SERIAL PRIMARY KEY").format(sql.Identifier(ID_COLUMN))]
    column_defs.extend(
        sql.SQL("{} {}").format(sql.Identifier(f.name), sql.SQL(f.type.sql_type))
        for f in table.fields
    )
    return sql.SQL("CREATE TABLE IF NOT EXISTS {} ({})").format(
        qualified(namespace, table.name), sql.SQL(", ").join(column_defs)
    )


def create_key_index(namespace: str, table: Table) -> sql.Composed:
    index_name = f"{table.name}_{table.key_field}_idx"
    return sql.SQL("CREATE INDEX IF NOT EXISTS {} ON {} ({})").format(
        sql.Identifier(index_name[:63]),
        qualified(namespace, table.name),
        column(table, table.key_field),
    )
