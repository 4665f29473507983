# tests/conftest.py
import os
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from common.config_models import EditorSettings

TEST_NAMESPACE = "editor_test"


class ScriptedCursor:
    """
    Stand-in for a psycopg cursor.

    Every executed statement is rendered with `as_string()` and recorded
    together with its parameters. Results are scripted by statement
    fragment: the first registered response whose fragment occurs in the
    rendered statement answers it. Unmatched statements return no rows and
    a rowcount of 0.
    """

    def __init__(self):
        self.executed: List[Tuple[str, Tuple[Any, ...]]] = []
        self.executemany_calls: List[Tuple[str, List[Tuple[Any, ...]]]] = []
        self._responses: List[Dict[str, Any]] = []
        self._rows: List[Tuple[Any, ...]] = []
        self.rowcount = -1
        self.closed = False

    def respond(
        self,
        fragment: str,
        rows: Optional[Sequence[Tuple[Any, ...]]] = None,
        rowcount: Optional[int] = None,
        times: Optional[int] = None,
        error: Optional[Exception] = None,
    ) -> "ScriptedCursor":
        """Answer statements containing `fragment`, forever or `times` times."""
        self._responses.append(
            {
                "fragment": fragment,
                "rows": list(rows or []),
                "rowcount": rowcount,
                "times": times,
                "error": error,
            }
        )
        return self

    @staticmethod
    def _render(query: Any) -> str:
        if hasattr(query, "as_string"):
            return query.as_string(None)
        return str(query)

    def _answer(self, text: str) -> None:
        for response in self._responses:
            if response["fragment"] not in text:
                continue
            if response["times"] is not None:
                if response["times"] <= 0:
                    continue
                response["times"] -= 1
            if response["error"] is not None:
                raise response["error"]
            self._rows = list(response["rows"])
            self.rowcount = (
                response["rowcount"] if response["rowcount"] is not None else len(self._rows)
            )
            return
        self._rows = []
        self.rowcount = 0

    def execute(self, query: Any, params: Optional[Sequence[Any]] = None) -> None:
        text = self._render(query)
        self.executed.append((text, tuple(params) if params is not None else ()))
        self._answer(text)

    def executemany(self, query: Any, params_seq: Sequence[Sequence[Any]]) -> None:
        text = self._render(query)
        batch = [tuple(params) for params in params_seq]
        self.executemany_calls.append((text, batch))
        self._rows = []
        self.rowcount = len(batch)

    def fetchone(self) -> Optional[Tuple[Any, ...]]:
        return self._rows.pop(0) if self._rows else None

    def fetchall(self) -> List[Tuple[Any, ...]]:
        rows, self._rows = self._rows, []
        return rows

    def statements_containing(self, fragment: str) -> List[Tuple[str, Tuple[Any, ...]]]:
        return [entry for entry in self.executed if fragment in entry[0]]

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "ScriptedCursor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class ScriptedConnection:
    """Connection handing out one ScriptedCursor and counting transaction calls."""

    def __init__(self, cursor: Optional[ScriptedCursor] = None):
        self.script = cursor or ScriptedCursor()
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    def cursor(self) -> ScriptedCursor:
        return self.script

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def cursor() -> ScriptedCursor:
    """A fresh scripted cursor."""
    return ScriptedCursor()


@pytest.fixture
def connection(cursor) -> ScriptedConnection:
    """A scripted connection serving the `cursor` fixture."""
    return ScriptedConnection(cursor)


@pytest.fixture
def editor_settings() -> EditorSettings:
    """Settings pointing at the test namespace, with small insert batches."""
    return EditorSettings(namespace="public", insert_batch_size=2)


# --- Live PostgreSQL ---

class LiveDatabase:
    """A throwaway editor schema in the database named by GTFS_EDITOR_TEST_DSN."""

    def __init__(self, dsn: str, namespace: str):
        self.dsn = dsn
        self.namespace = namespace
        self.settings = EditorSettings(namespace=namespace, insert_batch_size=3)

    def connect(self):
        import psycopg

        return psycopg.connect(self.dsn, autocommit=False)

    def writer(self, table_name: str):
        from gtfs_editor.table_writer import TableWriter

        return TableWriter(table_name, self.connect(), self.settings)

    def rows(self, table_name: str, where: str = "", params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Rows of a table as dicts, ordered by id. `where` is trusted test SQL."""
        from psycopg import sql
        from psycopg.rows import dict_row

        query = sql.SQL("SELECT * FROM {}").format(sql.Identifier(self.namespace, table_name))
        if where:
            query = sql.SQL("{} WHERE {}").format(query, sql.SQL(where))
        query = sql.SQL("{} ORDER BY id").format(query)
        with self.connect() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, params)
                return cur.fetchall()


@pytest.fixture
def live_db():
    """
    Editor tables created in a fresh schema, dropped afterwards. Skipped
    unless GTFS_EDITOR_TEST_DSN points at a PostgreSQL database.
    """
    dsn = os.environ.get("GTFS_EDITOR_TEST_DSN")
    if not dsn:
        pytest.skip("GTFS_EDITOR_TEST_DSN is not set")

    from gtfs_editor.db_setup import create_editor_tables, drop_editor_schema

    database = LiveDatabase(dsn, f"{TEST_NAMESPACE}_{uuid.uuid4().hex[:8]}")
    with database.connect() as conn:
        create_editor_tables(conn, database.namespace)
    try:
        yield database
    finally:
        with database.connect() as conn:
            drop_editor_schema(conn, database.namespace)
