import os
import sys
import unittest
from datetime import date, datetime, timezone
from unittest import mock
from uuid import UUID


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

import psycopg2

import app.pg_store as pg_store
from pawlog.errors import BackendError


class FakeConn:
    pass


class TestPgRecordStore(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.calls = []
        conn = FakeConn()

        class _ConnCtx:
            def __enter__(self_inner):
                return conn

            def __exit__(self_inner, *exc):
                return False

        self.conn_patch = mock.patch.object(pg_store, "get_conn", lambda: _ConnCtx())
        self.conn_patch.start()

    def tearDown(self) -> None:
        self.conn_patch.stop()

    async def test_insert_plain_row(self) -> None:
        def fake_fetch_one(conn, query, params=None, query_name=None):
            self.calls.append((query_name, params))
            return {
                "id": UUID("00000000-0000-0000-0000-000000000001"),
                "name": "Rex",
                "birthday": date(2020, 5, 1),
                "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
            }

        with mock.patch.object(pg_store, "fetch_one", fake_fetch_one):
            row = await pg_store.PgRecordStore().insert("dogs", {"name": "Rex", "birthday": "2020-05-01"})
        self.assertEqual(row["id"], "00000000-0000-0000-0000-000000000001")
        self.assertEqual(row["birthday"], "2020-05-01")
        self.assertEqual(row["created_at"], "2026-01-01T00:00:00Z")
        self.assertEqual(self.calls, [("dogs.insert", ["Rex", "2020-05-01"])])

    async def test_update_params_end_with_id(self) -> None:
        def fake_fetch_one(conn, query, params=None, query_name=None):
            self.calls.append((query_name, params))
            return None

        with mock.patch.object(pg_store, "fetch_one", fake_fetch_one):
            row = await pg_store.PgRecordStore().update("dogs", "d1", {"photo_url": "https://cdn/x"})
        self.assertIsNone(row)
        self.assertEqual(self.calls, [("dogs.update", ["https://cdn/x", "d1"])])

    async def test_select_rows_filters_and_orders(self) -> None:
        def fake_fetch_all(conn, query, params=None, query_name=None):
            self.calls.append((query_name, params))
            return [{"id": UUID("00000000-0000-0000-0000-000000000002"), "birthday": date(2021, 2, 3)}]

        with mock.patch.object(pg_store, "fetch_all", fake_fetch_all):
            rows = await pg_store.PgRecordStore().select_rows(
                "dogs", {"user_id": "u1"}, order_by="created_at", descending=True, limit=10
            )
        self.assertEqual(rows, [{"id": "00000000-0000-0000-0000-000000000002", "birthday": "2021-02-03"}])
        self.assertEqual(self.calls, [("dogs.list", ["u1", 10])])

    async def test_select_rows_undefined_column_keeps_pgcode(self) -> None:
        class UndefinedColumn(psycopg2.Error):
            pgcode = "42703"
            pgerror = "ERROR:  column dogs.user_id does not exist"

        def fake_fetch_all(conn, query, params=None, query_name=None):
            raise UndefinedColumn()

        with mock.patch.object(pg_store, "fetch_all", fake_fetch_all):
            with self.assertRaises(BackendError) as ctx:
                await pg_store.PgRecordStore().select_rows("dogs", {"user_id": "u1"})
        self.assertEqual(ctx.exception.code, "42703")
        self.assertIn("user_id", ctx.exception.message)

    async def test_connection_failure_is_transport(self) -> None:
        def fake_fetch_one(conn, query, params=None, query_name=None):
            raise psycopg2.OperationalError("could not connect to server")

        with mock.patch.object(pg_store, "fetch_one", fake_fetch_one):
            with self.assertRaises(BackendError) as ctx:
                await pg_store.PgRecordStore().insert("dogs", {"name": "Rex"})
        self.assertEqual(ctx.exception.code, "TRANSPORT")


if __name__ == "__main__":
    unittest.main()
