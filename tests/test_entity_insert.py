import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.stores import MemoryRecordStore
from capability_probe import CapabilityProber
from entity_insert import insert_entity
from pawlog.entities import DOG
from pawlog.errors import BackendError, ConstraintError, SchemaDriftError, TransportError


FIELDS = {"name": "Rex", "breed": "Beagle", "birthday": "2020-05-01", "created_at": "2026-01-01T00:00:00Z"}
ALL_COLUMNS = {"name", "breed", "birthday", "created_at", "user_id", "photo_url"}


class TestInsertEntity(unittest.IsolatedAsyncioTestCase):
    async def test_full_insert_includes_owner(self) -> None:
        store = MemoryRecordStore({"dogs": ALL_COLUMNS})
        row = await insert_entity(store, DOG, FIELDS, "u1")
        self.assertEqual(row["user_id"], "u1")
        self.assertTrue(row["id"])
        self.assertEqual(store.call_count("insert"), 1)

    async def test_missing_owner_column_retries_once_without_it(self) -> None:
        store = MemoryRecordStore({"dogs": ALL_COLUMNS - {"user_id"}})
        prober = CapabilityProber()
        row = await insert_entity(store, DOG, FIELDS, "u1", prober=prober)
        self.assertNotIn("user_id", row)
        self.assertEqual(store.call_count("insert"), 2)
        self.assertNotIn("user_id", store.calls[1][2])
        self.assertFalse(prober.has_column("dogs", "user_id"))

    async def test_second_drift_is_terminal(self) -> None:
        store = MemoryRecordStore({"dogs": {"name", "breed", "birthday"}})
        with self.assertRaises(SchemaDriftError):
            await insert_entity(store, DOG, FIELDS, "u1")
        self.assertEqual(store.call_count("insert"), 2)

    async def test_required_column_never_stripped(self) -> None:
        store = MemoryRecordStore({"dogs": ALL_COLUMNS - {"breed"}})
        with self.assertRaises(SchemaDriftError) as ctx:
            await insert_entity(store, DOG, FIELDS, "u1")
        self.assertEqual(ctx.exception.column, "breed")
        self.assertEqual(store.call_count("insert"), 1)

    async def test_transport_error_not_retried(self) -> None:
        store = MemoryRecordStore({"dogs": ALL_COLUMNS})
        store.fail_next("insert", BackendError(code="TRANSPORT", message="timed out"))
        with self.assertRaises(TransportError):
            await insert_entity(store, DOG, FIELDS, "u1")
        self.assertEqual(store.call_count("insert"), 1)

    async def test_constraint_error_surfaces(self) -> None:
        store = MemoryRecordStore({"dogs": ALL_COLUMNS})
        store.fail_next("insert", BackendError(code="23505", message="duplicate key value"))
        with self.assertRaises(ConstraintError) as ctx:
            await insert_entity(store, DOG, FIELDS, "u1")
        self.assertEqual(ctx.exception.message, "duplicate key value")


if __name__ == "__main__":
    unittest.main()
