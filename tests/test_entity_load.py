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
from entity_load import check_column, load_owned_entities
from pawlog.entities import DOG
from pawlog.errors import BackendError, TransportError


class TestLoadOwnedEntities(unittest.IsolatedAsyncioTestCase):
    async def _seed(self, store) -> None:
        await store.insert("dogs", {"name": "Old", "user_id": "u1", "created_at": "2026-01-01T00:00:00Z"})
        await store.insert("dogs", {"name": "New", "user_id": "u1", "created_at": "2026-02-01T00:00:00Z"})
        await store.insert("dogs", {"name": "Other", "user_id": "u2", "created_at": "2026-03-01T00:00:00Z"})

    async def test_owner_rows_newest_first(self) -> None:
        store = MemoryRecordStore()
        await self._seed(store)
        prober = CapabilityProber()
        rows = await load_owned_entities(store, DOG, "u1", prober=prober)
        self.assertEqual([r["name"] for r in rows], ["New", "Old"])
        self.assertTrue(prober.is_known("dogs", "user_id"))
        self.assertEqual(store.calls[-1], ("select", "dogs", {"user_id": "u1"}))

    async def test_missing_owner_column_falls_back_to_all_rows(self) -> None:
        store = MemoryRecordStore({"dogs": {"name", "created_at"}})
        await store.insert("dogs", {"name": "Rex", "created_at": "2026-01-01T00:00:00Z"})
        await store.insert("dogs", {"name": "Bo", "created_at": "2026-02-01T00:00:00Z"})
        prober = CapabilityProber()
        rows = await load_owned_entities(store, DOG, "u1", prober=prober)
        self.assertEqual([r["name"] for r in rows], ["Bo", "Rex"])
        self.assertFalse(prober.has_column("dogs", "user_id"))
        self.assertEqual(store.call_count("select"), 2)

    async def test_known_missing_owner_column_skips_filtered_read(self) -> None:
        store = MemoryRecordStore({"dogs": {"name", "created_at"}})
        prober = CapabilityProber()
        prober.observe_error(
            "dogs", BackendError(code="42703", message='column "user_id" of relation "dogs" does not exist')
        )
        await load_owned_entities(store, DOG, "u1", prober=prober)
        self.assertEqual(store.call_count("select"), 1)
        self.assertEqual(store.calls[-1], ("select", "dogs", {}))

    async def test_missing_order_column_drops_ordering(self) -> None:
        store = MemoryRecordStore({"dogs": {"name", "user_id"}})
        await store.insert("dogs", {"name": "Rex", "user_id": "u1"})
        rows = await load_owned_entities(store, DOG, "u1")
        self.assertEqual([r["name"] for r in rows], ["Rex"])
        self.assertEqual(store.call_count("select"), 2)

    async def test_transport_failure_raises(self) -> None:
        store = MemoryRecordStore()
        store.fail_next("select", BackendError(code="TRANSPORT", message="timed out"))
        with self.assertRaises(TransportError):
            await load_owned_entities(store, DOG, "u1")
        self.assertEqual(store.call_count("select"), 1)


class TestCheckColumn(unittest.IsolatedAsyncioTestCase):
    async def test_present_column(self) -> None:
        store = MemoryRecordStore({"dogs": {"name", "photo_url"}})
        prober = CapabilityProber()
        self.assertTrue(await check_column(store, "dogs", "photo_url", prober))
        self.assertTrue(prober.is_known("dogs", "photo_url"))

    async def test_missing_column_recorded(self) -> None:
        store = MemoryRecordStore({"dogs": {"name"}})
        prober = CapabilityProber()
        self.assertFalse(await check_column(store, "dogs", "photo_url", prober))
        self.assertFalse(prober.has_column("dogs", "photo_url"))
        self.assertFalse(await check_column(store, "dogs", "photo_url", prober))
        self.assertEqual(store.call_count("select"), 1)

    async def test_unrelated_failure_is_unknown(self) -> None:
        store = MemoryRecordStore()
        store.fail_next("select", BackendError(code="TRANSPORT", message="timed out"))
        prober = CapabilityProber()
        self.assertIsNone(await check_column(store, "dogs", "photo_url", prober))
        self.assertFalse(prober.is_known("dogs", "photo_url"))


if __name__ == "__main__":
    unittest.main()
