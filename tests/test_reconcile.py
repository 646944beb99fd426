import copy
import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from pawlog.outcome import Linked, Skipped, UploadedOnly
from pawlog.reconcile import reconcile


PERSISTED = {"id": "d1", "name": "Rex", "breed": "Beagle", "photo_url": None}


class TestReconcile(unittest.TestCase):
    def test_linked_sets_url(self) -> None:
        view = reconcile(PERSISTED, Linked(url="https://cdn/x.jpeg"))
        self.assertEqual(view["photo_url"], "https://cdn/x.jpeg")
        self.assertTrue(view["media_linked"])

    def test_uploaded_only_sets_url_unlinked(self) -> None:
        view = reconcile(PERSISTED, UploadedOnly(url="https://cdn/x.jpeg", reason="SCHEMA_DRIFT"))
        self.assertEqual(view["photo_url"], "https://cdn/x.jpeg")
        self.assertFalse(view["media_linked"])

    def test_skipped_unsets_url(self) -> None:
        view = reconcile(PERSISTED, Skipped(reason="NO_MEDIA"))
        self.assertNotIn("photo_url", view)
        self.assertFalse(view["media_linked"])

    def test_pure_and_deterministic(self) -> None:
        before = copy.deepcopy(PERSISTED)
        outcome = UploadedOnly(url="https://cdn/x.jpeg")
        first = reconcile(PERSISTED, outcome)
        second = reconcile(PERSISTED, outcome)
        self.assertEqual(first, second)
        self.assertIsNot(first, second)
        self.assertEqual(PERSISTED, before)

    def test_requires_id(self) -> None:
        with self.assertRaises(ValueError):
            reconcile({"name": "Rex"}, Skipped())


if __name__ == "__main__":
    unittest.main()
