import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from capability_probe import CapabilityProber
from pawlog.errors import BackendError


class TestCapabilityProber(unittest.TestCase):
    def test_unknown_column_assumed_present(self) -> None:
        prober = CapabilityProber()
        self.assertTrue(prober.has_column("dogs", "user_id"))
        self.assertFalse(prober.is_known("dogs", "user_id"))

    def test_error_marks_missing(self) -> None:
        prober = CapabilityProber()
        err = BackendError(code="42703", message='column "user_id" of relation "dogs" does not exist')
        self.assertEqual(prober.observe_error("dogs", err), "user_id")
        self.assertFalse(prober.has_column("dogs", "user_id"))

    def test_transport_error_not_recorded(self) -> None:
        prober = CapabilityProber()
        self.assertIsNone(prober.observe_error("dogs", BackendError(code="TRANSPORT", message="timed out")))
        self.assertIsNone(prober.observe_error("dogs", TimeoutError("timed out")))
        self.assertEqual(prober.snapshot(), {})

    def test_successful_read_marks_present(self) -> None:
        prober = CapabilityProber()
        prober.observe_error("dogs", BackendError(code="PGRST204", message="Could not find the 'photo_url' column of 'dogs' in the schema cache"))
        prober.observe_row("dogs", {"id": "d1", "photo_url": None})
        self.assertTrue(prober.has_column("dogs", "photo_url"))
        self.assertEqual(prober.snapshot(), {"dogs": {"id": True, "photo_url": True}})

    def test_forget_relation(self) -> None:
        prober = CapabilityProber()
        prober.observe_row("dogs", {"id": "d1"})
        prober.observe_row("users", {"id": "u1"})
        prober.forget("dogs")
        self.assertEqual(list(prober.snapshot().keys()), ["users"])


if __name__ == "__main__":
    unittest.main()
