"""
Tests for the serialization module.
"""

import json
import unittest
import datetime
import uuid
from decimal import Decimal

from automation.frequency import CanonicalFrequency
from automation.models import ScheduleSpec, ScheduleState, ScheduleStatus
from serialization import to_json, from_json


class TestSerialization(unittest.TestCase):
    """Test cases for the serialization module."""

    def test_to_json_basic_types(self):
        """Test to_json with basic Python types."""
        data = {
            "string": "test",
            "int": 123,
            "float": 123.45,
            "bool": True,
            "none": None,
            "list": [1, 2, 3],
            "dict": {"a": 1, "b": 2}
        }

        json_str = to_json(data)
        decoded = json.loads(json_str)

        self.assertEqual(data, decoded)

    def test_to_json_special_types(self):
        """Datetimes, UUIDs, Decimals and enums are converted."""
        now = datetime.datetime(2024, 1, 1, 9, 30)
        id_obj = uuid.uuid4()

        decoded = json.loads(to_json({
            "when": now,
            "day": now.date(),
            "id": id_obj,
            "amount": Decimal("1.5"),
            "frequency": CanonicalFrequency.WEEKLY,
        }))

        self.assertEqual(decoded["when"], "2024-01-01T09:30:00")
        self.assertEqual(decoded["day"], "2024-01-01")
        self.assertEqual(decoded["id"], str(id_obj))
        self.assertEqual(decoded["amount"], 1.5)
        self.assertEqual(decoded["frequency"], "WEEKLY")

    def test_to_json_models(self):
        """Objects with to_dict and pydantic models are serialized."""
        spec = ScheduleSpec(frequency="daily", params={"hour": 9})
        decoded = json.loads(to_json({"spec": spec}))
        self.assertEqual(decoded["spec"]["frequency"], "DAILY")
        self.assertEqual(decoded["spec"]["params"]["hour"], 9)

    def test_to_json_unsupported_type(self):
        """Unknown objects raise TypeError."""
        with self.assertRaises(TypeError):
            to_json({"thing": object()})

    def test_from_json_with_class(self):
        """from_json builds instances through from_dict."""
        state = ScheduleState(
            next_run_at=datetime.datetime(2024, 1, 2, 9, 0),
            status=ScheduleStatus.PAUSED,
            run_count=3,
        )
        restored = from_json(to_json(state), ScheduleState)

        self.assertIsInstance(restored, ScheduleState)
        self.assertEqual(restored.next_run_at, state.next_run_at)
        self.assertEqual(restored.status, ScheduleStatus.PAUSED)
        self.assertEqual(restored.run_count, 3)

    def test_from_json_parse_dates(self):
        """ISO datetime strings are parsed when requested."""
        payload = '{"at": "2024-01-01T09:00:00Z", "label": "2024 plan"}'

        parsed = from_json(payload, parse_dates=True)
        self.assertEqual(parsed["at"], datetime.datetime(2024, 1, 1, 9, 0, tzinfo=datetime.timezone.utc))
        self.assertEqual(parsed["label"], "2024 plan")

        # Without parse_dates strings are kept
        self.assertEqual(from_json(payload)["at"], "2024-01-01T09:00:00Z")


if __name__ == "__main__":
    unittest.main()
