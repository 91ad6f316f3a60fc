"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Unit tests for the custom field mapping module.
"""

import json
import unittest
from datetime import date, datetime

import pytest

from resultsync.core.config import MappingConfig
from resultsync.custom_field_mapping import CustomFieldMapper, get_default_field_mapper


@pytest.mark.unit
class TestCustomFieldMapper(unittest.TestCase):
    """Test the CustomFieldMapper class."""

    def setUp(self):
        """Set up test fixtures."""
        self.mapper = CustomFieldMapper(
            {
                "prio": {"name": "Priority", "type": "number"},
                "automated": {"type": "boolean"},
                "released": {"name": "Release Date", "type": "date"},
                "seen": {"type": "datetime"},
                "labels": {"name": "Tags", "type": "list"},
                "build": {"type": "string"},
            }
        )

    def test_get_target_field_name(self):
        """Mapped fields are renamed, others keep their name."""
        self.assertEqual(self.mapper.get_target_field_name("prio"), "Priority")
        self.assertEqual(self.mapper.get_target_field_name("automated"), "automated")
        self.assertEqual(self.mapper.get_target_field_name("unknown"), "unknown")

    def test_transform_field_value(self):
        """Values are converted to the configured type."""
        self.assertEqual(self.mapper.transform_field_value("prio", "2"), 2)
        self.assertEqual(self.mapper.transform_field_value("prio", "2.5"), 2.5)
        self.assertEqual(self.mapper.transform_field_value("prio", True), 1)

        self.assertTrue(self.mapper.transform_field_value("automated", "Yes"))
        self.assertFalse(self.mapper.transform_field_value("automated", "off"))

        self.assertEqual(self.mapper.transform_field_value("released", "March 4, 2025"), "2025-03-04")
        self.assertEqual(self.mapper.transform_field_value("released", date(2025, 1, 2)), "2025-01-02")
        self.assertEqual(
            self.mapper.transform_field_value("seen", datetime(2025, 1, 2, 3, 4, 5)),
            "2025-01-02T03:04:05",
        )

        self.assertEqual(self.mapper.transform_field_value("labels", "a, b,,c"), ["a", "b", "c"])
        self.assertEqual(self.mapper.transform_field_value("build", ["x", "y"]), "x, y")
        self.assertEqual(self.mapper.transform_field_value("unknown", {"raw": 1}), {"raw": 1})

    def test_failed_conversion_keeps_value(self):
        """A value that cannot be converted passes through unchanged."""
        with self.assertLogs("resultsync.custom_field_mapping", level="WARNING"):
            self.assertEqual(self.mapper.transform_field_value("prio", "high"), "high")
        with self.assertLogs("resultsync.custom_field_mapping", level="WARNING"):
            self.assertEqual(self.mapper.transform_field_value("released", "not a date"), "not a date")

    def test_map_custom_fields(self):
        """Every field of a case is renamed and retyped, unknown keys pass through."""
        mapped = self.mapper.map_custom_fields({"prio": "1", "labels": ["smoke"], "team": "qa"})
        self.assertEqual(mapped, {"Priority": 1, "Tags": ["smoke"], "team": "qa"})

    def test_default_mapper_passes_everything_through(self):
        mapper = get_default_field_mapper()
        fields = {"a": "1", "b": ["x"], "c": None}
        self.assertEqual(mapper.map_custom_fields(fields), fields)

    def test_invalid_rule_type(self):
        with self.assertRaises(ValueError):
            CustomFieldMapper({"x": {"type": "matrix"}})


@pytest.mark.unit
def test_mapper_from_config_file(tmp_path):
    path = tmp_path / "mapping.json"
    path.write_text(json.dumps({"custom_fields": {"env": {"name": "Environment"}}}), encoding="utf-8")

    mapper = CustomFieldMapper.from_config(MappingConfig.from_file(path))

    assert mapper.map_custom_fields({"env": "staging"}) == {"Environment": "staging"}
