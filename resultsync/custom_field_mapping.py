"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Custom field mapping module for shaping free-form case fields for TestFiesta.

Keys listed in the mapping table are renamed and retyped; every other key
passes through unchanged.
"""

import logging
from datetime import date, datetime
from typing import Any

from dateutil import parser

from resultsync.core.config import FieldMappingRule, MappingConfig


class CustomFieldMapper:
    """
    Maps custom fields from parsed results to the destination schema.

    The mapper handles renames and type conversions. Conversion failures keep
    the original value and are logged; they never drop a field.
    """

    def __init__(
        self,
        field_mappings: dict[str, FieldMappingRule | dict[str, Any]] | None = None,
        logger: logging.Logger | None = None,
    ):
        """
        Initialize the custom field mapper.

        Args:
            field_mappings: Source field name to mapping rule. Plain dictionaries
                are validated into ``FieldMappingRule`` objects.
            logger: Logger for data-quality warnings
        """
        self.logger = logger or logging.getLogger("resultsync.custom_field_mapping")
        self.field_mappings: dict[str, FieldMappingRule] = {
            key: rule if isinstance(rule, FieldMappingRule) else FieldMappingRule(**rule)
            for key, rule in (field_mappings or {}).items()
        }

    @classmethod
    def from_config(
        cls, config: MappingConfig, logger: logging.Logger | None = None
    ) -> "CustomFieldMapper":
        return cls(config.custom_fields, logger=logger)

    def get_target_field_name(self, field_name: str) -> str:
        """
        Get the destination name for a source field.

        Args:
            field_name: The source field name

        Returns:
            The mapped name, or the source name when the field is not mapped
        """
        rule = self.field_mappings.get(field_name)
        if rule and rule.name:
            return rule.name
        return field_name

    def transform_field_value(self, field_name: str, value: Any) -> Any:
        """
        Convert a value to the type configured for ``field_name``.

        Args:
            field_name: The source field name
            value: The source value

        Returns:
            The converted value, or ``value`` unchanged if the field has no type
            rule or the conversion fails
        """
        rule = self.field_mappings.get(field_name)
        if rule is None or rule.type is None or value is None:
            return value

        try:
            if rule.type == "string":
                if isinstance(value, list):
                    return ", ".join(str(v) for v in value)
                return str(value)

            if rule.type == "number":
                if isinstance(value, bool):
                    return int(value)
                if isinstance(value, (int, float)):
                    return value
                number = float(str(value).strip())
                return int(number) if number.is_integer() else number

            if rule.type == "boolean":
                if isinstance(value, bool):
                    return value
                if isinstance(value, str):
                    return value.strip().lower() in ("true", "yes", "1", "on")
                return bool(value)

            if rule.type in ("date", "datetime"):
                return self._transform_date(value, rule.type)

            if rule.type == "list":
                if isinstance(value, list):
                    return [str(v) for v in value]
                if isinstance(value, str):
                    return [part.strip() for part in value.split(",") if part.strip()]
                return [str(value)]

        except (ValueError, TypeError, OverflowError) as e:
            self.logger.warning(
                f"Could not convert custom field '{field_name}' value {value!r} "
                f"to {rule.type}: {e}; keeping the original value"
            )
            return value

        return value

    def _transform_date(self, value: Any, field_type: str) -> str:
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, date):
            parsed = datetime(value.year, value.month, value.day)
        else:
            parsed = parser.parse(str(value))

        if field_type == "date":
            return parsed.date().isoformat()
        return parsed.isoformat()

    def map_custom_fields(self, custom_fields: dict[str, Any]) -> dict[str, Any]:
        """
        Rename and retype every field of a case.

        Args:
            custom_fields: Source custom fields

        Returns:
            A new dictionary in insertion order of the source
        """
        mapped: dict[str, Any] = {}
        for field_name, value in custom_fields.items():
            target_name = self.get_target_field_name(field_name)
            if target_name in mapped and target_name != field_name:
                self.logger.warning(
                    f"Custom field '{field_name}' maps onto '{target_name}' which is already set; "
                    "the later value wins"
                )
            mapped[target_name] = self.transform_field_value(field_name, value)
        return mapped


def get_default_field_mapper() -> CustomFieldMapper:
    """
    Get a mapper with no rules, which passes every field through.
    """
    return CustomFieldMapper()
