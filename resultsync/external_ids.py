"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Stable identifiers for cases and suites that carry no native id.

The same suite and case names always hash to the same id, so re-submitting
identical results is recognized downstream as the same case.
"""

import hashlib
import re

HASH_LENGTH = 16
CASE_PREFIX = "tc"
SUITE_PREFIX = "ts"


def _create_hash(components: list[str], prefix: str) -> str:
    composite_key = "::".join(components)
    digest = hashlib.sha256(composite_key.encode("utf-8")).hexdigest()[:HASH_LENGTH]
    return f"{prefix}_{digest}"


def generate_case_id(suite_name: str, case_name: str) -> str:
    """
    Derive the external id of a case from its suite and name.

    Args:
        suite_name: Name of the suite holding the case (may be empty)
        case_name: Name of the case

    Returns:
        An id of the form ``tc_<16 hex chars>``
    """
    return _create_hash([suite_name or "", case_name], CASE_PREFIX)


def generate_suite_id(suite_name: str, file: str | None = None) -> str:
    """Derive the external id of a suite, optionally scoped to its source file."""
    components = [suite_name]
    if file:
        components.append(file)
    return _create_hash(components, SUITE_PREFIX)


def is_derived_id(value: str) -> bool:
    """Whether ``value`` looks like an id produced by this module."""
    return validate_external_id(value, CASE_PREFIX) or validate_external_id(value, SUITE_PREFIX)


def validate_external_id(value: str, kind: str = CASE_PREFIX) -> bool:
    """Check that ``value`` has the ``<kind>_<hex>`` shape."""
    pattern = re.compile(rf"^{re.escape(kind)}_[a-f0-9]{{{HASH_LENGTH}}}$")
    return bool(pattern.match(value or ""))
