"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Normalizer module for merging parsed result documents into one canonical run.

It also owns the coercion rules shared with the parsers: durations become
integer milliseconds and source status vocabulary resolves to a ``CaseStatus``.
"""

import logging
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from resultsync.custom_field_mapping import CustomFieldMapper, get_default_field_mapper
from resultsync.external_ids import generate_case_id
from resultsync.models import CaseResult, CaseStatus, Run, RunDocument

logger = logging.getLogger("resultsync.normalizer")

STATUS_MAPPINGS: dict[str, CaseStatus] = {
    "passed": CaseStatus.PASSED,
    "pass": CaseStatus.PASSED,
    "ok": CaseStatus.PASSED,
    "success": CaseStatus.PASSED,
    "succeeded": CaseStatus.PASSED,
    "failed": CaseStatus.FAILED,
    "fail": CaseStatus.FAILED,
    "failure": CaseStatus.FAILED,
    "skipped": CaseStatus.SKIPPED,
    "skip": CaseStatus.SKIPPED,
    "pending": CaseStatus.SKIPPED,
    "ignored": CaseStatus.SKIPPED,
    "disabled": CaseStatus.SKIPPED,
    "notrun": CaseStatus.SKIPPED,
    "not_run": CaseStatus.SKIPPED,
    "error": CaseStatus.ERROR,
    "errored": CaseStatus.ERROR,
    "broken": CaseStatus.ERROR,
}


def coerce_status(value: Any, warnings: list[str] | None = None) -> CaseStatus:
    """
    Resolve a source status to its canonical value.

    Unknown or missing vocabulary resolves to ``CaseStatus.ERROR`` so the case
    is still submitted; a warning is recorded.
    """
    if isinstance(value, CaseStatus):
        return value
    key = str(value).strip().lower().replace(" ", "_") if value is not None else ""
    status = STATUS_MAPPINGS.get(key)
    if status is None:
        message = f"Unrecognized status {value!r}, recording the case as error"
        logger.warning(message)
        if warnings is not None:
            warnings.append(message)
        return CaseStatus.ERROR
    return status


def coerce_duration_ms(
    value: Any,
    unit: str = "s",
    warnings: list[str] | None = None,
    log: logging.Logger | None = None,
) -> int:
    """
    Convert a duration to whole milliseconds.

    Args:
        value: Duration as number or numeric string; ``None`` or ``""`` means 0
        unit: ``"s"`` for seconds (fractional allowed) or ``"ms"``
        warnings: Optional list collecting data-quality warnings
        log: Logger for the warning, defaults to this module's logger

    Returns:
        Milliseconds rounded half-up; negative or unparsable input gives 0
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return 0

    log = log or logger
    try:
        if isinstance(value, bool):
            raise InvalidOperation
        amount = Decimal(str(value).strip().replace(",", ""))
        if not amount.is_finite():
            raise InvalidOperation
    except (InvalidOperation, ValueError):
        message = f"Unparsable duration {value!r}, using 0"
        log.warning(message)
        if warnings is not None:
            warnings.append(message)
        return 0

    if amount < 0:
        message = f"Negative duration {value!r}, using 0"
        log.warning(message)
        if warnings is not None:
            warnings.append(message)
        return 0

    if unit == "s":
        amount = amount * 1000
    elif unit != "ms":
        raise ValueError(f"Unknown duration unit: {unit}")

    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class RunNormalizer:
    """
    Merges ``RunDocument`` objects into a single ``Run``.

    Cases keep their order: suites in document order, documents in the order
    given. Cases without a native id get one derived from suite and case name.
    """

    def __init__(
        self,
        field_mapper: CustomFieldMapper | None = None,
        logger: logging.Logger | None = None,
    ):
        self.field_mapper = field_mapper or get_default_field_mapper()
        self.logger = logger or logging.getLogger("resultsync.normalizer")

    def merge(
        self,
        documents: Iterable[RunDocument],
        name: str,
        project_key: str,
        source: str | None = None,
    ) -> Run:
        """
        Build the canonical run.

        Args:
            documents: Parsed documents, first file first
            name: Run name
            project_key: Destination project key
            source: Provenance tag; defaults to ``"junit-xml"``

        Returns:
            The merged run
        """
        case_results: list[CaseResult] = []
        seen_ids: dict[str, str] = {}
        document_count = 0

        for document in documents:
            document_count += 1
            for suite in document.suites:
                for case in suite.cases:
                    normalized = self._normalize_case(case, suite.name)
                    previous = seen_ids.get(normalized.external_id)
                    if previous is not None:
                        self.logger.warning(
                            f"Duplicate case id {normalized.external_id} for "
                            f"'{suite.name}::{case.name}' (first seen as '{previous}')"
                        )
                    else:
                        seen_ids[normalized.external_id] = f"{suite.name}::{case.name}"
                    case_results.append(normalized)

        self.logger.info(
            f"Merged {len(case_results)} cases from {document_count} documents into run '{name}'"
        )
        return Run(
            name=name,
            project_key=project_key,
            case_results=case_results,
            source=source or "junit-xml",
        )

    def _normalize_case(self, case: CaseResult, suite_name: str) -> CaseResult:
        suite_name = case.suite_name or suite_name
        external_id = case.external_id or generate_case_id(suite_name, case.name)
        custom_fields = self.field_mapper.map_custom_fields(case.custom_fields)
        return case.model_copy(
            update={
                "external_id": external_id,
                "suite_name": suite_name,
                "custom_fields": custom_fields,
            }
        )


def merge(
    documents: Iterable[RunDocument],
    name: str,
    project_key: str,
    source: str | None = None,
    field_mapper: CustomFieldMapper | None = None,
) -> Run:
    """Module-level shortcut for ``RunNormalizer(field_mapper).merge(...)``."""
    return RunNormalizer(field_mapper=field_mapper).merge(documents, name, project_key, source)
