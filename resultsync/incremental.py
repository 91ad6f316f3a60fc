"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Incremental filtering of runs before submission.

Cases already submitted are removed through an ignore list. A watermark drops
every case at or before a known position, but only when the case ids carry an
order: ``<prefix><integer>`` with one shared prefix, such as ``TC-101`` or
``42``. Ids without that shape leave the run untouched and produce a warning.
"""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from resultsync.models import Run

logger = logging.getLogger("resultsync.incremental")

ORDERABLE_ID_PATTERN = re.compile(r"^(?P<prefix>\D*)(?P<number>\d+)$")


def parse_orderable_id(value: str | None) -> tuple[str, int] | None:
    """Split ``value`` into ``(prefix, number)``, or ``None`` if it has no order."""
    if not value:
        return None
    match = ORDERABLE_ID_PATTERN.match(value.strip())
    if not match:
        return None
    return match.group("prefix"), int(match.group("number"))


def highest_orderable_id(ids: Iterable[str]) -> str | None:
    """
    Get the highest id of a set that shares one ordering prefix.

    Returns ``None`` when any id is unorderable or the prefixes differ.
    """
    best: tuple[int, str] | None = None
    prefix: str | None = None
    for value in ids:
        parsed = parse_orderable_id(value)
        if parsed is None:
            return None
        if prefix is None:
            prefix = parsed[0]
        elif parsed[0] != prefix:
            return None
        if best is None or parsed[1] > best[0]:
            best = (parsed[1], value)
    return best[1] if best else None


@dataclass
class FilterReport:
    """Outcome of filtering one run."""

    run: Run
    ignored_count: int = 0
    watermark_dropped_count: int = 0
    watermark_applied: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def removed_count(self) -> int:
        return self.ignored_count + self.watermark_dropped_count


class IncrementalFilter:
    """Removes cases already known to the remote service."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("resultsync.incremental")

    def filter(
        self,
        run: Run,
        ignore_list: Iterable[str] | None = None,
        watermark: str | None = None,
    ) -> Run:
        """Return a copy of ``run`` without ignored cases or cases up to the watermark."""
        return self.apply(run, ignore_list, watermark).run

    def apply(
        self,
        run: Run,
        ignore_list: Iterable[str] | None = None,
        watermark: str | None = None,
    ) -> FilterReport:
        """
        Filter a run and report what was removed.

        Args:
            run: The normalized run
            ignore_list: Case ids to drop regardless of order
            watermark: Last id already submitted; applied only when orderable

        Returns:
            FilterReport with the filtered run
        """
        ignored = set(ignore_list or ())
        remaining = [case for case in run.case_results if case.external_id not in ignored]
        report = FilterReport(run=run, ignored_count=len(run.case_results) - len(remaining))

        if watermark:
            remaining = self._apply_watermark(remaining, watermark, report)

        report.run = run.model_copy(update={"case_results": remaining})
        if report.removed_count:
            self.logger.info(
                f"Filtered run '{run.name}': {report.ignored_count} ignored, "
                f"{report.watermark_dropped_count} at or before watermark, "
                f"{len(remaining)} remaining"
            )
        return report

    def _apply_watermark(self, cases: list, watermark: str, report: FilterReport) -> list:
        mark = parse_orderable_id(watermark)
        if mark is None:
            self._warn(report, f"Watermark '{watermark}' has no <prefix><integer> form; not applied")
            return cases

        prefix, position = mark
        for case in cases:
            parsed = parse_orderable_id(case.external_id)
            if parsed is None or parsed[0] != prefix:
                self._warn(
                    report,
                    f"Case id '{case.external_id}' is not ordered like watermark "
                    f"'{watermark}'; watermark not applied",
                )
                return cases

        kept = [case for case in cases if parse_orderable_id(case.external_id)[1] > position]
        report.watermark_applied = True
        report.watermark_dropped_count = len(cases) - len(kept)
        return kept

    def _warn(self, report: FilterReport, message: str) -> None:
        self.logger.warning(message)
        report.warnings.append(message)
