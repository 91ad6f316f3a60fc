"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Unit tests for ignore-list and watermark filtering.
"""

import pytest

from resultsync.incremental import IncrementalFilter, highest_orderable_id, parse_orderable_id
from tests.fixtures.reports import make_run


@pytest.mark.unit
class TestIncrementalFilter:
    @pytest.fixture
    def incremental(self):
        return IncrementalFilter()

    def test_ignore_list_removes_exactly_listed_ids(self, incremental):
        run = make_run(5)

        filtered = incremental.filter(run, ignore_list=["TC-4", "TC-2", "TC-99"])

        assert filtered.case_ids() == ["TC-1", "TC-3", "TC-5"]
        assert run.case_ids() == ["TC-1", "TC-2", "TC-3", "TC-4", "TC-5"]

    def test_watermark_drops_cases_up_to_and_including_mark(self, incremental):
        report = incremental.apply(make_run(5, start=100), watermark="TC-102")

        assert report.watermark_applied
        assert report.run.case_ids() == ["TC-103", "TC-104"]
        assert report.watermark_dropped_count == 3
        assert report.warnings == []

    def test_watermark_uses_numeric_order(self, incremental):
        report = incremental.apply(make_run(3, start=9), watermark="TC-9")
        assert report.run.case_ids() == ["TC-10", "TC-11"]

    def test_plain_numeric_ids(self, incremental):
        report = incremental.apply(make_run(4, prefix="", start=40), watermark="41")
        assert report.run.case_ids() == ["42", "43"]

    def test_unordered_ids_leave_run_untouched_with_warning(self, incremental, caplog):
        run = make_run(3, prefix="tc_abc")
        with caplog.at_level("WARNING", logger="resultsync.incremental"):
            report = incremental.apply(run, watermark="TC-2")

        assert not report.watermark_applied
        assert report.run.case_ids() == run.case_ids()
        assert report.warnings
        assert "watermark not applied" in caplog.text

    def test_unorderable_watermark_is_reported(self, incremental):
        report = incremental.apply(make_run(2), watermark="latest")

        assert not report.watermark_applied
        assert len(report.run.case_results) == 2
        assert "not applied" in report.warnings[0]

    def test_ignore_and_watermark_combined(self, incremental):
        report = incremental.apply(make_run(6), ignore_list={"TC-5"}, watermark="TC-2")

        assert report.run.case_ids() == ["TC-3", "TC-4", "TC-6"]
        assert report.ignored_count == 1
        assert report.watermark_dropped_count == 2
        assert report.removed_count == 3


@pytest.mark.unit
class TestOrderableIds:
    def test_parse_orderable_id(self):
        assert parse_orderable_id("TC-101") == ("TC-", 101)
        assert parse_orderable_id("42") == ("", 42)
        assert parse_orderable_id("TC2-5") is None
        assert parse_orderable_id("") is None

    def test_highest_orderable_id(self):
        assert highest_orderable_id(["TC-9", "TC-12", "TC-3"]) == "TC-12"
        assert highest_orderable_id(["TC-9", "X-12"]) is None
        assert highest_orderable_id(["TC-9", "nope"]) is None
        assert highest_orderable_id([]) is None
