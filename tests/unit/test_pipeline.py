"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Unit tests for the end-to-end submit_results pipeline.
"""

from pathlib import Path

import pytest

from resultsync.core.config import AppConfig, SubmissionConfig
from resultsync.parsers import NoDocumentsParsedError, NoFilesMatchedError
from resultsync.pipeline import submit_results
from resultsync.submission import EventRecorder, StrictModeAbort
from resultsync.sync_state import SyncStateStore


@pytest.fixture
def app_config(fast_submission_config) -> AppConfig:
    return AppConfig(submission=fast_submission_config)


@pytest.fixture
def state_store(temp_db_url):
    store = SyncStateStore(temp_db_url)
    yield store
    store.close()


@pytest.mark.unit
class TestSubmitResults:
    def test_structured_document_end_to_end(self, structured_json_file, fake_client, app_config):
        recorder = EventRecorder()

        result = submit_results(
            structured_json_file,
            "PRJ",
            "nightly",
            source="api-tests",
            config=app_config,
            client=fake_client,
            listener=recorder,
        )

        assert result.documents_parsed == 1
        assert result.parse_failures == []
        assert result.outcome.succeeded_count == 3
        assert fake_client.attempted_ids() == ["TC-101", "TC-102", "TC-103"]
        assert fake_client.created_runs[0]["name"] == "nightly"
        assert fake_client.created_runs[0]["source"] == "api-tests"
        assert recorder.kinds()[-1] == "success"

    def test_junit_cases_get_derived_ids(self, junit_xml_file, fake_client, app_config):
        result = submit_results(junit_xml_file, "PRJ", "nightly", config=app_config, client=fake_client)

        attempted = fake_client.attempted_ids()
        assert result.outcome.succeeded_count == 4
        assert len(set(attempted)) == 4
        assert all(attempted)

    def test_ignore_list_and_watermark(self, structured_json_file, fake_client, app_config):
        result = submit_results(
            structured_json_file,
            "PRJ",
            "nightly",
            config=app_config,
            client=fake_client,
            ignore_list=["TC-103"],
            watermark="TC-101",
        )

        assert fake_client.attempted_ids() == ["TC-102"]
        assert result.filter_report.ignored_count == 1
        assert result.filter_report.watermark_dropped_count == 1
        assert result.outcome.total == 1

    def test_glob_reports_unparseable_files(self, write_report, structured_json_file, fake_client, app_config):
        write_report("broken.json", "{not json")

        result = submit_results(
            structured_json_file.parent / "*.json",
            "PRJ",
            "nightly",
            config=app_config,
            client=fake_client,
        )

        assert result.documents_parsed == 1
        assert [Path(failure.path).name for failure in result.parse_failures] == ["broken.json"]
        assert result.outcome.succeeded_count == 3

    def test_no_matching_files(self, temp_dir, fake_client, app_config):
        with pytest.raises(NoFilesMatchedError):
            submit_results(temp_dir / "*.xml", "PRJ", "nightly", config=app_config, client=fake_client)
        assert fake_client.created_runs == []

    def test_nothing_parsed(self, write_report, fake_client, app_config):
        path = write_report("only.xml", "<testsuite><testcase")

        with pytest.raises(NoDocumentsParsedError):
            submit_results(path, "PRJ", "nightly", config=app_config, client=fake_client)
        assert fake_client.created_runs == []

    def test_requires_client_or_service_config(self, structured_json_file, app_config):
        with pytest.raises(ValueError, match="service configuration"):
            submit_results(structured_json_file, "PRJ", "nightly", config=app_config)

    def test_state_store_skips_already_submitted_cases(
        self, structured_json_file, fake_client, app_config, state_store
    ):
        first = submit_results(
            structured_json_file,
            "PRJ",
            "nightly",
            source="api-tests",
            config=app_config,
            client=fake_client,
            state_store=state_store,
        )
        assert first.outcome.succeeded_count == 3
        assert state_store.load_ignore_list("PRJ") == {"TC-101", "TC-102", "TC-103"}
        assert state_store.get_watermark("PRJ", "api-tests") == "TC-103"

        second = submit_results(
            structured_json_file,
            "PRJ",
            "nightly-2",
            source="api-tests",
            config=app_config,
            client=fake_client,
            state_store=state_store,
        )

        assert second.outcome.total == 0
        assert second.filter_report.removed_count == 3
        assert fake_client.submit_calls == [["TC-101", "TC-102", "TC-103"]]

    def test_rejected_cases_are_not_recorded(
        self, structured_json_file, fake_client, app_config, state_store
    ):
        fake_client.ack_script["TC-103"] = ["reject"]

        result = submit_results(
            structured_json_file,
            "PRJ",
            "nightly",
            config=app_config,
            client=fake_client,
            state_store=state_store,
        )

        assert result.outcome.failed_count == 1
        assert state_store.load_ignore_list("PRJ") == {"TC-101", "TC-102"}
        assert state_store.get_watermark("PRJ", "junit-xml") == "TC-102"

    def test_strict_abort_records_cases_accepted_before_it(
        self, structured_json_file, fake_client, state_store
    ):
        config = AppConfig(
            submission=SubmissionConfig(
                strict_mode=True, retry_attempts=3, retry_delay=0.0, jitter=False, timeout=30.0
            )
        )
        fake_client.ack_script["TC-102"] = ["reject"]

        with pytest.raises(StrictModeAbort) as exc_info:
            submit_results(
                structured_json_file,
                "PRJ",
                "nightly",
                config=config,
                client=fake_client,
                state_store=state_store,
            )

        assert exc_info.value.accepted_ids == ["TC-101"]
        assert fake_client.attempted_ids() == ["TC-101", "TC-102"]
        assert state_store.load_ignore_list("PRJ") == {"TC-101"}
        assert state_store.get_watermark("PRJ", "junit-xml") == "TC-101"

    def test_watermark_stays_below_rejected_case(
        self, structured_json_file, fake_client, app_config, state_store
    ):
        fake_client.ack_script["TC-101"] = ["reject"]

        result = submit_results(
            structured_json_file,
            "PRJ",
            "nightly",
            config=app_config,
            client=fake_client,
            state_store=state_store,
        )

        assert result.outcome.succeeded_count == 2
        assert state_store.load_ignore_list("PRJ") == {"TC-102", "TC-103"}
        assert state_store.get_watermark("PRJ", "junit-xml") is None
