"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
End-to-end pipeline: parse, merge, filter and submit.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from resultsync.client import TestFiestaClient
from resultsync.core.config import AppConfig
from resultsync.core.logging import get_logger, log_operation
from resultsync.custom_field_mapping import CustomFieldMapper
from resultsync.incremental import (
    FilterReport,
    IncrementalFilter,
    highest_orderable_id,
    parse_orderable_id,
)
from resultsync.models import SubmissionOutcome
from resultsync.normalizer import RunNormalizer
from resultsync.parsers import FileFailure, ResultFileParser
from resultsync.performance import PerformanceMonitor
from resultsync.retry import TimeoutExceededError
from resultsync.submission import (
    StrictModeAbort,
    SubmissionCancelledError,
    SubmissionListener,
    SubmissionOrchestrator,
)
from resultsync.sync_state import SyncStateStore


@dataclass
class PipelineResult:
    """Everything a caller needs to report on one pipeline run."""

    outcome: SubmissionOutcome
    filter_report: FilterReport
    parse_failures: list[FileFailure] = field(default_factory=list)
    documents_parsed: int = 0


def submit_results(
    data_path: str | Path,
    project_key: str,
    run_name: str,
    *,
    source: str | None = None,
    config: AppConfig | None = None,
    client: TestFiestaClient | None = None,
    listener: SubmissionListener | None = None,
    ignore_list: Iterable[str] | None = None,
    watermark: str | None = None,
    state_store: SyncStateStore | None = None,
    logger: logging.Logger | None = None,
) -> PipelineResult:
    """
    Parse every file matched by ``data_path`` and submit the results as one run.

    Args:
        data_path: File path or glob pattern
        project_key: Destination project key
        run_name: Name of the run to create
        source: Provenance tag; defaults to ``config.parser.default_source``
        config: Application configuration; defaults to ``AppConfig()``
        client: Remote client; built from ``config.service`` when omitted
        listener: Receives submission events
        ignore_list: Case ids to leave out
        watermark: Last id already submitted
        state_store: Persists accepted ids and the watermark between runs
        logger: Parent logger for every stage

    Returns:
        PipelineResult with the submission outcome, the files that failed to
        parse and what the incremental filter removed

    Raises:
        NoFilesMatchedError: ``data_path`` matched nothing
        NoDocumentsParsedError: No file could be parsed
        SubmissionError: Fatal submission failure
        ValueError: No client and no service configuration
    """
    config = config or AppConfig()
    parent = logger or logging.getLogger("resultsync")
    log = get_logger("pipeline", parent)
    source = source or config.parser.default_source

    owns_client = client is None
    if client is None:
        if config.service is None:
            raise ValueError("A service configuration is required when no client is given")
        monitor = PerformanceMonitor() if config.submission.enable_performance_monitoring else None
        client = TestFiestaClient(config.service, logger=get_logger("client", parent), monitor=monitor)

    try:
        with log_operation(
            log, "submit_results", context={"project": project_key, "run": run_name, "source": source}
        ):
            parser = ResultFileParser(
                max_workers=config.parser.max_workers,
                encoding=config.parser.encoding,
                logger=get_logger("parsers", parent),
            )
            report = parser.parse_path(data_path)

            mapper = CustomFieldMapper.from_config(config.mapping, logger=get_logger("mapping", parent))
            run = RunNormalizer(mapper, logger=get_logger("normalizer", parent)).merge(
                report.documents, run_name, project_key, source
            )

            ignored = set(ignore_list or ())
            if state_store is not None:
                ignored |= state_store.load_ignore_list(project_key)
                watermark = watermark or state_store.get_watermark(project_key, source)

            filter_report = IncrementalFilter(logger=get_logger("incremental", parent)).apply(
                run, ignored, watermark
            )

            orchestrator = SubmissionOrchestrator(
                client,
                config.submission,
                listener=listener,
                logger=get_logger("submission", parent),
            )
            try:
                outcome = orchestrator.submit(filter_report.run)
            except (StrictModeAbort, SubmissionCancelledError, TimeoutExceededError) as e:
                if state_store is not None and e.run_id is not None:
                    _record_state(
                        state_store, project_key, source, e.run_id, filter_report, e.accepted_ids, watermark
                    )
                raise

            if state_store is not None:
                _record_state(
                    state_store,
                    project_key,
                    source,
                    outcome.run_id,
                    filter_report,
                    orchestrator.accepted_ids,
                    watermark,
                )
    finally:
        if owns_client:
            client.close()

    return PipelineResult(
        outcome=outcome,
        filter_report=filter_report,
        parse_failures=report.failures,
        documents_parsed=len(report.documents),
    )


def _record_state(
    state_store: SyncStateStore,
    project_key: str,
    source: str,
    run_id: str,
    filter_report: FilterReport,
    accepted_ids: list[str],
    watermark: str | None,
) -> None:
    """
    Remember accepted ids and move the watermark forward.

    The watermark stops below the lowest id that was not accepted, so a later
    run still picks up every rejected or unsent case.
    """
    accepted = set(accepted_ids)
    state_store.record_submitted(project_key, run_id, [i for i in accepted_ids if i])

    pending = [case_id for case_id in filter_report.run.case_ids() if case_id not in accepted]
    lowest_pending = min(
        (parsed[1] for parsed in map(parse_orderable_id, pending) if parsed is not None), default=None
    )
    eligible = []
    for case_id in accepted:
        parsed = parse_orderable_id(case_id)
        if lowest_pending is None or (parsed is not None and parsed[1] < lowest_pending):
            eligible.append(case_id)

    candidate = highest_orderable_id(eligible)
    if candidate is None:
        return
    if watermark:
        candidate = highest_orderable_id([watermark, candidate])
    if candidate and candidate != watermark:
        state_store.save_watermark(project_key, source, candidate)
