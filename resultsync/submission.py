"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Submission orchestrator: create a run, upload its results, finalize.

One orchestrator drives one submission at a time through the states below and
reports through a ``SubmissionListener``. Listener failures are logged and
never change the outcome of a submission.

    IDLE -> RUN_CREATING -> RUN_CREATED -> UPLOADING -> FINALIZING -> DONE

Any fatal error moves the submission to FAILED.
"""

import logging
import queue
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from resultsync.client import RemoteError, RemoteTransientError, TestFiestaClient
from resultsync.core.config import SubmissionConfig
from resultsync.models import (
    CaseResult,
    FailureRecord,
    RemoteRun,
    Run,
    SubmissionOutcome,
    SubmissionPhase,
    SubmissionProgress,
)
from resultsync.performance import PerformanceMonitor
from resultsync.retry import (
    Deadline,
    OperationCancelledError,
    RetryPolicy,
    TimeoutExceededError,
    call_with_retry,
)

logger = logging.getLogger("resultsync.submission")


class SubmissionState(str, Enum):
    IDLE = "idle"
    RUN_CREATING = "run_creating"
    RUN_CREATED = "run_created"
    UPLOADING = "uploading"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class SubmissionError(Exception):
    """Base class for fatal submission errors."""

    def __init__(self, message: str, run_id: str | None = None):
        self.run_id = run_id
        super().__init__(message)


class RunCreationError(SubmissionError):
    """The remote run could not be created; nothing was uploaded."""


class StrictModeAbort(SubmissionError):
    """Strict mode stopped at the first failed case."""

    def __init__(
        self,
        run_id: str,
        failure: FailureRecord,
        succeeded_count: int,
        accepted_ids: list[str] | None = None,
    ):
        self.failure = failure
        self.succeeded_count = succeeded_count
        self.accepted_ids = list(accepted_ids or [])
        super().__init__(
            f"Strict mode: case {failure.case_external_id} failed ({failure.reason}); "
            f"aborted after {succeeded_count} accepted cases",
            run_id=run_id,
        )


class SubmissionCancelledError(SubmissionError):
    """The caller cancelled the submission. A created run is left in place."""

    def __init__(
        self,
        run_id: str | None,
        succeeded_count: int = 0,
        accepted_ids: list[str] | None = None,
    ):
        self.succeeded_count = succeeded_count
        self.accepted_ids = list(accepted_ids or [])
        message = "Submission cancelled"
        if run_id is not None:
            message += f" (run {run_id} was created and is not rolled back)"
        super().__init__(message, run_id=run_id)


class SubmissionListener:
    """
    Receives submission events. Every hook is optional; the defaults do nothing.
    """

    def on_start(self, run: Run) -> None:
        pass

    def on_progress(self, progress: SubmissionProgress) -> None:
        pass

    def on_before_run_created(self, name: str) -> None:
        pass

    def on_after_run_created(self, remote_run: RemoteRun) -> None:
        pass

    def on_success(self, outcome: SubmissionOutcome) -> None:
        pass

    def on_error(self, error: Exception) -> None:
        pass


@dataclass
class SubmissionEvent:
    """One listener call, as captured by ``EventRecorder`` and ``EventQueue``."""

    kind: str
    payload: Any = None


class EventRecorder(SubmissionListener):
    """Collects every event in order."""

    def __init__(self):
        self.events: list[SubmissionEvent] = []

    def _record(self, kind: str, payload: Any) -> None:
        self.events.append(SubmissionEvent(kind, payload))

    def on_start(self, run: Run) -> None:
        self._record("start", run)

    def on_progress(self, progress: SubmissionProgress) -> None:
        self._record("progress", progress)

    def on_before_run_created(self, name: str) -> None:
        self._record("before_run_created", name)

    def on_after_run_created(self, remote_run: RemoteRun) -> None:
        self._record("after_run_created", remote_run)

    def on_success(self, outcome: SubmissionOutcome) -> None:
        self._record("success", outcome)

    def on_error(self, error: Exception) -> None:
        self._record("error", error)

    @property
    def progress(self) -> list[SubmissionProgress]:
        return [event.payload for event in self.events if event.kind == "progress"]

    def kinds(self) -> list[str]:
        return [event.kind for event in self.events]


class EventQueue(EventRecorder):
    """
    Pushes events onto a thread-safe queue for a consumer on another thread.

    ``iter_events`` ends after the terminal success or error event.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 0):
        super().__init__()
        self.queue: queue.Queue = queue.Queue(maxsize=maxsize)

    def _record(self, kind: str, payload: Any) -> None:
        super()._record(kind, payload)
        self.queue.put(SubmissionEvent(kind, payload))
        if kind in ("success", "error"):
            self.queue.put(self._CLOSED)

    def iter_events(self, timeout: float | None = None) -> Iterator[SubmissionEvent]:
        """
        Yield events until the submission ends.

        Raises:
            queue.Empty: No event arrived within ``timeout`` seconds
        """
        while True:
            event = self.queue.get(timeout=timeout)
            if event is self._CLOSED:
                return
            yield event


class SubmissionOrchestrator:
    """
    Submits a normalized run to TestFiesta.

    Cases are uploaded in batches of ``batch_size`` (all at once by default).
    Per-case failures are collected in the outcome; in strict mode each case
    is its own batch and the first failure aborts the submission.
    """

    def __init__(
        self,
        client: TestFiestaClient,
        config: SubmissionConfig | None = None,
        listener: SubmissionListener | None = None,
        logger: logging.Logger | None = None,
        monitor: PerformanceMonitor | None = None,
    ):
        self.client = client
        self.config = config or SubmissionConfig()
        self.listener = listener or SubmissionListener()
        self.logger = logger or logging.getLogger("resultsync.submission")
        self.monitor = monitor if monitor is not None else getattr(client, "monitor", None)
        self.policy = RetryPolicy.from_config(self.config)
        self.state = SubmissionState.IDLE
        self.run_id: str | None = None
        self.accepted_ids: list[str] = []
        self._cancel_event = threading.Event()
        self._lock = threading.Lock()

    def cancel(self) -> None:
        """
        Stop issuing remote calls and wake any retry sleep.

        Applies to the submission in progress; every ``submit()`` starts
        uncancelled.
        """
        self.logger.warning("Cancellation requested")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _transition(self, state: SubmissionState) -> None:
        self.logger.debug(f"Submission state {self.state.value} -> {state.value}")
        self.state = state

    def _notify(self, hook: str, *args: Any) -> None:
        method = getattr(self.listener, hook, None)
        if method is None:
            return
        try:
            method(*args)
        except Exception as e:
            self.logger.warning(f"Listener hook {hook} failed: {type(e).__name__}: {e}")

    def _emit(self, phase: SubmissionPhase, current: int, total: int, label: str) -> None:
        self._notify(
            "on_progress", SubmissionProgress(phase=phase, current=current, total=total, label=label)
        )

    def _fail(self, error: Exception) -> Exception:
        self._transition(SubmissionState.FAILED)
        self._notify("on_error", error)
        return error

    def submit(self, run: Run) -> SubmissionOutcome:
        """
        Submit ``run`` and wait for the outcome.

        Returns:
            SubmissionOutcome with per-case failures

        Raises:
            RunCreationError: The remote run could not be created
            StrictModeAbort: Strict mode and a case failed
            TimeoutExceededError: The overall deadline passed
            SubmissionCancelledError: ``cancel()`` was called
        """
        if not self._lock.acquire(blocking=False):
            raise SubmissionError("A submission is already in progress on this orchestrator")
        try:
            return self._submit(run)
        finally:
            self._lock.release()

    def _submit(self, run: Run) -> SubmissionOutcome:
        self.state = SubmissionState.IDLE
        self.run_id = None
        self.accepted_ids = []
        self._cancel_event.clear()
        deadline = Deadline(self.config.timeout, self._cancel_event)
        cases = run.case_results
        total = len(cases)

        self._notify("on_start", run)
        self._emit(SubmissionPhase.STARTING, 0, total, f"Submitting {total} results to {run.project_key}")

        remote_run = self._create_run(run, deadline)
        self.run_id = str(remote_run.uid)
        self._transition(SubmissionState.RUN_CREATED)
        self._notify("on_after_run_created", remote_run)

        self._transition(SubmissionState.UPLOADING)
        batch_size = 1 if self.config.strict_mode else (self.config.batch_size or max(total, 1))
        processed = 0
        errors: list[FailureRecord] = []

        for start in range(0, total, batch_size):
            batch = cases[start : start + batch_size]
            try:
                failures = self._submit_batch(run, remote_run.uid, batch, deadline)
            except OperationCancelledError:
                raise self._fail(
                    SubmissionCancelledError(self.run_id, len(self.accepted_ids), self.accepted_ids)
                ) from None
            except TimeoutExceededError as e:
                e.run_id = self.run_id
                e.accepted_ids = list(self.accepted_ids)
                raise self._fail(e)

            processed += len(batch)

            if failures and self.config.strict_mode:
                raise self._fail(
                    StrictModeAbort(self.run_id, failures[0], len(self.accepted_ids), self.accepted_ids)
                )
            errors.extend(failures)

            self._emit(
                SubmissionPhase.UPLOADING,
                processed,
                total,
                f"Uploaded {processed}/{total} results ({len(errors)} failed)",
            )

        self._transition(SubmissionState.FINALIZING)
        self._emit(SubmissionPhase.FINALIZING, processed, total, f"Finalizing run {self.run_id}")

        performance = None
        if self.config.enable_performance_monitoring and self.monitor is not None:
            performance = self.monitor.summary()

        outcome = SubmissionOutcome(
            run_id=self.run_id,
            succeeded_count=len(self.accepted_ids),
            failed_count=len(errors),
            errors=errors,
            performance=performance,
        )
        self._transition(SubmissionState.DONE)
        self.logger.info(
            f"Run {self.run_id}: {outcome.succeeded_count} succeeded, {outcome.failed_count} failed"
        )
        self._notify("on_success", outcome)
        return outcome

    def _create_run(self, run: Run, deadline: Deadline) -> RemoteRun:
        self._transition(SubmissionState.RUN_CREATING)
        self._notify("on_before_run_created", run.name)
        self._emit(
            SubmissionPhase.CREATING_RUN, 0, len(run.case_results), f"Creating run '{run.name}'"
        )
        try:
            return call_with_retry(
                lambda: self.client.create_run(run.project_key, run.name, case_uids=[], source=run.source),
                self.policy,
                deadline,
                self.logger,
                operation="create_run",
            )
        except OperationCancelledError:
            raise self._fail(SubmissionCancelledError(None)) from None
        except TimeoutExceededError as e:
            raise self._fail(e)
        except RemoteError as e:
            raise self._fail(RunCreationError(f"Could not create run '{run.name}': {e}")) from e

    def _submit_batch(
        self,
        run: Run,
        run_uid: str | int,
        batch: list[CaseResult],
        deadline: Deadline,
    ) -> list[FailureRecord]:
        """
        Upload one batch, resubmitting retriable failures.

        Whole-call transient errors and retriable per-case acks draw on the
        same attempt budget. Accepted ids are appended to ``accepted_ids`` as
        they are acknowledged. Returns the failures in batch order.
        """
        pending = list(range(len(batch)))
        failures: dict[int, FailureRecord] = {}

        for attempt in range(1, self.policy.attempts + 1):
            deadline.check()
            try:
                acks = self.client.submit_results(
                    run.project_key, run_uid, [batch[i] for i in pending], source=run.source
                )
            except RemoteTransientError as e:
                if attempt >= self.policy.attempts:
                    self.logger.error(f"Giving up on {len(pending)} results after {attempt} attempts: {e}")
                    for i in pending:
                        failures[i] = FailureRecord(
                            case_external_id=batch[i].external_id, reason=str(e), retriable=True
                        )
                    break
                delay = self.policy.compute_delay(attempt, e.retry_after)
                self.logger.warning(
                    f"submit_results failed: {e}. Retrying in {delay:.2f}s "
                    f"(attempt {attempt}/{self.policy.attempts})"
                )
                deadline.sleep(delay)
                continue
            except RemoteError as e:
                for i in pending:
                    failures[i] = FailureRecord(
                        case_external_id=batch[i].external_id, reason=str(e), retriable=False
                    )
                break

            retry: list[int] = []
            for i, ack in zip(pending, acks):
                if ack.accepted:
                    self.accepted_ids.append(batch[i].external_id)
                    continue
                reason = ack.reason or "Rejected by service"
                if ack.retriable and attempt < self.policy.attempts:
                    retry.append(i)
                else:
                    failures[i] = FailureRecord(
                        case_external_id=batch[i].external_id, reason=reason, retriable=ack.retriable
                    )

            pending = retry
            if not pending:
                break

            delay = self.policy.compute_delay(attempt)
            self.logger.warning(
                f"{len(pending)} results were not accepted; resubmitting in {delay:.2f}s "
                f"(attempt {attempt}/{self.policy.attempts})"
            )
            deadline.sleep(delay)

        return [failures[i] for i in sorted(failures)]
