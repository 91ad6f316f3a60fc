"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
ResultSync - test results to TestFiesta
Parses structured and JUnit XML test reports and submits them as TestFiesta runs
"""

__version__ = "0.1.0"

from resultsync.client import RemoteError, RemoteRejection, RemoteTransientError, TestFiestaClient
from resultsync.parsers import (
    DocumentValidationError,
    IngestError,
    NoDocumentsParsedError,
    NoFilesMatchedError,
    ParseError,
    UnsupportedFormatError,
)
from resultsync.pipeline import PipelineResult, submit_results
from resultsync.retry import OperationCancelledError, TimeoutExceededError
from resultsync.submission import (
    EventQueue,
    EventRecorder,
    RunCreationError,
    StrictModeAbort,
    SubmissionCancelledError,
    SubmissionError,
    SubmissionListener,
    SubmissionOrchestrator,
)

__all__ = [
    "DocumentValidationError",
    "EventQueue",
    "EventRecorder",
    "IngestError",
    "NoDocumentsParsedError",
    "NoFilesMatchedError",
    "OperationCancelledError",
    "ParseError",
    "PipelineResult",
    "RemoteError",
    "RemoteRejection",
    "RemoteTransientError",
    "RunCreationError",
    "StrictModeAbort",
    "SubmissionCancelledError",
    "SubmissionError",
    "SubmissionListener",
    "SubmissionOrchestrator",
    "TestFiestaClient",
    "TimeoutExceededError",
    "UnsupportedFormatError",
    "submit_results",
]
