"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Canonical models for parsed test results and for the TestFiesta API.

Parsed source files become ``RunDocument`` objects, the normalizer merges them
into a ``Run``, and the submission orchestrator reports progress with
``SubmissionProgress`` and finishes with a ``SubmissionOutcome``.
"""

from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

T = TypeVar("T")

CustomFieldValue = str | int | float | bool | None | list[str]


class SourceFormat(str, Enum):
    """Formats a result file can be read from."""

    STRUCTURED = "structured"
    JUNIT_XML = "junit-xml"


class CaseStatus(str, Enum):
    """Canonical status of a single test case."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"


class CaseResult(BaseModel):
    """Outcome of one test case."""

    external_id: str | None = Field(None, alias="externalId")
    name: str = Field(..., min_length=1)
    suite_name: str = Field("", alias="suite")
    classname: str | None = None
    status: CaseStatus
    duration_ms: int = Field(0, alias="durationMs", ge=0)
    message: str | None = None
    stack_trace: str | None = Field(None, alias="stackTrace")
    custom_fields: dict[str, CustomFieldValue] = Field(
        default_factory=dict, alias="customFields"
    )

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self, source: str | None = None) -> dict[str, Any]:
        """Serialize for the results endpoint."""
        payload = self.model_dump(by_alias=True, exclude_none=True, mode="json")
        if source:
            payload["source"] = source
        return payload


class Suite(BaseModel):
    """Cases grouped the way the source grouped them (class, file, ...)."""

    name: str
    cases: list[CaseResult] = Field(default_factory=list)


class RunDocument(BaseModel):
    """One parsed source file. Immutable once built."""

    source_format: SourceFormat
    source_path: str | None = None
    suites: tuple[Suite, ...] = ()
    raw_metadata: dict[str, str] = Field(default_factory=dict)
    warnings: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)

    @property
    def case_count(self) -> int:
        return sum(len(suite.cases) for suite in self.suites)


class Run(BaseModel):
    """The canonical aggregate submitted to the remote service."""

    name: str = Field(..., min_length=1)
    project_key: str = Field(..., min_length=1)
    case_results: list[CaseResult] = Field(default_factory=list)
    source: str = "junit-xml"

    def case_ids(self) -> list[str]:
        return [case.external_id for case in self.case_results if case.external_id]


class RemoteModel(BaseModel):
    """Base for resources returned by the service; unknown fields are kept."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class RemoteRun(RemoteModel):
    uid: int | str
    name: str


class RemoteProject(RemoteModel):
    uid: int | str
    name: str
    key: str | None = None


class RemoteField(RemoteModel):
    uid: int | str
    name: str
    type: str | None = None


class RemoteTag(RemoteModel):
    uid: int | str
    name: str
    color: str | None = None
    description: str | None = None


class RemoteTemplate(RemoteModel):
    uid: int | str
    name: str


class RemoteMilestone(RemoteModel):
    uid: int | str
    name: str
    start_date: str | None = Field(None, alias="startDate")
    due_at: str | None = Field(None, alias="dueAt")


class CaseAck(BaseModel):
    """Per-case acknowledgement from the results endpoint."""

    external_id: str = Field(..., alias="externalId")
    accepted: bool = True
    reason: str | None = None
    retriable: bool = False

    model_config = ConfigDict(populate_by_name=True)


class PageCursor(BaseModel, Generic[T]):
    """
    One page of a list-style call.

    ``next_offset`` is set only when the page came back full, which signals
    that more records may exist.
    """

    items: list[T] = Field(default_factory=list)
    count: int = 0
    next_offset: int | None = None

    @property
    def has_more(self) -> bool:
        return self.next_offset is not None


class SubmissionPhase(str, Enum):
    """Phases reported through progress events."""

    STARTING = "starting"
    CREATING_RUN = "creating-run"
    UPLOADING = "uploading"
    FINALIZING = "finalizing"


class SubmissionProgress(BaseModel):
    """Progress event. Emitted, never persisted."""

    phase: SubmissionPhase
    current: int = Field(0, ge=0)
    total: int = Field(0, ge=0)
    label: str = ""


class FailureRecord(BaseModel):
    """A case the remote service did not accept."""

    case_external_id: str
    reason: str
    retriable: bool = False


class SubmissionOutcome(BaseModel):
    """Terminal result of a submission."""

    run_id: str
    succeeded_count: int = 0
    failed_count: int = 0
    errors: list[FailureRecord] = Field(default_factory=list)
    performance: dict[str, Any] | None = None

    @field_validator("run_id", mode="before")
    @classmethod
    def stringify_run_id(cls, value):
        return str(value)

    @property
    def total(self) -> int:
        return self.succeeded_count + self.failed_count
