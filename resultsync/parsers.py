"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Result file parsers.

Reads structured result documents (JSON) and JUnit-style XML reports into
``RunDocument`` objects. A glob pattern may select many files; they are parsed
concurrently and every file is attempted before results are returned, so one
broken report never hides the others.
"""

import glob
import json
import logging
import os
import xml.etree.ElementTree as ET
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from resultsync.models import CaseResult, CaseStatus, RunDocument, SourceFormat, Suite
from resultsync.normalizer import coerce_duration_ms, coerce_status

# Higher wins when a testcase carries more than one marker
MARKER_PRECEDENCE: tuple[tuple[str, CaseStatus], ...] = (
    ("error", CaseStatus.ERROR),
    ("failure", CaseStatus.FAILED),
    ("skipped", CaseStatus.SKIPPED),
)

EXTERNAL_ID_PROPERTIES = ("externalId", "external_id", "test_id")


class IngestError(Exception):
    """Base class for errors raised while reading result files."""

    def __init__(self, path: str | Path | None, message: str):
        self.path = str(path) if path is not None else None
        self.message = message
        super().__init__(f"{self.path}: {message}" if self.path else message)


class UnsupportedFormatError(IngestError):
    """The file is neither a structured result document nor JUnit XML."""


class ParseError(IngestError):
    """The file is in a known format but could not be parsed."""

    def __init__(
        self,
        path: str | Path | None,
        message: str,
        line: int | None = None,
        column: int | None = None,
        offset: int | None = None,
    ):
        self.line = line
        self.column = column
        self.offset = offset
        location = ""
        if line is not None:
            location = f" (line {line}, column {column})" if column is not None else f" (line {line})"
        elif offset is not None:
            location = f" (byte offset {offset})"
        super().__init__(path, f"{message}{location}")


class DocumentValidationError(IngestError):
    """A structured document has a malformed shape and was rejected as a whole."""

    def __init__(self, path: str | Path | None, errors: list[dict[str, Any]]):
        self.errors = errors
        details = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
            for error in errors
        )
        super().__init__(path, f"Invalid structured document: {details}")


class NoFilesMatchedError(IngestError):
    """A path or glob pattern selected no files."""

    def __init__(self, pattern: str):
        self.pattern = pattern
        super().__init__(None, f"No files matched: {pattern}")


class NoDocumentsParsedError(IngestError):
    """Every selected file failed to parse."""

    def __init__(self, failures: list["FileFailure"]):
        self.failures = failures
        super().__init__(None, f"None of the {len(failures)} result files could be parsed")


@dataclass
class FileFailure:
    """A file that could not be turned into a RunDocument."""

    path: str
    error: IngestError


@dataclass
class ParseReport:
    """Documents parsed from a path or glob, plus the files that failed."""

    documents: list[RunDocument] = field(default_factory=list)
    failures: list[FileFailure] = field(default_factory=list)

    @property
    def case_count(self) -> int:
        return sum(document.case_count for document in self.documents)


class StructuredCaseInput(BaseModel):
    """One case of a structured document, as written by the producer."""

    name: str = Field(..., min_length=1)
    external_id: str | int | None = Field(
        None, validation_alias=AliasChoices("externalId", "external_id", "id")
    )
    classname: str | None = None
    status: Any = None
    duration_ms: Any = Field(None, validation_alias=AliasChoices("durationMs", "duration_ms"))
    duration: Any = Field(None, validation_alias=AliasChoices("duration", "time"))
    message: str | None = None
    stack_trace: str | None = Field(
        None, validation_alias=AliasChoices("stackTrace", "stack_trace", "trace")
    )
    custom_fields: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("customFields", "custom_fields")
    )

    model_config = ConfigDict(extra="ignore")


class StructuredSuiteInput(BaseModel):
    name: str = ""
    cases: list[StructuredCaseInput] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class StructuredDocumentInput(BaseModel):
    """Top-level shape: either ``suites`` or a flat ``results`` list."""

    name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    suites: list[StructuredSuiteInput] | None = None
    results: list[StructuredCaseInput] | None = None

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="after")
    def require_cases_container(self):
        if self.suites is None and self.results is None:
            raise ValueError("document needs a 'suites' or 'results' list")
        return self


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if isinstance(tag, str) else ""


def _custom_field_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return json.dumps(value, sort_keys=True, default=str)


class StructuredDocumentParser:
    """Parses the generic JSON result format."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("resultsync.parsers.structured")

    def parse(self, data: dict[str, Any], source_path: str | Path | None = None) -> RunDocument:
        """
        Validate and convert a decoded JSON document.

        Raises:
            DocumentValidationError: The shape is malformed anywhere in the document
        """
        try:
            document = StructuredDocumentInput.model_validate(data)
        except PydanticValidationError as e:
            raise DocumentValidationError(source_path, e.errors()) from e

        warnings: list[str] = []
        default_suite = document.name or (Path(source_path).stem if source_path else "results")
        suites: list[Suite] = []

        if document.suites is not None:
            for suite_input in document.suites:
                suite_name = suite_input.name or default_suite
                cases = [self._build_case(case, suite_name, warnings) for case in suite_input.cases]
                suites.append(Suite(name=suite_name, cases=cases))
        if document.results:
            cases = [self._build_case(case, default_suite, warnings) for case in document.results]
            suites.append(Suite(name=default_suite, cases=cases))

        raw_metadata = {key: str(value) for key, value in document.metadata.items()}
        if document.name:
            raw_metadata.setdefault("name", document.name)

        return RunDocument(
            source_format=SourceFormat.STRUCTURED,
            source_path=str(source_path) if source_path else None,
            suites=tuple(suites),
            raw_metadata=raw_metadata,
            warnings=tuple(warnings),
        )

    def _build_case(
        self, case: StructuredCaseInput, suite_name: str, warnings: list[str]
    ) -> CaseResult:
        if case.duration_ms is not None:
            duration_ms = coerce_duration_ms(case.duration_ms, "ms", warnings, self.logger)
        else:
            duration_ms = coerce_duration_ms(case.duration, "s", warnings, self.logger)

        if case.status is None:
            warnings.append(f"Case '{case.name}' has no status, recording it as error")
            status = CaseStatus.ERROR
        else:
            status = coerce_status(case.status, warnings)

        return CaseResult(
            external_id=str(case.external_id) if case.external_id is not None else None,
            name=case.name,
            suite_name=suite_name,
            classname=case.classname,
            status=status,
            duration_ms=duration_ms,
            message=case.message,
            stack_trace=case.stack_trace,
            custom_fields={k: _custom_field_value(v) for k, v in case.custom_fields.items()},
        )


class JUnitXmlParser:
    """
    Parses JUnit-style XML reports.

    Handles ``<testsuites>`` and ``<testsuite>`` roots, several and nested
    suites, and missing ``time`` attributes. A testcase with more than one
    status marker resolves as error > failure > skipped.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("resultsync.parsers.junit")

    def parse(self, content: bytes | str, source_path: str | Path | None = None) -> RunDocument:
        """
        Parse XML content into a document.

        Raises:
            ParseError: The content is not well-formed XML
            UnsupportedFormatError: The root element is not a JUnit suite
        """
        try:
            root = ET.fromstring(content)
        except ET.ParseError as e:
            line, column = getattr(e, "position", (None, None))
            raise ParseError(source_path, "Malformed XML", line=line, column=column) from e

        root_tag = _local_name(root.tag)
        if root_tag not in ("testsuites", "testsuite"):
            raise UnsupportedFormatError(
                source_path, f"Root element <{root_tag}> is not <testsuites> or <testsuite>"
            )

        warnings: list[str] = []
        suites: list[Suite] = []
        raw_metadata = {key: str(value) for key, value in root.attrib.items()}
        fallback_name = root.get("name") or (Path(source_path).stem if source_path else "root")

        if root_tag == "testsuite":
            self._visit_suite(root, "", suites, warnings)
        else:
            loose_cases = [
                self._build_case(child, fallback_name, index, warnings)
                for index, child in enumerate(root)
                if _local_name(child.tag) == "testcase"
            ]
            if loose_cases:
                suites.append(Suite(name=fallback_name, cases=loose_cases))
            for child in root:
                if _local_name(child.tag) == "testsuite":
                    self._visit_suite(child, "", suites, warnings)

        document = RunDocument(
            source_format=SourceFormat.JUNIT_XML,
            source_path=str(source_path) if source_path else None,
            suites=tuple(suites),
            raw_metadata=raw_metadata,
            warnings=tuple(warnings),
        )
        self.logger.debug(
            f"Parsed {document.case_count} testcases in {len(suites)} suites from {source_path}"
        )
        return document

    def _visit_suite(
        self, element: ET.Element, prefix: str, suites: list[Suite], warnings: list[str]
    ) -> None:
        name = element.get("name") or ""
        if prefix:
            full_name = f"{prefix} / {name}" if name else prefix
        else:
            full_name = name or "testsuite"

        cases = [
            self._build_case(child, full_name, index, warnings)
            for index, child in enumerate(element)
            if _local_name(child.tag) == "testcase"
        ]
        if cases:
            suites.append(Suite(name=full_name, cases=cases))

        for child in element:
            if _local_name(child.tag) == "testsuite":
                self._visit_suite(child, full_name, suites, warnings)

    def _build_case(
        self, element: ET.Element, suite_name: str, index: int, warnings: list[str]
    ) -> CaseResult:
        classname = element.get("classname")
        name = element.get("name")
        if not name:
            name = f"{classname or suite_name}#{index}"
            warnings.append(f"Testcase without a name in suite '{suite_name}', using '{name}'")

        markers: dict[str, ET.Element] = {}
        for child in element:
            tag = _local_name(child.tag)
            if tag in ("error", "failure", "skipped") and tag not in markers:
                markers[tag] = child

        status = CaseStatus.PASSED
        message = None
        stack_trace = None
        for tag, marker_status in MARKER_PRECEDENCE:
            marker = markers.get(tag)
            if marker is None:
                continue
            status = marker_status
            text = (marker.text or "").strip() or None
            message = marker.get("message") or marker.get("type")
            if tag == "skipped":
                message = message or text
            else:
                stack_trace = text
                message = message or (text.splitlines()[0] if text else None)
            break

        if len(markers) > 1:
            warnings.append(
                f"Testcase '{name}' carries markers {sorted(markers)}; resolved as {status.value}"
            )

        custom_fields = self._read_properties(element)
        external_id = element.get("id")
        for key in EXTERNAL_ID_PROPERTIES:
            if external_id:
                break
            value = custom_fields.pop(key, None)
            external_id = str(value) if value else None

        return CaseResult(
            external_id=external_id or None,
            name=name,
            suite_name=suite_name,
            classname=classname,
            status=status,
            duration_ms=coerce_duration_ms(element.get("time"), "s", warnings, self.logger),
            message=message,
            stack_trace=stack_trace,
            custom_fields=custom_fields,
        )

    def _read_properties(self, element: ET.Element) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        for container in element:
            if _local_name(container.tag) != "properties":
                continue
            for prop in container:
                if _local_name(prop.tag) != "property" or not prop.get("name"):
                    continue
                key = prop.get("name")
                value = prop.get("value")
                if value is None:
                    value = (prop.text or "").strip()
                if key in properties:
                    existing = properties[key]
                    properties[key] = (existing if isinstance(existing, list) else [existing]) + [value]
                else:
                    properties[key] = value
        return properties


def parse_file(
    path: str | Path,
    encoding: str = "utf-8",
    logger: logging.Logger | None = None,
) -> RunDocument:
    """
    Detect the format of one file and parse it.

    JSON objects with a ``suites`` or ``results`` key are structured documents;
    content starting with ``<`` is parsed as JUnit XML; anything else is given
    a last attempt as XML.

    Raises:
        ParseError: Unreadable, undecodable or malformed content
        DocumentValidationError: Structured document with a malformed shape
        UnsupportedFormatError: Neither format accepts the content
    """
    log = logger or logging.getLogger("resultsync.parsers")
    path = Path(path)

    try:
        raw = path.read_bytes()
    except OSError as e:
        raise ParseError(path, f"Cannot read file: {e.strerror or e}") from e

    try:
        text = raw.decode("utf-8-sig" if encoding.lower().replace("_", "-") == "utf-8" else encoding)
    except UnicodeDecodeError as e:
        raise ParseError(path, f"Cannot decode file as {encoding}", offset=e.start) from e

    stripped = text.lstrip()
    if not stripped:
        raise UnsupportedFormatError(path, "File is empty")

    if stripped[0] in "{[":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ParseError(path, f"Malformed JSON: {e.msg}", line=e.lineno, column=e.colno) from e
        if isinstance(data, dict) and ("suites" in data or "results" in data):
            log.debug(f"Detected structured result document: {path}")
            return StructuredDocumentParser(logger=log).parse(data, path)
        raise UnsupportedFormatError(
            path, "JSON content has no top-level 'suites' or 'results' key"
        )

    if stripped[0] == "<":
        log.debug(f"Detected XML report: {path}")
        return JUnitXmlParser(logger=log).parse(raw, path)

    try:
        return JUnitXmlParser(logger=log).parse(raw, path)
    except ParseError as e:
        raise UnsupportedFormatError(
            path, "Content is neither a structured result document nor JUnit XML"
        ) from e


def resolve_paths(data_path: str | Path) -> list[Path]:
    """
    Expand a file path or glob pattern.

    Raises:
        NoFilesMatchedError: Nothing matched
    """
    pattern = os.path.expanduser(str(data_path))
    candidate = Path(pattern)
    if candidate.is_file():
        return [candidate]

    matches = sorted({Path(p) for p in glob.glob(pattern, recursive=True) if Path(p).is_file()})
    if not matches:
        raise NoFilesMatchedError(str(data_path))
    return matches


class ResultFileParser:
    """
    Parses every file selected by a path or glob.

    Files are parsed on a bounded thread pool. Results come back in path order
    once every file has been attempted.
    """

    def __init__(
        self,
        max_workers: int = 4,
        encoding: str = "utf-8",
        logger: logging.Logger | None = None,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self.encoding = encoding
        self.logger = logger or logging.getLogger("resultsync.parsers")

    def parse_path(self, data_path: str | Path) -> ParseReport:
        """Resolve ``data_path`` and parse the matches."""
        paths = resolve_paths(data_path)
        self.logger.info(f"Found {len(paths)} result files for {data_path}")
        return self.parse_files(paths)

    def parse_files(self, paths: list[Path]) -> ParseReport:
        """
        Parse files concurrently.

        Raises:
            NoDocumentsParsedError: No file produced a document
        """
        results: list[RunDocument | FileFailure | None] = [None] * len(paths)

        if paths:
            workers = min(self.max_workers, len(paths))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="resultsync-parse") as executor:
                futures = {
                    executor.submit(parse_file, path, self.encoding, self.logger): index
                    for index, path in enumerate(paths)
                }
                for future in as_completed(futures):
                    index = futures[future]
                    try:
                        results[index] = future.result()
                    except IngestError as e:
                        self.logger.warning(f"Skipping {paths[index]}: {e.message}")
                        results[index] = FileFailure(path=str(paths[index]), error=e)

        report = ParseReport(
            documents=[r for r in results if isinstance(r, RunDocument)],
            failures=[r for r in results if isinstance(r, FileFailure)],
        )
        if not report.documents:
            raise NoDocumentsParsedError(report.failures)

        self.logger.info(
            f"Parsed {len(report.documents)} of {len(paths)} files "
            f"({report.case_count} cases, {len(report.failures)} failures)"
        )
        return report
