"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Client for the TestFiesta REST API.

Every failure is classified: connection problems, timeouts and the status
codes in ``TRANSIENT_STATUS_CODES`` (plus any 5xx) become
``RemoteTransientError`` and may be retried; any other 4xx becomes
``RemoteRejection`` and must not be retried. The client itself never retries;
callers wrap calls in ``resultsync.retry.call_with_retry``.
"""

import json
import logging
import time
import uuid
from collections.abc import Sequence
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Any, TypeVar
from urllib.parse import quote

import requests
from dateutil import parser as date_parser
from pydantic import BaseModel, ValidationError

from resultsync.core.config import ServiceConfig
from resultsync.models import (
    CaseAck,
    CaseResult,
    PageCursor,
    RemoteField,
    RemoteMilestone,
    RemoteProject,
    RemoteRun,
    RemoteTag,
    RemoteTemplate,
)
from resultsync.pagination import DEFAULT_LIMIT, build_page, validate_page_args
from resultsync.performance import PerformanceMonitor

logger = logging.getLogger("resultsync.client")

M = TypeVar("M", bound=BaseModel)

USER_AGENT = "resultsync"
API_PREFIX = "/v1/{handle}"
TRANSIENT_STATUS_CODES = frozenset({408, 413, 429, 500, 502, 503, 504})
SENSITIVE_FIELDS = ("password", "token", "secret", "apikey", "api_key", "auth", "credential")


class RemoteError(Exception):
    """Base class for failed calls to the remote service."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        method: str | None = None,
        endpoint: str | None = None,
        details: Any = None,
    ):
        self.status_code = status_code
        self.method = method
        self.endpoint = endpoint
        self.details = details
        super().__init__(message)


class RemoteTransientError(RemoteError):
    """A failure that may succeed if repeated."""

    def __init__(self, message: str, retry_after: float | None = None, **kwargs):
        self.retry_after = retry_after
        super().__init__(message, **kwargs)


class RemoteRejection(RemoteError):
    """The service refused the request; repeating it will not help."""


def parse_retry_after(value: str | None) -> float | None:
    """Read a ``Retry-After`` header given as seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = date_parser.parse(value)
    except (ValueError, OverflowError):
        logger.debug(f"Ignoring unparsable Retry-After header: {value!r}")
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def mask_sensitive_data(data: Any) -> Any:
    """Mask sensitive fields in data before logging."""
    if isinstance(data, list):
        return [mask_sensitive_data(item) for item in data]
    if not isinstance(data, dict):
        return data

    result = {}
    for key, value in data.items():
        if any(sensitive in str(key).lower() for sensitive in SENSITIVE_FIELDS):
            result[key] = "********"
        else:
            result[key] = mask_sensitive_data(value)
    return result


def _extract_items(body: Any) -> list[Any]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in ("items", "data", "results"):
            if isinstance(body.get(key), list):
                return body[key]
    return []


class TestFiestaClient:
    """Client for interacting with the TestFiesta API."""

    __test__ = False

    def __init__(
        self,
        config: ServiceConfig,
        session: requests.Session | None = None,
        logger: logging.Logger | None = None,
        monitor: PerformanceMonitor | None = None,
    ):
        """
        Initialize the client.

        Args:
            config: Service URL, organization handle and credentials
            session: Optional pre-built session (useful for connection reuse)
            logger: Logger for request tracing
            monitor: Optional performance monitor recording every call
        """
        self.config = config
        self.logger = logger or logging.getLogger("resultsync.client")
        self.monitor = monitor
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": USER_AGENT,
            }
        )
        if config.api_key:
            self.session.headers["Authorization"] = f"Bearer {config.api_key}"

        self.base_url = config.base_url + API_PREFIX.format(
            handle=quote(config.organization_handle, safe="")
        )
        self.request_count = 0
        self.error_count = 0

        self.logger.info(f"TestFiestaClient initialized: url={self.base_url}")

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
        operation: str | None = None,
    ) -> Any:
        """
        Make a request to the TestFiesta API.

        Returns:
            Decoded JSON body, or ``None`` for an empty response

        Raises:
            RemoteTransientError: Connection error, timeout or retriable status
            RemoteRejection: Any other 4xx status
            RemoteError: Unexpected transport failure or undecodable body
        """
        operation = operation or f"{method} {endpoint}"
        tracker = self.monitor.track(operation) if self.monitor else nullcontext()
        with tracker:
            return self._send(method, endpoint, params, json_data)

    def _send(self, method: str, endpoint: str, params: dict[str, Any] | None, json_data: Any) -> Any:
        request_id = f"req-{uuid.uuid4().hex[:12]}"
        url = f"{self.base_url}{endpoint}"
        self.request_count += 1
        request_number = self.request_count

        self.logger.info(f"API Request #{request_number}: {method} {endpoint} [{request_id}]")
        self.logger.debug(f"Parameters: {params}")
        if self.logger.isEnabledFor(logging.DEBUG) and json_data is not None:
            self.logger.debug(f"Request Body: {json.dumps(mask_sensitive_data(json_data), default=str)}")

        start_time = time.time()
        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                headers={"X-Request-ID": request_id},
                timeout=self.config.request_timeout,
            )
        except requests.exceptions.Timeout as e:
            self.error_count += 1
            self.logger.error(f"Timeout Error #{request_number}: {method} {endpoint} timed out")
            raise RemoteTransientError(
                f"Request timed out: {method} {endpoint}", method=method, endpoint=endpoint
            ) from e
        except requests.exceptions.ConnectionError as e:
            self.error_count += 1
            self.logger.error(f"Connection Error #{request_number}: could not connect to {url}")
            raise RemoteTransientError(
                f"Could not connect: {method} {endpoint}", method=method, endpoint=endpoint
            ) from e
        except requests.exceptions.RequestException as e:
            self.error_count += 1
            self.logger.error(f"Request Error #{request_number}: {e} - {method} {endpoint}")
            raise RemoteError(f"Request failed: {e}", method=method, endpoint=endpoint) from e

        duration = time.time() - start_time
        self.logger.info(
            f"Response #{request_number} received in {duration:.2f}s - "
            f"Status: {response.status_code} - {method} {endpoint}"
        )

        if response.status_code >= 400:
            self.error_count += 1
            raise self._classify_error(response, method, endpoint)

        if response.status_code == 204 or not response.content:
            return None

        try:
            body = response.json()
        except ValueError as e:
            self.error_count += 1
            self.logger.error(f"JSON Parsing Error #{request_number}: {e} - {method} {endpoint}")
            raise RemoteError(
                f"Invalid JSON in response to {method} {endpoint}",
                status_code=response.status_code,
                method=method,
                endpoint=endpoint,
            ) from e

        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"Response Body: {json.dumps(mask_sensitive_data(body), default=str)[:2000]}")
        return body

    def _classify_error(self, response: requests.Response, method: str, endpoint: str) -> RemoteError:
        status_code = response.status_code
        try:
            details = response.json()
        except ValueError:
            details = response.text

        reason = None
        if isinstance(details, dict):
            reason = details.get("message") or details.get("error")
        message = f"HTTP {status_code} for {method} {endpoint}"
        if reason:
            message += f": {reason}"

        if status_code in TRANSIENT_STATUS_CODES or status_code >= 500:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            self.logger.warning(f"{message} (transient, retry_after={retry_after})")
            return RemoteTransientError(
                message,
                retry_after=retry_after,
                status_code=status_code,
                method=method,
                endpoint=endpoint,
                details=details,
            )

        self.logger.error(f"{message} (rejected)")
        self.logger.debug(f"API Error Details: {mask_sensitive_data(details)}")
        return RemoteRejection(
            message, status_code=status_code, method=method, endpoint=endpoint, details=details
        )

    def _parse(self, model: type[M], body: Any) -> M:
        """
        Validate a response body against ``model``.

        Raises:
            RemoteError: The body does not match the expected resource shape
        """
        try:
            return model.model_validate(body)
        except ValidationError as e:
            self.error_count += 1
            self.logger.error(f"Malformed {model.__name__} in response: {e.error_count()} validation errors")
            raise RemoteError(
                f"Response is not a valid {model.__name__}", details=e.errors(include_url=False)
            ) from e

    @staticmethod
    def _segment(value: str | int) -> str:
        return quote(str(value), safe="")

    def _list(
        self,
        endpoint: str,
        model: type[M],
        limit: int,
        offset: int,
        operation: str,
    ) -> PageCursor[M]:
        validate_page_args(limit, offset)
        body = self._make_request(
            "GET", endpoint, params={"limit": limit, "offset": offset}, operation=operation
        )
        items = [self._parse(model, item) for item in _extract_items(body)]
        count = body.get("count") if isinstance(body, dict) else None
        return build_page(items, limit, offset, count=count)

    # Projects

    def list_projects(self, limit: int = DEFAULT_LIMIT, offset: int = 0) -> PageCursor[RemoteProject]:
        return self._list("/projects", RemoteProject, limit, offset, "list_projects")

    def create_project(
        self, name: str, key: str, custom_fields: dict[str, Any] | None = None
    ) -> RemoteProject:
        """Create a project with a unique key."""
        body = self._make_request(
            "POST",
            "/projects",
            json_data={"name": name, "key": key, "customFields": custom_fields or {}},
            operation="create_project",
        )
        return self._parse(RemoteProject, body)

    def delete_project(self, project_key: str) -> None:
        self._make_request(
            "POST", f"/delete_project/{self._segment(project_key)}", operation="delete_project"
        )

    # Runs and results

    def create_run(
        self,
        project_key: str,
        name: str,
        case_uids: Sequence[int | str] = (),
        source: str | None = None,
    ) -> RemoteRun:
        """
        Create a test run in a project.

        Args:
            project_key: Destination project key
            name: Run name
            case_uids: Existing case uids to attach to the run
            source: Provenance tag of the results

        Returns:
            The created run
        """
        payload: dict[str, Any] = {"name": name, "caseUids": list(case_uids)}
        if source:
            payload["source"] = source
        body = self._make_request(
            "POST",
            f"/projects/{self._segment(project_key)}/runs",
            json_data=payload,
            operation="create_run",
        )
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            body = body["data"]
        return self._parse(RemoteRun, body)

    def submit_results(
        self,
        project_key: str,
        run_uid: str | int,
        cases: Sequence[CaseResult],
        source: str | None = None,
    ) -> list[CaseAck]:
        """
        Submit case results to a run.

        Returns:
            One acknowledgement per submitted case, in submission order. Cases
            the service did not mention are treated as accepted. Acks sharing
            an id are matched to same-id cases in order. An ack that cannot be
            read rejects its case without retry.
        """
        body = self._make_request(
            "POST",
            f"/projects/{self._segment(project_key)}/runs/{self._segment(run_uid)}/results",
            json_data={"results": [case.to_payload(source) for case in cases]},
            operation="submit_results",
        )

        acks: dict[str, list[CaseAck]] = {}
        for item in _extract_items(body) or (body.get("acks", []) if isinstance(body, dict) else []):
            if not isinstance(item, dict):
                continue
            external_id = item.get("externalId") or item.get("external_id")
            if not external_id:
                continue
            fields = {k: v for k, v in item.items() if k not in ("externalId", "external_id")}
            try:
                ack = CaseAck.model_validate({**fields, "externalId": str(external_id)})
            except ValidationError as e:
                self.logger.warning(f"Malformed acknowledgement for {external_id}: {e.error_count()} errors")
                ack = CaseAck(
                    external_id=str(external_id),
                    accepted=False,
                    reason="Malformed acknowledgement from service",
                    retriable=False,
                )
            acks.setdefault(ack.external_id, []).append(ack)

        result = []
        for case in cases:
            matched = acks.get(case.external_id)
            result.append(matched.pop(0) if matched else CaseAck(external_id=case.external_id))
        return result

    # Custom fields

    def list_fields(
        self, project_key: str, limit: int = DEFAULT_LIMIT, offset: int = 0
    ) -> PageCursor[RemoteField]:
        return self._list(
            f"/projects/{self._segment(project_key)}/customFields", RemoteField, limit, offset, "list_fields"
        )

    def get_field(self, project_key: str, field_uid: str | int) -> RemoteField:
        body = self._make_request(
            "GET",
            f"/projects/{self._segment(project_key)}/customFields/{self._segment(field_uid)}",
            operation="get_field",
        )
        return self._parse(RemoteField, body)

    def create_field(self, project_key: str, data: dict[str, Any]) -> RemoteField:
        body = self._make_request(
            "POST",
            f"/projects/{self._segment(project_key)}/customFields",
            json_data=data,
            operation="create_field",
        )
        return self._parse(RemoteField, body)

    def update_field(self, project_key: str, field_uid: str | int, data: dict[str, Any]) -> RemoteField:
        body = self._make_request(
            "PATCH",
            f"/projects/{self._segment(project_key)}/customFields/{self._segment(field_uid)}",
            json_data=data,
            operation="update_field",
        )
        return self._parse(RemoteField, body)

    def delete_field(self, project_key: str, field_uid: str | int) -> None:
        self._make_request(
            "DELETE",
            f"/projects/{self._segment(project_key)}/customFields/{self._segment(field_uid)}",
            operation="delete_field",
        )

    # Tags (organization level)

    def list_tags(self, limit: int = DEFAULT_LIMIT, offset: int = 0) -> PageCursor[RemoteTag]:
        return self._list("/tags", RemoteTag, limit, offset, "list_tags")

    def get_tag(self, tag_uid: str | int) -> RemoteTag:
        body = self._make_request("GET", f"/tags/{self._segment(tag_uid)}", operation="get_tag")
        return self._parse(RemoteTag, body)

    def create_tag(self, data: dict[str, Any]) -> RemoteTag:
        body = self._make_request("POST", "/tags", json_data=data, operation="create_tag")
        return self._parse(RemoteTag, body)

    def update_tag(self, tag_uid: str | int, data: dict[str, Any]) -> RemoteTag:
        body = self._make_request(
            "PATCH", f"/tags/{self._segment(tag_uid)}", json_data=data, operation="update_tag"
        )
        return self._parse(RemoteTag, body)

    def delete_tag(self, tag_uid: str | int) -> None:
        self._make_request("DELETE", f"/tags/{self._segment(tag_uid)}", operation="delete_tag")

    # Templates

    def list_templates(
        self, project_key: str, limit: int = DEFAULT_LIMIT, offset: int = 0
    ) -> PageCursor[RemoteTemplate]:
        return self._list(
            f"/projects/{self._segment(project_key)}/templates", RemoteTemplate, limit, offset, "list_templates"
        )

    def get_template(self, project_key: str, template_uid: str | int) -> RemoteTemplate:
        body = self._make_request(
            "GET",
            f"/projects/{self._segment(project_key)}/templates/{self._segment(template_uid)}",
            operation="get_template",
        )
        return self._parse(RemoteTemplate, body)

    def create_template(self, project_key: str, data: dict[str, Any]) -> RemoteTemplate:
        body = self._make_request(
            "POST",
            f"/projects/{self._segment(project_key)}/templates",
            json_data=data,
            operation="create_template",
        )
        return self._parse(RemoteTemplate, body)

    def update_template(
        self, project_key: str, template_uid: str | int, data: dict[str, Any]
    ) -> RemoteTemplate:
        body = self._make_request(
            "PATCH",
            f"/projects/{self._segment(project_key)}/templates/{self._segment(template_uid)}",
            json_data=data,
            operation="update_template",
        )
        return self._parse(RemoteTemplate, body)

    def delete_template(self, project_key: str, template_uid: str | int) -> None:
        self._make_request(
            "DELETE",
            f"/projects/{self._segment(project_key)}/templates/{self._segment(template_uid)}",
            operation="delete_template",
        )

    # Milestones

    def list_milestones(
        self, project_key: str, limit: int = DEFAULT_LIMIT, offset: int = 0
    ) -> PageCursor[RemoteMilestone]:
        return self._list(
            f"/projects/{self._segment(project_key)}/milestones",
            RemoteMilestone,
            limit,
            offset,
            "list_milestones",
        )

    def get_milestone(self, project_key: str, milestone_uid: str | int) -> RemoteMilestone:
        body = self._make_request(
            "GET",
            f"/projects/{self._segment(project_key)}/milestones/{self._segment(milestone_uid)}",
            operation="get_milestone",
        )
        return self._parse(RemoteMilestone, body)

    def create_milestone(self, project_key: str, data: dict[str, Any]) -> RemoteMilestone:
        body = self._make_request(
            "POST",
            f"/projects/{self._segment(project_key)}/milestones",
            json_data=data,
            operation="create_milestone",
        )
        return self._parse(RemoteMilestone, body)

    def update_milestone(
        self, project_key: str, milestone_uid: str | int, data: dict[str, Any]
    ) -> RemoteMilestone:
        body = self._make_request(
            "PATCH",
            f"/projects/{self._segment(project_key)}/milestones/{self._segment(milestone_uid)}",
            json_data=data,
            operation="update_milestone",
        )
        return self._parse(RemoteMilestone, body)

    def delete_milestone(self, project_key: str, milestone_uid: str | int) -> None:
        self._make_request(
            "DELETE",
            f"/projects/{self._segment(project_key)}/milestones/{self._segment(milestone_uid)}",
            operation="delete_milestone",
        )

    def close(self) -> None:
        self.session.close()
