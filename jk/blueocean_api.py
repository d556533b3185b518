"""
Thin client for the Jenkins Blue Ocean REST API.

All methods raise typed ``jk.errors`` exceptions rather than returning error
values, so callers (the failure engine, the CLI, the MCP tools) decide how to
surface the failure:

  401/403              -> AuthenticationError
  404                  -> NotFoundError
  other HTTP errors    -> NetworkError (with status_code)
  connection/timeout   -> NetworkError (after bounded retries)
  wrong response shape -> ValidationError

Every request carries a timeout, so an unresponsive server can never hang a
caller indefinitely.
"""

from __future__ import annotations

import logging
import time

import requests
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from jk.config import Settings
from jk.errors import (
    AuthenticationError,
    NetworkError,
    NotFoundError,
    ValidationError,
)
from jk.locator import (
    build_console_request_path,
    build_nodes_request_path,
    build_runs_request_path,
)
from jk.models import BuildSummary, JobCoordinate, PipelineCoordinate, StepRecord

logger = logging.getLogger(__name__)

_MAX_LOG_BYTES = 10 * 1024 * 1024   # 10 MB
_MAX_RUNS = 100

_RETRYABLE_STATUSES = {429, 502, 503, 504}
_MAX_RETRIES = 2
_RETRY_DELAYS = (1, 3)  # seconds between retry 0→1 and 1→2

_STEP_LIST = TypeAdapter(list[StepRecord])
_RUN_LIST = TypeAdapter(list[BuildSummary])


class BlueOceanClient:
    """Read-only access to one Jenkins server.

    Implements the fetcher interface used by ``jk.failures``:
    ``fetch_step_list(coord)`` and ``fetch_console_text(coord, node_id)``.
    """

    def __init__(self, settings: Settings, session: requests.Session | None = None):
        self.settings = settings
        self.base_url = settings.jenkins_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.auth = settings.auth

        if not settings.verify_ssl:
            import urllib3
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    # -----------------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------------

    def _get(self, path: str, accept: str = "application/json",
             **kwargs) -> requests.Response:
        """HTTP GET with bounded retry for transient failures (429/502/503/504)."""
        url = f"{self.base_url}{path}"
        for attempt in range(_MAX_RETRIES + 1):
            try:
                response = self.session.get(
                    url,
                    headers={"Accept": accept},
                    timeout=self.settings.timeout,
                    verify=self.settings.verify_ssl,
                    **kwargs,
                )
            except requests.ConnectionError as exc:
                if attempt < _MAX_RETRIES:
                    logger.debug("Connection error for %s, retrying", url)
                    time.sleep(_RETRY_DELAYS[attempt])
                    continue
                raise NetworkError(
                    f"Cannot reach Jenkins at {self.base_url}. "
                    "Verify the server is running and JENKINS_URL is correct.",
                    url,
                ) from exc
            except requests.Timeout as exc:
                if attempt < _MAX_RETRIES:
                    logger.debug("Timeout for %s, retrying", url)
                    time.sleep(_RETRY_DELAYS[attempt])
                    continue
                raise NetworkError(
                    f"Jenkins did not respond within {self.settings.timeout} seconds ({url}).",
                    url,
                ) from exc

            status = response.status_code
            if status in _RETRYABLE_STATUSES and attempt < _MAX_RETRIES:
                logger.debug("Jenkins HTTP %s for %s, retrying", status, url)
                time.sleep(_RETRY_DELAYS[attempt])
                continue
            if status >= 400:
                logger.debug("Jenkins HTTP %s for %s", status, url)
                response.close()
                self._raise_for_status(status, url, response.reason)
            return response
        raise NetworkError(f"Exhausted retries for {url}", url)

    @staticmethod
    def _raise_for_status(status: int, url: str, reason: str | None) -> None:
        if status in (401, 403):
            raise AuthenticationError(
                "Authentication failed. Check your username and API token.", url,
            )
        if status == 404:
            raise NotFoundError(f"Not found (404): {url}", url)
        raise NetworkError(f"HTTP {status}: {reason or ''}".rstrip(), url, status)

    def _get_json(self, path: str):
        response = self._get(path)
        try:
            return response.json()
        except ValueError as exc:
            raise ValidationError(
                f"Failed to parse JSON response: {exc}", response.url,
            ) from exc

    def _get_text(self, path: str) -> str:
        """Stream a plain-text body, capping at 10 MB."""
        response = self._get(path, accept="text/plain", stream=True)
        if response.encoding is None:
            response.encoding = "utf-8"
        chunks: list[str] = []
        total = 0
        try:
            for chunk in response.iter_content(chunk_size=8192, decode_unicode=True):
                total += len(chunk)
                chunks.append(chunk)
                if total >= _MAX_LOG_BYTES:
                    chunks.append("\n[LOG TRUNCATED: exceeded 10 MB download limit]")
                    break
        except requests.RequestException as exc:
            raise NetworkError(f"Failed to read text response: {exc}", response.url) from exc
        finally:
            response.close()
        return "".join(chunks)

    # -----------------------------------------------------------------------
    # Fetcher interface
    # -----------------------------------------------------------------------

    def fetch_step_list(self, coord: PipelineCoordinate) -> list[StepRecord]:
        """Fetch and validate every node of a build."""
        path = build_nodes_request_path(coord)
        data = self._get_json(path)
        try:
            return _STEP_LIST.validate_python(data)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Failed to validate Jenkins API response: {exc}", f"{self.base_url}{path}",
            ) from exc

    def fetch_console_text(self, coord: PipelineCoordinate, node_id: str) -> str:
        return self._get_text(build_console_request_path(coord, node_id))

    def fetch_runs(self, job: JobCoordinate, limit: int = 10) -> list[BuildSummary]:
        """Fetch the most recent builds of a job, newest first as Jenkins returns them.

        Limit is clamped to 1.._MAX_RUNS.
        """
        limit = max(1, min(limit, _MAX_RUNS))
        path = build_runs_request_path(job, limit)
        data = self._get_json(path)
        try:
            return _RUN_LIST.validate_python(data)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Failed to validate Jenkins API response: {exc}", f"{self.base_url}{path}",
            ) from exc
