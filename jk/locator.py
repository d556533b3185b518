"""
Turn user-supplied build locators into validated coordinates, and back.

Accepted build locators, tried in this order (first match wins):

    https://jenkins.example.com/job/MyProject/job/main/123/
    https://jenkins.example.com/blue/.../pipelines/MyProject/main/runs/123
    pipelines/MyProject/main/runs/123
    pipelines/MyProject/main/123
    https://jenkins.example.com/blue/organizations/jenkins/pipelines/MyProject/main/detail/main/123/

Every path segment is percent-decoded (so URLs pasted from a browser work) and
then checked against an allow-list.  The resulting path ends up in request
URLs, so anything outside ``[A-Za-z0-9_.\\- ]`` or any ``.``/``..`` segment is
rejected here rather than handled downstream.
"""

from __future__ import annotations

import re
from typing import Callable
from urllib.parse import quote, unquote

from jk.errors import InvalidLocatorError
from jk.models import JobCoordinate, NodeCoordinate, PipelineCoordinate

API_ROOT = "/blue/rest/organizations/jenkins"
WEB_ROOT = "/blue/organizations/jenkins"
PIPELINES_TOKEN = "pipelines"

_SAFE_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_.\- ]+$")

_JOB_URL_RE = re.compile(r"/job/([^/]+(?:/job/[^/]+)*)/(\d+)(?:[/?#]|$)")
_PIPELINE_URL_RE = re.compile(r"/pipelines/([^/]+(?:/[^/]+)*?)/runs/(\d+)(?:[/?#]|$)")
_PIPELINE_RUNS_PATH_RE = re.compile(r"^pipelines/([^/]+(?:/[^/]+)*)/runs/(\d+)/?$")
_PIPELINE_PATH_RE = re.compile(r"^pipelines/([^/]+(?:/[^/]+)*)/(\d+)/?$")
_DETAIL_URL_RE = re.compile(r"/pipelines/([^/]+(?:/[^/]+)*?)/detail/[^/]+/(\d+)(?:[/?#]|$)")

_NODE_URL_RE = re.compile(
    r"/pipelines/([^/]+(?:/[^/]+)*?)/detail/[^/]+/(\d+)/pipeline/([^/?#]+)/?(?:[?#]|$)"
)

_JOB_URL_NO_BUILD_RE = re.compile(r"/job/([^/]+(?:/job/[^/]+)*)/?$")
_PIPELINE_URL_NO_BUILD_RE = re.compile(r"/pipelines/([^/]+(?:/[^/]+)*)/?$")
_PIPELINE_PATH_NO_BUILD_RE = re.compile(r"^pipelines/([^/]+(?:/[^/]+)*)/?$")

_UNSAFE_MESSAGE = (
    "Pipeline path contains invalid characters. Only alphanumeric, underscore, "
    "hyphen, dot, and space are allowed."
)

_BUILD_FORMATS_MESSAGE = """Invalid locator format. Expected one of:
  - Jenkins URL: https://jenkins.example.com/job/MyProject/123/
  - Pipeline URL: https://jenkins.example.com/.../pipelines/MyProject/runs/123
  - Pipeline path: pipelines/MyProject/123
  - Pipeline path with runs: pipelines/MyProject/runs/123"""

_JOB_FORMATS_MESSAGE = """Invalid job locator format. Expected one of:
  - Jenkins job URL: https://jenkins.example.com/job/MyProject/
  - Pipeline URL: https://jenkins.example.com/.../pipelines/MyProject/
  - Pipeline path: pipelines/MyProject"""

_NODE_FORMAT_MESSAGE = """Invalid node URL format. Expected Blue Ocean pipeline node URL like:
  https://jenkins.example.com/blue/.../pipelines/Project/Branch/detail/Branch/BuildNumber/pipeline/NodeId"""


# ---------------------------------------------------------------------------
# Segment handling
# ---------------------------------------------------------------------------


def _job_segments(raw: str) -> list[str]:
    """'Foo/job/Bar' -> ['Foo', 'Bar']"""
    return raw.split("/job/")


def _pipeline_segments(raw: str) -> list[str]:
    """Split a Blue Ocean path, dropping the nested ``pipelines`` tokens.

    API hrefs spell folders as 'A/pipelines/B/pipelines/C'; the canonical path
    is 'A/B/C'.
    """
    parts = raw.split("/")
    return [
        p for i, p in enumerate(parts)
        if not (0 < i < len(parts) - 1 and p == PIPELINES_TOKEN)
    ]


def _is_safe_segment(segment: str) -> bool:
    return bool(_SAFE_SEGMENT_RE.match(segment)) and segment not in (".", "..")


def _canonical_path(raw_segments: list[str], locator: str) -> str:
    """Percent-decode and validate each segment, then join under the root token."""
    segments = [unquote(seg) for seg in raw_segments]
    if not segments or not all(_is_safe_segment(seg) for seg in segments):
        raise InvalidLocatorError(_UNSAFE_MESSAGE, locator)
    return f"{PIPELINES_TOKEN}/" + "/".join(segments)


def _encode_path(path: str) -> str:
    return "/".join(quote(seg, safe="") for seg in path.split("/"))


# ---------------------------------------------------------------------------
# Format matchers
#
# Each matcher returns (raw segments, build number) or None.  Matchers never
# validate; validation happens once the winning format is known.
# ---------------------------------------------------------------------------

_Match = tuple[list[str], int]


def _match_job_url(text: str) -> _Match | None:
    m = _JOB_URL_RE.search(text)
    return (_job_segments(m.group(1)), int(m.group(2))) if m else None


def _match_pipeline_url(text: str) -> _Match | None:
    if text.startswith(f"{PIPELINES_TOKEN}/"):
        return None
    m = _PIPELINE_URL_RE.search(text)
    return (_pipeline_segments(m.group(1)), int(m.group(2))) if m else None


def _match_pipeline_runs_path(text: str) -> _Match | None:
    m = _PIPELINE_RUNS_PATH_RE.match(text)
    return (m.group(1).split("/"), int(m.group(2))) if m else None


def _match_pipeline_path(text: str) -> _Match | None:
    m = _PIPELINE_PATH_RE.match(text)
    return (m.group(1).split("/"), int(m.group(2))) if m else None


def _match_detail_url(text: str) -> _Match | None:
    m = _DETAIL_URL_RE.search(text)
    return (_pipeline_segments(m.group(1)), int(m.group(2))) if m else None


BUILD_MATCHERS: tuple[Callable[[str], _Match | None], ...] = (
    _match_job_url,
    _match_pipeline_url,
    _match_pipeline_runs_path,
    _match_pipeline_path,
    _match_detail_url,
)


def _match_job_url_no_build(text: str) -> list[str] | None:
    m = _JOB_URL_NO_BUILD_RE.search(text)
    return _job_segments(m.group(1)) if m else None


def _match_pipeline_url_no_build(text: str) -> list[str] | None:
    if text.startswith(f"{PIPELINES_TOKEN}/"):
        return None
    m = _PIPELINE_URL_NO_BUILD_RE.search(text)
    return _pipeline_segments(m.group(1)) if m else None


def _match_pipeline_path_no_build(text: str) -> list[str] | None:
    m = _PIPELINE_PATH_NO_BUILD_RE.match(text)
    return m.group(1).split("/") if m else None


JOB_MATCHERS: tuple[Callable[[str], list[str] | None], ...] = (
    _match_job_url_no_build,
    _match_pipeline_url_no_build,
    _match_pipeline_path_no_build,
)


# ---------------------------------------------------------------------------
# Public API: parsing
# ---------------------------------------------------------------------------


def resolve_build_locator(text: str) -> PipelineCoordinate:
    """Parse any supported build locator into a ``PipelineCoordinate``.

    Raises InvalidLocatorError when no format matches or when the matched
    path fails validation.
    """
    locator = text.strip()
    for matcher in BUILD_MATCHERS:
        found = matcher(locator)
        if found is not None:
            raw_segments, build_number = found
            return PipelineCoordinate(_canonical_path(raw_segments, text), build_number)
    raise InvalidLocatorError(_BUILD_FORMATS_MESSAGE, text)


def try_resolve_build_locator(text: str) -> PipelineCoordinate | None:
    """Like resolve_build_locator, but returns None instead of raising."""
    try:
        return resolve_build_locator(text)
    except InvalidLocatorError:
        return None


def resolve_job_locator(text: str) -> JobCoordinate:
    """Parse a job locator (no build number) into a ``JobCoordinate``."""
    locator = text.strip()
    for matcher in JOB_MATCHERS:
        raw_segments = matcher(locator)
        if raw_segments is not None:
            return JobCoordinate(_canonical_path(raw_segments, text))
    raise InvalidLocatorError(_JOB_FORMATS_MESSAGE, text)


def resolve_node_locator(url: str) -> NodeCoordinate:
    """Parse a Blue Ocean node URL.

    'https://jenkins/blue/organizations/jenkins/pipelines/MyProject/main/detail/main/154928/pipeline/534'
      -> NodeCoordinate(PipelineCoordinate('pipelines/MyProject/main', 154928), '534')
    """
    m = _NODE_URL_RE.search(url.strip())
    if not m:
        raise InvalidLocatorError(_NODE_FORMAT_MESSAGE, url)

    path = _canonical_path(_pipeline_segments(m.group(1)), url)
    node_id = unquote(m.group(3))
    if not _is_safe_segment(node_id):
        raise InvalidLocatorError(_UNSAFE_MESSAGE, url)
    return NodeCoordinate(PipelineCoordinate(path, int(m.group(2))), node_id)


# ---------------------------------------------------------------------------
# Public API: formatting
# ---------------------------------------------------------------------------


def build_nodes_request_path(coord: PipelineCoordinate) -> str:
    return f"{API_ROOT}/{_encode_path(coord.path)}/runs/{coord.build_number}/nodes/"


def build_console_request_path(coord: PipelineCoordinate, node_id: str) -> str:
    return (
        f"{API_ROOT}/{_encode_path(coord.path)}/runs/{coord.build_number}"
        f"/nodes/{quote(node_id, safe='')}/log/"
    )


def build_runs_request_path(job: JobCoordinate, limit: int) -> str:
    return f"{API_ROOT}/{_encode_path(job.path)}/runs/?limit={limit}"


def build_human_url(base_url: str, coord: PipelineCoordinate) -> str:
    """Blue Ocean detail page for a build; re-parseable by resolve_build_locator."""
    last_segment = coord.path.split("/")[-1]
    return (
        f"{base_url.rstrip('/')}{WEB_ROOT}/{_encode_path(coord.path)}"
        f"/detail/{quote(last_segment, safe='')}/{coord.build_number}/"
    )


def build_node_human_url(base_url: str, coord: PipelineCoordinate, node_id: str) -> str:
    return f"{build_human_url(base_url, coord)}pipeline/{quote(node_id, safe='')}"
