"""
Data shapes shared by the locator, the Blue Ocean client and the failure engine.

Coordinates are plain frozen dataclasses built only by ``jk.locator``.
Server responses are pydantic models so that a response with the wrong shape
fails loudly at the boundary instead of deep inside the traversal.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

BuildResult = Literal["SUCCESS", "FAILURE", "UNSTABLE", "ABORTED", "NOT_BUILT", "UNKNOWN"]
BuildState = Literal["FINISHED", "RUNNING", "QUEUED", "PAUSED", "SKIPPED", "NOT_BUILT"]


# ---------------------------------------------------------------------------
# Coordinates
# ---------------------------------------------------------------------------


@dataclass(frozen=True, order=True)
class PipelineCoordinate:
    """A validated ``pipelines/<seg>/...`` path plus a build number."""

    path: str
    build_number: int

    @property
    def key(self) -> str:
        return f"{self.path}/{self.build_number}"

    @property
    def segments(self) -> list[str]:
        return self.path.split("/")[1:]

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True, order=True)
class NodeCoordinate:
    coordinate: PipelineCoordinate
    node_id: str


@dataclass(frozen=True, order=True)
class JobCoordinate:
    path: str

    @property
    def segments(self) -> list[str]:
        return self.path.split("/")[1:]

    def __str__(self) -> str:
        return self.path


# ---------------------------------------------------------------------------
# Blue Ocean responses
# ---------------------------------------------------------------------------


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class ActionLink(_ApiModel):
    href: str


class Action(_ApiModel):
    link: ActionLink | None = None


class StepRecord(_ApiModel):
    """One node (stage or step) of a build's execution graph."""

    id: str
    display_name: str = Field(alias="displayName")
    result: BuildResult | None = None
    state: BuildState | None = None
    start_time: str | None = Field(default=None, alias="startTime")
    duration_ms: float | None = Field(default=None, alias="durationInMillis")
    actions: list[Action] = Field(default_factory=list)

    @property
    def links(self) -> list[str]:
        """Every outbound ``href`` in the order the server listed them."""
        return [a.link.href for a in self.actions if a.link is not None and a.link.href]


class _SelfLink(_ApiModel):
    href: str


class _Links(_ApiModel):
    self_link: _SelfLink = Field(alias="self")


class ChangeSetEntry(_ApiModel):
    commit_id: str = Field(alias="commitId")
    msg: str = ""


class Cause(_ApiModel):
    short_description: str = Field(alias="shortDescription")


class BuildSummary(_ApiModel):
    """One entry of the ``runs/`` list for a pipeline."""

    id: str
    result: BuildResult | None = None
    state: BuildState | None = None
    start_time: str | None = Field(default=None, alias="startTime")
    duration_ms: float | None = Field(default=None, alias="durationInMillis")
    run_summary: str | None = Field(default=None, alias="runSummary")
    links: _Links = Field(alias="_links")
    change_set: list[ChangeSetEntry] = Field(default_factory=list, alias="changeSet")
    causes: list[Cause] = Field(default_factory=list)

    @property
    def self_href(self) -> str:
        return self.links.self_link.href


# ---------------------------------------------------------------------------
# Failure aggregation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FailureRecord:
    pipeline_path: str
    build_number: int
    node_id: str
    display_name: str
    result: str
    url: str
    console_output: str | None = None

    @property
    def build_key(self) -> str:
        return f"{self.pipeline_path}/{self.build_number}"

    def to_dict(self) -> dict:
        """JSON-ready dict using the Blue Ocean style camelCase keys."""
        data = {
            "pipeline": self.pipeline_path,
            "buildNumber": self.build_number,
            "nodeId": self.node_id,
            "displayName": self.display_name,
            "result": self.result,
            "url": self.url,
        }
        if self.console_output is not None:
            data["consoleOutput"] = self.console_output
        return data

    def replace_console(self, console_output: str | None) -> FailureRecord:
        return replace(self, console_output=console_output)


class VisitedSet:
    """Build keys claimed during one recursive traversal.

    ``claim`` is the only mutator and performs check-and-insert under a single
    lock, so two branches racing for the same sub-build cannot both win.
    """

    def __init__(self):
        self._keys: set[str] = set()
        self._lock = threading.Lock()

    def claim(self, key: str) -> bool:
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
