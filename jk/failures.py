"""
Failure aggregation across a build and the sub-builds it triggered.

The engine talks to the server only through a *fetcher*: any object with

    fetch_step_list(coord: PipelineCoordinate) -> list[StepRecord]
    fetch_console_text(coord: PipelineCoordinate, node_id: str) -> str

that raises ``jk.errors.NotFoundError`` / ``AuthenticationError`` /
``NetworkError`` / ``ValidationError``.  ``BlueOceanClient`` is the real one;
tests pass an in-memory fake.

Recursive traversal, per build:
  1. Claim the build key in the traversal's VisitedSet; an already claimed
     build contributes nothing (this is what makes cycles terminate).
  2. Fetch the step list.
  3. Keep steps whose result is FAILURE, fetching console text if requested.
  4. Resolve every step link into a build coordinate; links that do not parse
     are not followed.  Duplicates are dropped, first-seen order kept.
  5. Recurse into each sub-build.  Any API error from a sub-build is logged.
     A sub-build whose step list cannot be fetched contributes nothing; one
     whose failed steps cannot be recorded still contributes the failures of
     its own sub-builds, since those may already be claimed.
  6. Return this build's failures, then each sub-build's, in link order.

Console fetches and sub-build recursions of one level run concurrently on a
thread pool and are joined before the level returns.  Errors on the root build
always propagate; when that happens the traversal is cancelled and in-flight
branches stop before their next request.  Below the root every branch runs to
completion.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import Callable, TypeVar

from jk.errors import (
    BuildNotFoundError,
    JkApiError,
    NodeNotFoundError,
    NotFoundError,
    TraversalCancelledError,
)
from jk.locator import build_node_human_url, try_resolve_build_locator
from jk.models import FailureRecord, PipelineCoordinate, StepRecord, VisitedSet

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MAX_WORKERS = 8
_FAILURE = "FAILURE"


# ---------------------------------------------------------------------------
# Single-build operations
# ---------------------------------------------------------------------------


def get_build_nodes(fetcher, coord: PipelineCoordinate) -> list[StepRecord]:
    """Fetch every step of a build.  A 404 becomes BuildNotFoundError."""
    try:
        return fetcher.fetch_step_list(coord)
    except NotFoundError as exc:
        raise BuildNotFoundError(coord.path, coord.build_number, exc.url) from exc


def get_failed_nodes(fetcher, coord: PipelineCoordinate) -> list[StepRecord]:
    return [s for s in get_build_nodes(fetcher, coord) if s.result == _FAILURE]


def get_node_console(fetcher, coord: PipelineCoordinate, node_id: str) -> str:
    """Fetch one step's console text.  A 404 becomes NodeNotFoundError."""
    try:
        return fetcher.fetch_console_text(coord, node_id)
    except NotFoundError as exc:
        raise NodeNotFoundError(coord.path, coord.build_number, node_id, exc.url) from exc


def discover_sub_builds(steps: list[StepRecord]) -> list[PipelineCoordinate]:
    """Build coordinates referenced by step links, deduplicated in link order."""
    seen: set[str] = set()
    found: list[PipelineCoordinate] = []
    for step in steps:
        for href in step.links:
            coord = try_resolve_build_locator(href)
            if coord is None:
                logger.debug("Not following link %s", href)
                continue
            if coord.key in seen:
                continue
            seen.add(coord.key)
            found.append(coord)
    return found


# ---------------------------------------------------------------------------
# Concurrency helper
# ---------------------------------------------------------------------------


def _run_all(tasks: list[Callable[[], T]]) -> list[T]:
    """Run independent tasks concurrently; results keep the task order.

    On the first exception, pending tasks are cancelled, running ones are
    abandoned (not waited for), and the exception is re-raised.
    """
    if not tasks:
        return []
    if len(tasks) == 1:
        return [tasks[0]()]

    executor = ThreadPoolExecutor(max_workers=min(_MAX_WORKERS, len(tasks)))
    try:
        futures = [executor.submit(task) for task in tasks]
        done, _ = wait(futures, return_when=FIRST_EXCEPTION)
        for future in futures:
            if future in done and future.exception() is not None:
                raise future.exception()
        return [future.result() for future in futures]
    except BaseException:
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    finally:
        executor.shutdown(wait=False)


def _settle_all(tasks: list[Callable[[], T]]) -> list[Future]:
    """Run independent tasks concurrently and wait for every one of them.

    Returns the finished futures in task order; exceptions stay on the futures.
    """
    if not tasks:
        return []
    executor = ThreadPoolExecutor(max_workers=min(_MAX_WORKERS, len(tasks)))
    try:
        futures = [executor.submit(task) for task in tasks]
        wait(futures)
        return futures
    finally:
        executor.shutdown(wait=False)


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------


class FailureTraversal:
    """State for one top-level failure report: visited builds and cancellation."""

    def __init__(self, fetcher, base_url: str, include_console: bool = False):
        self.fetcher = fetcher
        self.base_url = base_url
        self.include_console = include_console
        self.visited = VisitedSet()
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop all branches before their next request."""
        self._cancelled.set()

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise TraversalCancelledError("Failure traversal was cancelled")

    # -- per-build pieces ---------------------------------------------------

    def _steps(self, coord: PipelineCoordinate) -> list[StepRecord]:
        self._check_cancelled()
        return get_build_nodes(self.fetcher, coord)

    def _record(self, coord: PipelineCoordinate, step: StepRecord) -> FailureRecord:
        console = None
        if self.include_console:
            self._check_cancelled()
            console = get_node_console(self.fetcher, coord, step.id)
        return FailureRecord(
            pipeline_path=coord.path,
            build_number=coord.build_number,
            node_id=step.id,
            display_name=step.display_name,
            result=step.result,
            url=build_node_human_url(self.base_url, coord, step.id),
            console_output=console,
        )

    # -- entry points -------------------------------------------------------

    def report(self, coord: PipelineCoordinate) -> list[FailureRecord]:
        """Failures of ``coord`` only, no sub-builds."""
        try:
            steps = self._steps(coord)
            failed = [s for s in steps if s.result == _FAILURE]
            return _run_all([lambda s=s: self._record(coord, s) for s in failed])
        except BaseException:
            self.cancel()
            raise

    def report_recursive(self, coord: PipelineCoordinate) -> list[FailureRecord]:
        """Failures of ``coord`` and of every build reachable through its links."""
        try:
            return self._visit(coord, root=True)
        except BaseException:
            self.cancel()
            raise

    # -- recursion ----------------------------------------------------------

    def _visit(self, coord: PipelineCoordinate, root: bool = False) -> list[FailureRecord]:
        if not self.visited.claim(coord.key):
            logger.debug("Already visited %s", coord.key)
            return []

        steps = self._steps(coord)
        failed = [s for s in steps if s.result == _FAILURE]
        sub_builds = discover_sub_builds(steps)
        logger.debug(
            "%s: %d failed step(s), %d sub-build(s)", coord.key, len(failed), len(sub_builds),
        )

        record_tasks = [lambda s=s: [self._record(coord, s)] for s in failed]
        sub_tasks = [lambda c=c: self._visit_sub_build(c) for c in sub_builds]

        if root:
            results = _run_all(record_tasks + sub_tasks)
            return [record for group in results for record in group]

        # Sub-build visits may already have claimed builds that other branches
        # link to, so their results are kept even when this build's own
        # records cannot be produced.
        futures = _settle_all(record_tasks + sub_tasks)
        record_futures, sub_futures = futures[:len(record_tasks)], futures[len(record_tasks):]
        for future in futures:
            exc = future.exception()
            if exc is not None and not isinstance(exc, JkApiError):
                raise exc
        sub_records = [record for future in sub_futures for record in future.result()]

        errors = [f.exception() for f in record_futures if f.exception() is not None]
        if errors:
            logger.warning("Skipping failed steps of sub-build %s: %s", coord.key, errors[0].message)
            return sub_records
        return [record for future in record_futures for record in future.result()] + sub_records

    def _visit_sub_build(self, coord: PipelineCoordinate) -> list[FailureRecord]:
        try:
            return self._visit(coord)
        except JkApiError as exc:
            logger.warning("Skipping sub-build %s: %s", coord.key, exc.message)
            return []


def get_failure_report(fetcher, base_url: str, coord: PipelineCoordinate,
                       include_console: bool = False) -> list[FailureRecord]:
    """Failed steps of a single build, optionally with their console text."""
    return FailureTraversal(fetcher, base_url, include_console).report(coord)


def get_failure_report_recursive(fetcher, base_url: str, coord: PipelineCoordinate,
                                 include_console: bool = False) -> list[FailureRecord]:
    """Failed steps of a build and all sub-builds it links to, each build once."""
    return FailureTraversal(fetcher, base_url, include_console).report_recursive(coord)
