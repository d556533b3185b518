"""
jk MCP Server

Exposes the jk build inspector as Model Context Protocol tools, so an AI
assistant can find failing steps across a build and its sub-builds and read
just the console output that matters, without flooding its context window.

Transport: Streamable HTTP by default (MCP_TRANSPORT=http, host 0.0.0.0, port 8000).
           Set MCP_TRANSPORT=stdio to use stdio instead (e.g. for Cursor/Claude Desktop).
Logs:      All application logs go to stderr to avoid corrupting the JSON-RPC stream.
"""

import logging
import os
import sys
import threading

from dotenv import load_dotenv
from fastmcp import FastMCP

from jk import config, failures
from jk.blueocean_api import BlueOceanClient
from jk.errors import (
    AuthenticationError,
    ConfigError,
    InvalidLocatorError,
    JkError,
    NetworkError,
    NotFoundError,
    ValidationError,
)
from jk.excerpt import ExcerptMode, apply_excerpt, validate_grep_pattern
from jk.formatters import format_builds_xml, format_failures_xml, format_steps_xml
from jk.locator import resolve_build_locator, resolve_job_locator, resolve_node_locator

load_dotenv()

# Route all library and application logs to stderr, never stdout.
logging.basicConfig(
    stream=sys.stderr,
    level=os.getenv("JK_LOG_LEVEL", "WARNING").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("jk-mcp")

_OUTPUT_CAP = 400
_CONSOLE_MODES = ("none", "tail", "grep", "smart", "full")
_MAX_TAIL_LINES = 2000

mcp = FastMCP(
    "jk Build Inspector",
    instructions=(
        "You are a Jenkins CI debugging assistant. "
        "Start with get_failures for any failing build: it walks the build and every "
        "sub-build it triggered and lists each failed step with its URL. "
        "Pass console='smart' to also get error lines plus the log tail for each failure. "
        "Use get_step_console to read one step's log, get_build_steps for the full step list, "
        "and list_recent_builds to discover build numbers for a job. "
        "Locators may be Jenkins or Blue Ocean URLs, or paths like pipelines/Project/main/123."
    ),
)

_client_lock = threading.Lock()
_client: BlueOceanClient | None = None


def _get_client() -> BlueOceanClient:
    """Create the Blue Ocean client on first use so the server starts without config."""
    global _client
    with _client_lock:
        if _client is None:
            _client = BlueOceanClient(config.load_settings())
        return _client


def _handle_error(exc: Exception, context: str) -> str:
    """Convert common exceptions into readable strings for the AI."""
    if isinstance(exc, InvalidLocatorError):
        return f"[{context}] {exc.message}"
    if isinstance(exc, AuthenticationError):
        return f"[{context}] Authentication failed. Check JENKINS_USER and JENKINS_TOKEN."
    if isinstance(exc, NotFoundError):
        return f"[{context}] {exc.message}. Verify the job path and build number."
    if isinstance(exc, ConfigError):
        return f"[{context}] Configuration problem: {exc.message}"
    if isinstance(exc, (NetworkError, ValidationError)):
        return f"[{context}] {exc.message}"
    if isinstance(exc, JkError):
        return f"[{context}] {exc.message}"
    logger.exception("Unexpected error in %s", context)
    return f"[{context}] Unexpected error: {exc}"


def _cap(text: str) -> str:
    lines = text.splitlines()
    if len(lines) <= _OUTPUT_CAP:
        return text
    return "\n".join(lines[:_OUTPUT_CAP]) + f"\n[Output truncated at {_OUTPUT_CAP} lines]"


def _console_mode(console: str, tail_lines: int, grep_pattern: str) -> ExcerptMode | str | None:
    """Translate tool arguments into an ExcerptMode, None (no console), or an error string."""
    if console not in _CONSOLE_MODES:
        return f"Unknown console mode '{console}'. Use one of: {', '.join(_CONSOLE_MODES)}."
    if console == "none":
        return None
    if console == "grep":
        if not grep_pattern:
            return "console='grep' needs a grep_pattern."
        problem = validate_grep_pattern(grep_pattern)
        if problem:
            return problem
        return ExcerptMode("grep", pattern=grep_pattern)
    if console == "tail":
        return ExcerptMode("tail", tail_lines=max(1, min(tail_lines, _MAX_TAIL_LINES)))
    return ExcerptMode(console)


# ---------------------------------------------------------------------------
# Failure Tools
# ---------------------------------------------------------------------------


@mcp.tool
def get_failures(
    locator: str,
    recursive: bool = True,
    console: str = "none",
    tail_lines: int = 200,
    grep_pattern: str = "",
) -> str:
    """List failed steps of a build and, by default, of every sub-build it
    triggered (each build visited once).  Returns XML grouped by build.

    Args:
        locator: Build URL, Blue Ocean URL, or pipelines/<path>/<number>.
        recursive: Follow sub-build links (default true).
        console: none | tail | grep | smart | full. smart = error lines + last 100 lines.
        tail_lines: Lines to keep when console='tail' (default 200).
        grep_pattern: Case-insensitive regex when console='grep'.
    """
    mode = _console_mode(console, tail_lines, grep_pattern)
    if isinstance(mode, str):
        return f"[get_failures] {mode}"

    try:
        coord = resolve_build_locator(locator)
        client = _get_client()
        report = failures.get_failure_report_recursive if recursive else failures.get_failure_report
        records = report(client, client.base_url, coord, include_console=mode is not None)
    except Exception as exc:
        return _handle_error(exc, "get_failures")

    if mode is not None:
        records = apply_excerpt(records, mode)
    if not records:
        scope = "or any of its sub-builds " if recursive else ""
        return f"No failed steps found in {coord} {scope}(the build may still be running or passed)."
    return _cap(format_failures_xml(records, mode))


# ---------------------------------------------------------------------------
# Build Tools
# ---------------------------------------------------------------------------


@mcp.tool
def get_build_steps(locator: str) -> str:
    """Show every step of a build with state, result and duration (XML).

    Args:
        locator: Build URL, Blue Ocean URL, or pipelines/<path>/<number>.
    """
    try:
        coord = resolve_build_locator(locator)
        steps = failures.get_build_nodes(_get_client(), coord)
    except Exception as exc:
        return _handle_error(exc, "get_build_steps")
    return _cap(format_steps_xml(steps))


@mcp.tool
def get_step_console(locator: str, node_id: str = "", tail_lines: int = 250) -> str:
    """Read the console output of one step (last tail_lines lines).

    Args:
        locator: Build locator plus node_id, or a Blue Ocean node URL
                 (.../detail/<branch>/<number>/pipeline/<nodeId>) with node_id empty.
        node_id: Step id from get_build_steps or get_failures.
        tail_lines: Lines to return from the end of the log (default 250).
    """
    try:
        if node_id:
            coord = resolve_build_locator(locator)
        else:
            node = resolve_node_locator(locator)
            coord, node_id = node.coordinate, node.node_id
        text = failures.get_node_console(_get_client(), coord, node_id)
    except Exception as exc:
        return _handle_error(exc, "get_step_console")

    lines = text.splitlines()
    keep = max(1, min(tail_lines, _OUTPUT_CAP))
    if len(lines) > keep:
        return f"[Showing last {keep} of {len(lines)} lines]\n" + "\n".join(lines[-keep:])
    return text or "(empty console output)"


@mcp.tool
def list_recent_builds(job_locator: str, limit: int = 10) -> str:
    """List recent builds of a job, newest first (XML).  Use to discover build numbers.

    Args:
        job_locator: Job URL or pipelines/<path> (no build number).
        limit: Number of builds (default 10, max 100).
    """
    try:
        job = resolve_job_locator(job_locator)
        builds = _get_client().fetch_runs(job, limit)
    except Exception as exc:
        return _handle_error(exc, "list_recent_builds")
    if not builds:
        return f"No builds found for {job}. The job may have never run."
    return _cap(format_builds_xml(builds))


def main() -> None:
    transport = os.getenv("MCP_TRANSPORT", "http")
    host = os.getenv("MCP_HOST", "0.0.0.0")
    port = int(os.getenv("MCP_PORT", "8000"))

    if transport == "stdio":
        mcp.run(transport="stdio", show_banner=False)
    else:
        print(
            f"jk MCP server starting\n"
            f"  Local:    http://127.0.0.1:{port}/mcp",
            file=sys.stderr,
        )
        mcp.run(transport=transport, host=host, port=port, show_banner=False)


if __name__ == "__main__":
    main()
