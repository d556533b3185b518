"""
Render steps, builds and failure records as plain text, JSON or XML.

Text is for people at a terminal, JSON for scripts, XML for language models
(explicit structure, console output wrapped in CDATA).
"""

from __future__ import annotations

import json
from xml.sax.saxutils import escape, quoteattr

from jk.excerpt import SMART_TAIL_LINES, ExcerptMode
from jk.models import BuildSummary, FailureRecord, StepRecord

ICON_SUCCESS = "✓"
ICON_FAILURE = "✗"
ICON_WARNING = "⚠"
ICON_UNKNOWN = "○"

_XML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>'


def format_duration(ms: float | None) -> str:
    """45000 -> '45s', 3723000 -> '1h 2m 3s'"""
    if not ms:
        return "-"
    seconds = int(ms // 1000)
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def status_icon(result: str | None) -> str:
    return {
        "SUCCESS": ICON_SUCCESS,
        "FAILURE": ICON_FAILURE,
        "UNSTABLE": ICON_WARNING,
    }.get(result or "", ICON_UNKNOWN)


def _cdata(text: str) -> str:
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def _group_by_build(failures: list[FailureRecord]) -> dict[str, list[FailureRecord]]:
    grouped: dict[str, list[FailureRecord]] = {}
    for f in failures:
        grouped.setdefault(f.build_key, []).append(f)
    return grouped


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


def format_failures_text(failures: list[FailureRecord], include_console: bool = False) -> str:
    if not failures:
        return "No failures found!"

    lines: list[str] = []
    for build_key, group in _group_by_build(failures).items():
        lines.append("")
        lines.append(f"For build {build_key}:")
        lines.append("")
        for f in group:
            lines.append(f"  {ICON_FAILURE} {f.display_name} ({f.result})")
            lines.append(f"     {f.url}")
            if include_console and f.console_output:
                lines.append("")
                lines.append("     --- Console Output ---")
                lines.extend(f"     {line}" for line in f.console_output.split("\n"))
                lines.append("     --- End Output ---")
            lines.append("")
    return "\n".join(lines)


def format_failures_json(failures: list[FailureRecord]) -> str:
    return json.dumps([f.to_dict() for f in failures], indent=2)


def format_failures_xml(failures: list[FailureRecord], mode: ExcerptMode | None = None) -> str:
    mode = mode or ExcerptMode()
    lines = [_XML_HEADER, f"<failures mode={quoteattr(mode.name)}>"]

    if mode.name == "tail" and mode.tail_lines is not None:
        lines += ["  <metadata>", f"    <tailLines>{mode.tail_lines}</tailLines>", "  </metadata>"]
    elif mode.name == "grep" and mode.pattern:
        lines += ["  <metadata>", f"    <grepPattern>{escape(mode.pattern)}</grepPattern>", "  </metadata>"]
    elif mode.name == "smart":
        lines += [
            "  <metadata>",
            "    <smartMode>true</smartMode>",
            f"    <description>Last {SMART_TAIL_LINES} lines + all "
            "error/fail/exception/fatal lines</description>",
            "  </metadata>",
        ]

    lines.append(f"  <count>{len(failures)}</count>")
    lines.append("  <builds>")
    for group in _group_by_build(failures).values():
        first = group[0]
        lines.append("    <build>")
        lines.append(f"      <pipeline>{escape(first.pipeline_path)}</pipeline>")
        lines.append(f"      <buildNumber>{first.build_number}</buildNumber>")
        lines.append("      <nodes>")
        for f in group:
            lines.append("        <node>")
            lines.append(f"          <id>{escape(f.node_id)}</id>")
            lines.append(f"          <displayName>{escape(f.display_name)}</displayName>")
            lines.append(f"          <result>{escape(f.result)}</result>")
            lines.append(f"          <url>{escape(f.url)}</url>")
            if f.console_output:
                lines.append(f"          <consoleOutput>{_cdata(f.console_output)}</consoleOutput>")
            lines.append("        </node>")
        lines.append("      </nodes>")
        lines.append("    </build>")
    lines.append("  </builds>")
    lines.append("</failures>")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Build steps
# ---------------------------------------------------------------------------


def format_steps_text(steps: list[StepRecord], verbose: bool = False) -> str:
    if not steps:
        return "No nodes found for this build."

    lines = ["Build Information:", ""]
    for s in steps:
        lines.append(f"  {status_icon(s.result)} {s.display_name} - {s.result or s.state or 'UNKNOWN'}")
        if verbose:
            lines.append(f"     ID: {s.id}")
            lines.append(f"     State: {s.state or '-'}")
            if s.duration_ms:
                lines.append(f"     Duration: {format_duration(s.duration_ms)}")

    failed = sum(1 for s in steps if s.result == "FAILURE")
    passed = sum(1 for s in steps if s.result == "SUCCESS")
    lines += [
        "",
        "Summary:",
        f"  Total nodes: {len(steps)}",
        f"  Successful: {passed}",
        f"  Failed: {failed}",
    ]
    return "\n".join(lines)


def format_steps_xml(steps: list[StepRecord]) -> str:
    lines = [_XML_HEADER, "<build>", f'  <nodes count="{len(steps)}">']
    for s in steps:
        lines.append("    <node>")
        lines.append(f"      <id>{escape(s.id)}</id>")
        lines.append(f"      <displayName>{escape(s.display_name)}</displayName>")
        if s.state:
            lines.append(f"      <state>{s.state}</state>")
        if s.result:
            lines.append(f"      <result>{s.result}</result>")
        if s.start_time:
            lines.append(f"      <startTime>{escape(s.start_time)}</startTime>")
        if s.duration_ms is not None:
            lines.append(f"      <durationInMillis>{int(s.duration_ms)}</durationInMillis>")
        lines.append("    </node>")
    lines += ["  </nodes>", "</build>"]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Build history
# ---------------------------------------------------------------------------


def format_builds_text(builds: list[BuildSummary], verbose: bool = False) -> str:
    if not builds:
        return "No builds found."

    lines = ["Recent Builds:", ""]
    for b in builds:
        status = b.result if b.result in ("SUCCESS", "FAILURE", "UNSTABLE") else (b.state or "UNKNOWN")
        lines.append(f"  {status_icon(b.result)} #{b.id:<8} {status:<10} {format_duration(b.duration_ms)}")
        lines.append(f"    → {b.self_href}")
        if verbose and b.change_set:
            commit = b.change_set[0]
            lines.append(f"    {commit.commit_id[:7]} {commit.msg[:50]}")
    return "\n".join(lines)


def format_builds_xml(builds: list[BuildSummary]) -> str:
    lines = [_XML_HEADER, f'<builds count="{len(builds)}">']
    for b in builds:
        lines.append("  <build>")
        lines.append(f"    <id>{escape(b.id)}</id>")
        if b.result:
            lines.append(f"    <result>{b.result}</result>")
        if b.state:
            lines.append(f"    <state>{b.state}</state>")
        if b.start_time:
            lines.append(f"    <startTime>{escape(b.start_time)}</startTime>")
        if b.duration_ms is not None:
            lines.append(f"    <durationInMillis>{int(b.duration_ms)}</durationInMillis>")
        lines.append(f"    <url>{escape(b.self_href)}</url>")
        if b.causes:
            lines.append(f"    <cause>{escape(b.causes[0].short_description)}</cause>")
        lines.append("  </build>")
    lines.append("</builds>")
    return "\n".join(lines)
