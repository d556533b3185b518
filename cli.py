"""
jk - inspect Jenkins Blue Ocean builds from the terminal.

    jk setup
    jk build    <locator>            [--xml] [-v]
    jk builds   <job-locator>        [--limit N] [--xml | --urls] [-v]
    jk failures <locator>            [--shallow] [--full | --tail N | --grep RE | --smart]
                                     [--json | --xml] [-v]
    jk console  <locator> <node-id>
    jk console  <blue-ocean-node-url>

When the locator argument is omitted it is read from stdin, so
``echo pipelines/MyProject/main/123 | jk failures`` works.

Logs go to stderr; stdout carries only the requested output.  Exit codes are
documented in jk/errors.py.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys

from jk import config, failures
from jk.blueocean_api import BlueOceanClient
from jk.errors import (
    EXIT_FAILURES_FOUND,
    EXIT_INTERNAL_ERROR,
    EXIT_INVALID_ARGS,
    EXIT_SUCCESS,
    ConfigError,
    JkApiError,
    JkError,
)
from jk.excerpt import ExcerptMode, apply_excerpt, validate_grep_pattern
from jk.formatters import (
    format_builds_text,
    format_builds_xml,
    format_failures_json,
    format_failures_text,
    format_failures_xml,
    format_steps_text,
    format_steps_xml,
)
from jk.locator import resolve_build_locator, resolve_job_locator, resolve_node_locator

logger = logging.getLogger("jk")

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class _Parser(argparse.ArgumentParser):
    """ArgumentParser that exits with EX_USAGE instead of argparse's 2,
    which jk reserves for configuration errors."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_INVALID_ARGS, f"{self.prog}: error: {message}\n")


class _UsageError(JkError):
    exit_code = EXIT_INVALID_ARGS


def _setup_logging(verbose: bool) -> None:
    level = os.getenv("JK_LOG_LEVEL", "DEBUG" if verbose else "WARNING").upper()
    logging.basicConfig(stream=sys.stderr, level=level, format=_LOG_FORMAT)


def _read_locator(value: str | None, what: str = "locator") -> str:
    """Positional argument, or the first non-empty stdin line when piped."""
    if value:
        return value
    if not sys.stdin.isatty():
        for line in sys.stdin.read().splitlines():
            if line.strip():
                return line.strip()
    raise _UsageError(f"Missing required argument <{what}> (pass it or pipe it on stdin)")


def _make_client() -> BlueOceanClient:
    return BlueOceanClient(config.load_settings())


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_setup(args: argparse.Namespace) -> int:
    print("Configure jk for your Jenkins server.")
    print("Create an API token under <Jenkins>/me/configure -> API Token.\n")
    url = input("Jenkins URL (https://jenkins.example.com): ").strip()
    username = input("Username: ").strip()
    token = getpass.getpass("API token: ").strip()
    path = config.write_config(url, username, token)
    print(f"\nSaved configuration to {path}")
    return EXIT_SUCCESS


def cmd_build(args: argparse.Namespace) -> int:
    coord = resolve_build_locator(_read_locator(args.locator))
    steps = failures.get_build_nodes(_make_client(), coord)
    print(format_steps_xml(steps) if args.xml else format_steps_text(steps, args.verbose))
    return EXIT_SUCCESS


def cmd_builds(args: argparse.Namespace) -> int:
    job = resolve_job_locator(_read_locator(args.locator, "job-locator"))
    builds = _make_client().fetch_runs(job, args.limit)
    if args.urls:
        for b in builds:
            print(b.self_href)
    elif args.xml:
        print(format_builds_xml(builds))
    else:
        print(format_builds_text(builds, args.verbose))
    return EXIT_SUCCESS


def _excerpt_mode(args: argparse.Namespace) -> ExcerptMode | None:
    """The console mode requested on the command line, or None for no console."""
    if args.full:
        return ExcerptMode("full")
    if args.smart:
        return ExcerptMode("smart")
    if args.grep is not None:
        problem = validate_grep_pattern(args.grep)
        if problem:
            raise _UsageError(problem)
        return ExcerptMode("grep", pattern=args.grep)
    if args.tail is not None:
        return ExcerptMode("tail", tail_lines=args.tail)
    return None


def cmd_failures(args: argparse.Namespace) -> int:
    mode = _excerpt_mode(args)
    coord = resolve_build_locator(_read_locator(args.locator))
    client = _make_client()

    report = failures.get_failure_report if args.shallow else failures.get_failure_report_recursive
    records = report(client, client.base_url, coord, include_console=mode is not None)
    if mode is not None:
        records = apply_excerpt(records, mode)

    if args.xml:
        print(format_failures_xml(records, mode))
    elif args.json:
        print(format_failures_json(records))
    else:
        print(format_failures_text(records, include_console=mode is not None))
    return EXIT_FAILURES_FOUND if records else EXIT_SUCCESS


def cmd_console(args: argparse.Namespace) -> int:
    locator = _read_locator(args.locator)
    if args.node_id:
        coord, node_id = resolve_build_locator(locator), args.node_id
    else:
        node = resolve_node_locator(locator)
        coord, node_id = node.coordinate, node.node_id
    sys.stdout.write(failures.get_node_console(_make_client(), coord, node_id))
    sys.stdout.write("\n")
    return EXIT_SUCCESS


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", help="Show extra detail and debug logs.")

    parser = _Parser(prog="jk", description="Inspect Jenkins Blue Ocean builds.")
    sub = parser.add_subparsers(dest="command", required=True, metavar="<command>")

    p = sub.add_parser("setup", parents=[common], help="Create the config file interactively.")
    p.set_defaults(handler=cmd_setup)

    p = sub.add_parser("build", parents=[common], help="Show the steps of a build.")
    p.add_argument("locator", nargs="?", help="Build URL or pipelines/<path>/<number>.")
    p.add_argument("--xml", action="store_true", help="XML output for LLM consumption.")
    p.set_defaults(handler=cmd_build)

    p = sub.add_parser("builds", parents=[common], help="List recent builds of a job.")
    p.add_argument("locator", nargs="?", help="Job URL or pipelines/<path>.")
    p.add_argument("--limit", type=int, default=10, help="Number of builds (default 10).")
    out = p.add_mutually_exclusive_group()
    out.add_argument("--xml", action="store_true", help="XML output for LLM consumption.")
    out.add_argument("--urls", action="store_true", help="Print only build URLs.")
    p.set_defaults(handler=cmd_builds)

    p = sub.add_parser("failures", parents=[common], help="Show failed steps, including sub-builds.")
    p.add_argument("locator", nargs="?", help="Build URL or pipelines/<path>/<number>.")
    depth = p.add_mutually_exclusive_group()
    depth.add_argument("--shallow", action="store_true", help="Do not follow sub-build links.")
    depth.add_argument("-r", "--recursive", action="store_true",
                       help="No-op: sub-builds are followed by default.")
    console = p.add_mutually_exclusive_group()
    console.add_argument("--full", action="store_true", help="Include full console output.")
    console.add_argument("--tail", type=_positive_int, metavar="N", help="Include the last N console lines.")
    console.add_argument("--grep", metavar="RE", help="Include console lines matching RE (case-insensitive).")
    console.add_argument("--smart", action="store_true",
                         help="Include error lines plus the last 100 console lines.")
    out = p.add_mutually_exclusive_group()
    out.add_argument("--json", action="store_true", help="JSON output.")
    out.add_argument("--xml", action="store_true", help="XML output for LLM consumption.")
    p.set_defaults(handler=cmd_failures)

    p = sub.add_parser("console", parents=[common], help="Print the console output of one step.")
    p.add_argument("locator", nargs="?", help="Build locator, or a Blue Ocean node URL.")
    p.add_argument("node_id", nargs="?", help="Step id (omit when passing a node URL).")
    p.set_defaults(handler=cmd_console)

    return parser


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return number


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    try:
        return args.handler(args)
    except JkError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        if args.verbose:
            if isinstance(exc, JkApiError) and exc.url:
                print(f"URL: {exc.url}", file=sys.stderr)
            if exc.__cause__ is not None:
                print(f"Cause: {exc.__cause__}", file=sys.stderr)
        if isinstance(exc, ConfigError) and args.command != "setup":
            print("Run 'jk setup' to create a config file.", file=sys.stderr)
        return exc.exit_code
    except KeyboardInterrupt:
        return 130
    except Exception:
        logger.exception("Unexpected error")
        return EXIT_INTERNAL_ERROR


if __name__ == "__main__":
    sys.exit(main())
