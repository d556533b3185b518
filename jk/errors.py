"""
Typed exceptions raised by the jk library.

Library code raises these and never exits the process.  The CLI maps each
class to a sysexits-style exit code through ``exit_code`` so scripts can tell
a missing build from a bad token:

    jk failures pipelines/my-job/123
    case $? in
      0) echo "No failures" ;;
      1) echo "Build has failures" ;;
      2) echo "Config error - run jk setup" ;;
      3) echo "Auth failed" ;;
      4) echo "Network error" ;;
      5) echo "Build not found" ;;
      64) echo "Invalid arguments" ;;
      70) echo "Internal error" ;;
    esac
"""

from __future__ import annotations

EXIT_SUCCESS = 0
EXIT_FAILURES_FOUND = 1
EXIT_CONFIG_ERROR = 2
EXIT_AUTH_ERROR = 3
EXIT_NETWORK_ERROR = 4
EXIT_NOT_FOUND = 5
EXIT_INVALID_ARGS = 64
EXIT_INTERNAL_ERROR = 70


class JkError(Exception):
    """Base class for every error the library raises on purpose."""

    exit_code = EXIT_INTERNAL_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigError(JkError):
    exit_code = EXIT_CONFIG_ERROR

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ConfigNotFoundError(ConfigError):
    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path


# ---------------------------------------------------------------------------
# Locator parsing
# ---------------------------------------------------------------------------


class InvalidLocatorError(JkError):
    """Locator text is malformed or contains unsafe path segments."""

    exit_code = EXIT_INVALID_ARGS

    def __init__(self, message: str, locator: str):
        super().__init__(message)
        self.locator = locator


# ---------------------------------------------------------------------------
# Blue Ocean API
# ---------------------------------------------------------------------------


class JkApiError(JkError):
    """A fetch against the Jenkins server failed."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class NetworkError(JkApiError):
    exit_code = EXIT_NETWORK_ERROR

    def __init__(self, message: str, url: str | None = None,
                 status_code: int | None = None):
        super().__init__(message, url)
        self.status_code = status_code


class NotFoundError(JkApiError):
    exit_code = EXIT_NOT_FOUND


class AuthenticationError(JkApiError):
    exit_code = EXIT_AUTH_ERROR


class ValidationError(JkApiError):
    """The server answered, but not with the shape we expect."""

    exit_code = EXIT_INTERNAL_ERROR


class BuildNotFoundError(NotFoundError):
    def __init__(self, pipeline: str, build_number: int, url: str | None = None):
        super().__init__(f"Build not found: {pipeline}/{build_number}", url)
        self.pipeline = pipeline
        self.build_number = build_number


class NodeNotFoundError(NotFoundError):
    def __init__(self, pipeline: str, build_number: int, node_id: str,
                 url: str | None = None):
        super().__init__(
            f"Node not found: {node_id} in build {pipeline}/{build_number}", url,
        )
        self.pipeline = pipeline
        self.build_number = build_number
        self.node_id = node_id


class TraversalCancelledError(JkError):
    """Raised inside a failure traversal after it has been cancelled."""
