"""
Connection settings for the Jenkins server.

Settings come from two places, environment first:

  1. JENKINS_URL / JENKINS_USER / JENKINS_TOKEN (a local .env file is loaded
     with python-dotenv).  JENKINS_USERNAME and JENKINS_API_TOKEN are accepted
     as aliases.
  2. $XDG_CONFIG_HOME/jk/config.json (default ~/.config/jk/config.json),
     written by ``jk setup``:

        {"jenkinsUrl": "https://jenkins.example.com",
         "auth": {"type": "direct", "username": "me", "apiToken": "..."}}

     With ``"auth": {"type": "env"}`` the credentials must come from the
     environment.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from jk.errors import ConfigError, ConfigNotFoundError

load_dotenv()

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"^https?://.+")
_DEFAULT_TIMEOUT = 30

_USER_VARS = ("JENKINS_USER", "JENKINS_USERNAME")
_TOKEN_VARS = ("JENKINS_TOKEN", "JENKINS_API_TOKEN")


@dataclass(frozen=True)
class Settings:
    jenkins_url: str
    username: str
    api_token: str
    verify_ssl: bool = True
    timeout: float = _DEFAULT_TIMEOUT

    @property
    def auth(self) -> tuple[str, str]:
        return (self.username, self.api_token)


def _first_env(names: tuple[str, ...]) -> str:
    for name in names:
        value = os.environ.get(name, "")
        if value:
            return value
    return ""


def _verify_ssl_from_env() -> bool:
    return os.environ.get("JENKINS_VERIFY_SSL", "true").lower() not in ("false", "0", "no")


def _timeout_from_env() -> float:
    raw = os.environ.get("JENKINS_TIMEOUT_SECONDS", "")
    if not raw:
        return _DEFAULT_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid JENKINS_TIMEOUT_SECONDS=%s; defaulting to %ss", raw, _DEFAULT_TIMEOUT)
        return _DEFAULT_TIMEOUT
    if value <= 0:
        logger.warning("Non-positive JENKINS_TIMEOUT_SECONDS=%s; defaulting to %ss", raw, _DEFAULT_TIMEOUT)
        return _DEFAULT_TIMEOUT
    return value


# ---------------------------------------------------------------------------
# Config file location
# ---------------------------------------------------------------------------


def get_config_dir() -> Path:
    """Return the jk config directory, honouring an absolute XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg and not os.path.isabs(xdg):
        logger.warning("XDG_CONFIG_HOME is not an absolute path, using default ~/.config")
        xdg = ""
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "jk"


def get_config_path() -> Path:
    return get_config_dir() / "config.json"


# ---------------------------------------------------------------------------
# Reading / writing
# ---------------------------------------------------------------------------


def read_config_file(path: Path | None = None) -> dict:
    """Load and structurally check the JSON config file."""
    path = path or get_config_path()
    if not path.exists():
        raise ConfigNotFoundError(
            "Config file not found. Run 'jk setup' or set JENKINS_URL, "
            "JENKINS_USER and JENKINS_TOKEN.",
            str(path),
        )
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config format in {path}: expected a JSON object")

    auth = data.get("auth")
    if not isinstance(auth, dict) or auth.get("type") not in ("direct", "env"):
        raise ConfigError("Invalid config format: auth.type must be 'direct' or 'env'", "auth")
    if auth["type"] == "direct" and not (auth.get("username") and auth.get("apiToken")):
        raise ConfigError("Invalid config format: direct auth needs username and apiToken", "auth")
    return data


def load_settings(config_path: Path | None = None) -> Settings:
    """Resolve Settings from the environment, falling back to the config file.

    Raises ConfigNotFoundError when neither source provides a Jenkins URL and
    credentials, ConfigError when what is provided is invalid.
    """
    url = os.environ.get("JENKINS_URL", "")
    username = _first_env(_USER_VARS)
    token = _first_env(_TOKEN_VARS)

    if not (url and username and token):
        try:
            data = read_config_file(config_path)
        except ConfigNotFoundError:
            if url or username or token:
                missing = [name for name, value in (
                    ("JENKINS_URL", url), ("JENKINS_USER", username), ("JENKINS_TOKEN", token),
                ) if not value]
                raise ConfigError(
                    f"Missing required environment variables: {', '.join(missing)}."
                )
            raise

        url = url or data.get("jenkinsUrl", "")
        auth = data["auth"]
        if auth["type"] == "direct":
            username = username or auth["username"]
            token = token or auth["apiToken"]
        elif not (username and token):
            raise ConfigError(
                "Environment variable auth configured but JENKINS_USER or "
                "JENKINS_TOKEN not set",
                "auth",
            )

    if not _URL_RE.match(url or ""):
        raise ConfigError(
            f"Jenkins URL must start with http:// or https:// (got {url!r})", "jenkinsUrl",
        )

    return Settings(
        jenkins_url=url.rstrip("/"),
        username=username,
        api_token=token,
        verify_ssl=_verify_ssl_from_env(),
        timeout=_timeout_from_env(),
    )


def write_config(jenkins_url: str, username: str, api_token: str,
                 config_path: Path | None = None) -> Path:
    """Write a direct-auth config file readable only by the current user."""
    if not _URL_RE.match(jenkins_url):
        raise ConfigError("Jenkins URL must start with http:// or https://", "jenkinsUrl")
    if not username or not api_token:
        raise ConfigError("Username and API token are required", "auth")

    path = config_path or get_config_path()
    data = {
        "jenkinsUrl": jenkins_url.rstrip("/"),
        "auth": {"type": "direct", "username": username, "apiToken": api_token},
    }
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)
        os.chmod(path, 0o600)
    except OSError as exc:
        raise ConfigError(f"Failed to write config file {path}: {exc}") from exc
    logger.debug("Wrote config to %s", path)
    return path
