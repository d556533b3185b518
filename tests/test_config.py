"""Tests for settings resolution from the environment and the config file."""

from __future__ import annotations

import json
import os
import stat

import pytest

from jk import config
from jk.errors import ConfigError, ConfigNotFoundError

_ENV_VARS = (
    "JENKINS_URL", "JENKINS_USER", "JENKINS_USERNAME", "JENKINS_TOKEN", "JENKINS_API_TOKEN",
    "JENKINS_VERIFY_SSL", "JENKINS_TIMEOUT_SECONDS", "XDG_CONFIG_HOME",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


def _write(path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data) if not isinstance(data, str) else data, encoding="utf-8")


DIRECT = {
    "jenkinsUrl": "https://ci.example.com/",
    "auth": {"type": "direct", "username": "me", "apiToken": "secret"},
}


# ---------------------------------------------------------------------------
# Config file location
# ---------------------------------------------------------------------------


class TestConfigPath:
    def test_default_under_home(self, tmp_path):
        assert config.get_config_path() == tmp_path / "home" / ".config" / "jk" / "config.json"

    def test_absolute_xdg(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
        assert config.get_config_dir() == tmp_path / "xdg" / "jk"

    def test_relative_xdg_ignored(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_CONFIG_HOME", "relative/dir")
        assert config.get_config_dir() == tmp_path / "home" / ".config" / "jk"


# ---------------------------------------------------------------------------
# load_settings
# ---------------------------------------------------------------------------


class TestLoadSettingsFromEnv:
    def test_env_only(self, monkeypatch, tmp_path):
        monkeypatch.setenv("JENKINS_URL", "https://ci.example.com/")
        monkeypatch.setenv("JENKINS_USER", "me")
        monkeypatch.setenv("JENKINS_TOKEN", "secret")
        settings = config.load_settings(tmp_path / "missing.json")

        assert settings.jenkins_url == "https://ci.example.com"
        assert settings.auth == ("me", "secret")
        assert settings.verify_ssl is True
        assert settings.timeout == 30

    def test_aliases(self, monkeypatch, tmp_path):
        monkeypatch.setenv("JENKINS_URL", "http://jenkins:8080")
        monkeypatch.setenv("JENKINS_USERNAME", "alias-user")
        monkeypatch.setenv("JENKINS_API_TOKEN", "alias-token")
        settings = config.load_settings(tmp_path / "missing.json")
        assert settings.auth == ("alias-user", "alias-token")

    def test_partial_env_without_file_names_missing(self, monkeypatch, tmp_path):
        monkeypatch.setenv("JENKINS_URL", "https://ci.example.com")
        with pytest.raises(ConfigError) as exc_info:
            config.load_settings(tmp_path / "missing.json")
        assert "JENKINS_USER" in exc_info.value.message
        assert "JENKINS_TOKEN" in exc_info.value.message
        assert "JENKINS_URL" not in exc_info.value.message

    def test_ssl_and_timeout(self, monkeypatch, tmp_path):
        monkeypatch.setenv("JENKINS_URL", "https://ci.example.com")
        monkeypatch.setenv("JENKINS_USER", "me")
        monkeypatch.setenv("JENKINS_TOKEN", "secret")
        monkeypatch.setenv("JENKINS_VERIFY_SSL", "false")
        monkeypatch.setenv("JENKINS_TIMEOUT_SECONDS", "5")
        settings = config.load_settings(tmp_path / "missing.json")
        assert settings.verify_ssl is False
        assert settings.timeout == 5.0

    @pytest.mark.parametrize("raw", ["abc", "0", "-3"])
    def test_bad_timeout_falls_back(self, monkeypatch, tmp_path, raw):
        monkeypatch.setenv("JENKINS_URL", "https://ci.example.com")
        monkeypatch.setenv("JENKINS_USER", "me")
        monkeypatch.setenv("JENKINS_TOKEN", "secret")
        monkeypatch.setenv("JENKINS_TIMEOUT_SECONDS", raw)
        assert config.load_settings(tmp_path / "missing.json").timeout == 30

    def test_bad_url(self, monkeypatch, tmp_path):
        monkeypatch.setenv("JENKINS_URL", "ci.example.com")
        monkeypatch.setenv("JENKINS_USER", "me")
        monkeypatch.setenv("JENKINS_TOKEN", "secret")
        with pytest.raises(ConfigError) as exc_info:
            config.load_settings(tmp_path / "missing.json")
        assert exc_info.value.field == "jenkinsUrl"


class TestLoadSettingsFromFile:
    def test_nothing_configured(self, tmp_path):
        with pytest.raises(ConfigNotFoundError) as exc_info:
            config.load_settings(tmp_path / "missing.json")
        assert exc_info.value.path == str(tmp_path / "missing.json")

    def test_direct_auth(self, tmp_path):
        path = tmp_path / "config.json"
        _write(path, DIRECT)
        settings = config.load_settings(path)
        assert settings.jenkins_url == "https://ci.example.com"
        assert settings.auth == ("me", "secret")

    def test_default_location(self, tmp_path):
        _write(tmp_path / "home" / ".config" / "jk" / "config.json", DIRECT)
        assert config.load_settings().username == "me"

    def test_env_overrides_file(self, monkeypatch, tmp_path):
        path = tmp_path / "config.json"
        _write(path, DIRECT)
        monkeypatch.setenv("JENKINS_TOKEN", "from-env")
        settings = config.load_settings(path)
        assert settings.auth == ("me", "from-env")

    def test_env_auth_type_uses_env_credentials(self, monkeypatch, tmp_path):
        path = tmp_path / "config.json"
        _write(path, {"jenkinsUrl": "https://ci.example.com", "auth": {"type": "env"}})
        monkeypatch.setenv("JENKINS_USER", "me")
        monkeypatch.setenv("JENKINS_TOKEN", "secret")
        assert config.load_settings(path).auth == ("me", "secret")

    def test_env_auth_type_without_credentials(self, tmp_path):
        path = tmp_path / "config.json"
        _write(path, {"jenkinsUrl": "https://ci.example.com", "auth": {"type": "env"}})
        with pytest.raises(ConfigError, match="JENKINS_USER or JENKINS_TOKEN not set"):
            config.load_settings(path)

    @pytest.mark.parametrize("content, match", [
        ("{not json", "Failed to parse config file"),
        ("[1, 2]", "expected a JSON object"),
        (json.dumps({"jenkinsUrl": "https://ci", "auth": {"type": "oauth"}}), "auth.type"),
        (json.dumps({"jenkinsUrl": "https://ci", "auth": {"type": "direct", "username": "me"}}), "apiToken"),
    ])
    def test_invalid_file(self, tmp_path, content, match):
        path = tmp_path / "config.json"
        _write(path, content)
        with pytest.raises(ConfigError, match=match):
            config.load_settings(path)

    def test_file_with_bad_url(self, tmp_path):
        path = tmp_path / "config.json"
        _write(path, {**DIRECT, "jenkinsUrl": "ftp://ci"})
        with pytest.raises(ConfigError, match="http:// or https://"):
            config.load_settings(path)


# ---------------------------------------------------------------------------
# write_config
# ---------------------------------------------------------------------------


class TestWriteConfig:
    def test_writes_private_file(self, tmp_path):
        path = config.write_config("https://ci.example.com/", "me", "secret", tmp_path / "jk" / "config.json")

        assert json.loads(path.read_text()) == {
            "jenkinsUrl": "https://ci.example.com",
            "auth": {"type": "direct", "username": "me", "apiToken": "secret"},
        }
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_round_trip(self, tmp_path):
        path = config.write_config("https://ci.example.com", "me", "secret", tmp_path / "config.json")
        assert config.load_settings(path).auth == ("me", "secret")

    def test_rejects_bad_url(self, tmp_path):
        with pytest.raises(ConfigError):
            config.write_config("ci.example.com", "me", "secret", tmp_path / "config.json")

    def test_rejects_missing_credentials(self, tmp_path):
        with pytest.raises(ConfigError):
            config.write_config("https://ci.example.com", "me", "", tmp_path / "config.json")
