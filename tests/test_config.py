"""Tests for reading chibisafe_watcher.env into a Config."""

from pathlib import Path

import pytest

from chibi_sync.config import (
    DEFAULT_CLEANUP_AGE_DAYS,
    DEFAULT_REQUEST_URL,
    Config,
    load_config,
    parse_config,
    server_base_from,
)


def _write_env(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "chibisafe_watcher.env"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    """Parsing the key=value file."""

    def test_full_file(self, tmp_path: Path):
        path = _write_env(
            tmp_path,
            "CHIBISAFE_REQUEST_URL=https://share.example.com/api/upload\n"
            "CHIBISAFE_API_KEY=abc123\n"
            "CHIBISAFE_ALBUM_UUID=0f1e2d\n"
            f"CHIBISAFE_WATCH_DIR={tmp_path}\n"
            "CHIBISAFE_CLEANUP_ENABLED=true\n"
            "CHIBISAFE_CLEANUP_DAYS=30\n"
            "CHIBISAFE_WATCH_BACKEND=fswatch\n",
        )
        cfg = load_config(path)

        assert cfg.upload_url == "https://share.example.com/api/upload"
        assert cfg.server_base == "https://share.example.com"
        assert cfg.api_key == "abc123"
        assert cfg.album_id == "0f1e2d"
        assert cfg.watch_directory == str(tmp_path)
        assert cfg.cleanup_enabled is True
        assert cfg.cleanup_age_days == 30
        assert cfg.watch_backend == "fswatch"
        assert cfg.is_valid

    def test_unknown_keys_and_comments_ignored(self, tmp_path: Path):
        path = _write_env(
            tmp_path,
            "# uploader settings\n"
            "SOMETHING_ELSE=1\n"
            "CHIBISAFE_API_KEY=abc\n",
        )
        cfg = load_config(path)
        assert cfg.api_key == "abc"
        assert cfg.upload_url == DEFAULT_REQUEST_URL

    def test_missing_file_gives_invalid_defaults(self, tmp_path: Path):
        cfg = load_config(tmp_path / "absent.env")
        assert cfg == Config()
        assert not cfg.is_valid

    def test_env_variable_overrides_location(self, tmp_path: Path, monkeypatch):
        path = _write_env(tmp_path, "CHIBISAFE_API_KEY=from-env-path\n")
        monkeypatch.setenv("CHIBISAFE_WATCHER_ENV", str(path))
        assert load_config().api_key == "from-env-path"


class TestParseConfig:
    """Value coercion and defaults."""

    def test_missing_cleanup_values_fall_back(self):
        cfg = parse_config({})
        assert cfg.cleanup_enabled is False
        assert cfg.cleanup_age_days == DEFAULT_CLEANUP_AGE_DAYS == 180

    def test_non_numeric_age_uses_default(self):
        cfg = parse_config({"CHIBISAFE_CLEANUP_DAYS": "soon"})
        assert cfg.cleanup_age_days == 180

    def test_negative_age_clamped_to_zero(self):
        cfg = parse_config({"CHIBISAFE_CLEANUP_DAYS": "-5"})
        assert cfg.cleanup_age_days == 0

    def test_zero_age_allowed(self):
        assert parse_config({"CHIBISAFE_CLEANUP_DAYS": "0"}).cleanup_age_days == 0

    @pytest.mark.parametrize("raw,expected", [
        ("true", True), ("YES", True), ("1", True), ("on", True),
        ("false", False), ("0", False), ("maybe", False), (None, False),
    ])
    def test_cleanup_flag(self, raw, expected):
        assert parse_config({"CHIBISAFE_CLEANUP_ENABLED": raw}).cleanup_enabled is expected

    def test_watch_dir_expands_home(self, monkeypatch, tmp_path: Path):
        monkeypatch.setenv("HOME", str(tmp_path))
        cfg = parse_config({"CHIBISAFE_WATCH_DIR": "~/Screenshots"})
        assert cfg.watch_directory == str(tmp_path / "Screenshots")

    def test_watch_backend_defaults_to_watchdog(self):
        assert parse_config({}).watch_backend == "watchdog"

    @pytest.mark.parametrize("raw,expected", [
        ("fswatch", "fswatch"), (" FSWatch ", "fswatch"), ("watchdog", "watchdog"), ("", "watchdog"),
    ])
    def test_watch_backend(self, raw, expected):
        assert parse_config({"CHIBISAFE_WATCH_BACKEND": raw}).watch_backend == expected


class TestValidity:
    """A config needs key, album and folder."""

    @pytest.mark.parametrize("missing", ["api_key", "album_id", "watch_directory"])
    def test_each_required_field(self, missing):
        values = dict(api_key="k", album_id="a", watch_directory="/tmp")
        values[missing] = ""
        assert not Config(**values).is_valid

    def test_config_is_immutable(self):
        cfg = Config(api_key="k")
        with pytest.raises(AttributeError):
            cfg.api_key = "other"  # type: ignore[misc]

    def test_masked_key_never_shows_whole_key(self):
        cfg = Config(api_key="0123456789abcdef")
        assert "0123456789abcdef" not in cfg.masked_api_key

    def test_server_base_derivation(self):
        assert server_base_from("https://h/api/upload") == "https://h"
        assert server_base_from("https://h/custom") == "https://h/custom"
