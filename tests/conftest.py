"""Shared fixtures for the Chibisafe Uploader tests."""

from typing import Any
from unittest.mock import MagicMock

import pytest

from chibi_sync.config import Config

_UNSET = object()


def make_response(status: int = 200, payload: Any = _UNSET, json_error: bool = False) -> MagicMock:
    """Build a stand-in for ``requests.Response``."""
    response = MagicMock()
    response.status_code = status
    if json_error:
        response.json.side_effect = ValueError("Expecting value")
        response.text = "<html>oops</html>"
    else:
        response.json.return_value = {} if payload is _UNSET else payload
        response.text = repr(payload)
    return response


@pytest.fixture
def make_config(tmp_path):
    """Factory for a valid Config pointing at a temporary watch folder."""

    def _make(**overrides: Any) -> Config:
        values = dict(
            upload_url="https://h/api/upload",
            server_base="https://h",
            api_key="secret-key-123",
            album_id="album-1",
            watch_directory=str(tmp_path),
            cleanup_enabled=False,
            cleanup_age_days=30,
        )
        values.update(overrides)
        return Config(**values)

    return _make


@pytest.fixture
def session():
    """A mock ``requests.Session``."""
    return MagicMock()
