"""Shared fixtures for the traf_sync test suite."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest
from loguru import logger

from tests.fakes.fake_google import CLIENT_ID, CLIENT_SECRET
from traf_sync.token_store import FileTokenStore


@pytest.fixture
def client_secret_payload() -> dict:
    return {
        "installed": {
            "client_id": CLIENT_ID,
            "project_id": "traf-sync-test",
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "client_secret": CLIENT_SECRET,
            "redirect_uris": ["http://localhost"],
        }
    }


@pytest.fixture
def credentials_file(tmp_path: Path, client_secret_payload: dict) -> Path:
    path = tmp_path / "credentials.json"
    path.write_text(json.dumps(client_secret_payload), encoding="utf-8")
    return path


@pytest.fixture
def token_store(tmp_path: Path) -> FileTokenStore:
    return FileTokenStore(tmp_path / "token-store")



@pytest.fixture(autouse=True)
def restore_default_sink():
    """Put loguru back on the real stderr after tests that reconfigure it."""
    yield
    logger.remove()
    logger.add(sys.stderr)
