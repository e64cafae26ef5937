"""Durable storage for OAuth grants, one JSON file per user key."""

from __future__ import annotations

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Mapping

from google.oauth2.credentials import Credentials
from loguru import logger

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class FileTokenStore:
    """Stores authorized-user credentials under a single directory.

    Each key maps to ``<directory>/<key>.json`` holding the output of
    :meth:`Credentials.to_json`. Entries are replaced atomically so a failed or
    interrupted write leaves the previous token in place.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)
        self.ensure_directory()

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, key: str) -> Path:
        if not key:
            raise ValueError("Token store key must not be empty.")
        safe_key = _UNSAFE_KEY_CHARS.sub("_", key)
        return self._directory / f"{safe_key}.json"

    def load(self, key: str) -> Credentials | None:
        """Return the stored credentials for ``key`` or None when absent or unreadable."""
        path = self.path_for(key)
        if not path.is_file():
            return None

        try:
            with path.open("r", encoding="utf-8") as handle:
                info = json.load(handle)
            if not isinstance(info, Mapping):
                raise ValueError(f"expected a JSON object, got {type(info).__name__}")
            return Credentials.from_authorized_user_info(info)
        except (ValueError, KeyError) as exc:
            logger.warning(f"Ignoring unreadable token entry {path}: {exc}")
            return None

    def save(self, key: str, credentials: Credentials) -> None:
        self.ensure_directory()
        path = self.path_for(key)
        payload = credentials.to_json()

        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}-", suffix=".tmp", dir=self._directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Stored token for key '{key}' at {path}")

    def delete(self, key: str) -> bool:
        path = self.path_for(key)
        if not path.exists():
            return False
        path.unlink()
        logger.debug(f"Deleted token for key '{key}'")
        return True

    def clear(self) -> int:
        """Remove every stored entry and return how many were deleted."""
        if not self._directory.is_dir():
            return 0
        removed = 0
        for entry in self._directory.glob("*.json"):
            entry.unlink()
            removed += 1
        return removed

    def ensure_directory(self) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
