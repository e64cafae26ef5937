"""Common configuration for the TrafToGoogleSync event creator."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Application name used for the per-user config and data directories.
APP_NAME = "TrafToGoogleSync"

# Name of the OAuth client secret downloaded from Google Cloud Console.
CREDENTIALS_FILENAME = "credentials.json"

# Optional explicit client secret, tried before the default locations.
CREDENTIALS_FILE_OVERRIDE = os.getenv("TRAF_SYNC_CREDENTIALS_FILE")

# Optional explicit token store directory.
TOKEN_DIR_OVERRIDE = os.getenv("TRAF_SYNC_TOKEN_DIR")

# OAuth scopes that the sync needs.
CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
]

# Key under which the single logical user's token is stored.
DEFAULT_USER_KEY = "user"

DEFAULT_CALENDAR_ID = os.getenv("TRAF_SYNC_CALENDAR_ID", "primary")
DEFAULT_TIME_ZONE = os.getenv("TRAF_SYNC_TIME_ZONE", "Europe/Warsaw")

# Port that the local OAuth helper listens on during consent (0 picks a free port).
AUTH_REDIRECT_PORT = int(os.getenv("TRAF_SYNC_AUTH_PORT", "0"))

# Reproduces the legacy payload where the event end was sent as the start.
SWAP_EVENT_BOUNDARIES = os.getenv("TRAF_SYNC_SWAP_EVENT_BOUNDARIES", "false").lower() in {
    "1",
    "true",
    "yes",
}

LOG_LEVEL = os.getenv("TRAF_SYNC_LOG_LEVEL", "WARNING").upper()

# Sample event created when the CLI is run without arguments.
SAMPLE_SUMMARY = "Sample sync event"
SAMPLE_DESCRIPTION = f"Created by {APP_NAME}"


def user_config_dir() -> Path:
    """Roaming per-user application data directory."""
    if sys.platform == "win32":
        appdata = os.getenv("APPDATA")
        if appdata:
            return Path(appdata)
    xdg = os.getenv("XDG_CONFIG_HOME")
    return Path(xdg) if xdg else Path.home() / ".config"


def user_data_dir() -> Path:
    """Local (non-roaming) per-user application data directory."""
    if sys.platform == "win32":
        local_appdata = os.getenv("LOCALAPPDATA")
        if local_appdata:
            return Path(local_appdata)
    xdg = os.getenv("XDG_DATA_HOME")
    return Path(xdg) if xdg else Path.home() / ".local" / "share"


def default_credential_candidates(cwd: Path | None = None) -> list[Path]:
    """Ordered credential locations: user config first, then the working directory."""
    candidates: list[Path] = []
    if CREDENTIALS_FILE_OVERRIDE:
        candidates.append(Path(CREDENTIALS_FILE_OVERRIDE).expanduser())
    candidates.append(user_config_dir() / APP_NAME / CREDENTIALS_FILENAME)
    candidates.append((cwd or Path.cwd()) / CREDENTIALS_FILENAME)
    return candidates


def default_token_store_dir() -> Path:
    if TOKEN_DIR_OVERRIDE:
        return Path(TOKEN_DIR_OVERRIDE).expanduser()
    return user_data_dir() / APP_NAME / "token-store"
