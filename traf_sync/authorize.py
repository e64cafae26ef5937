"""Command-line helper that only completes (or refreshes) the Google OAuth grant."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Iterable

from loguru import logger

from .auth import (
    AuthorizationBroker,
    AuthorizationCancelled,
    CredentialsNotFoundError,
    load_client_secrets,
    locate_credentials,
)
from .cancellation import cancel_on_signals
from .config import (
    CALENDAR_SCOPES,
    DEFAULT_USER_KEY,
    default_credential_candidates,
    default_token_store_dir,
)
from .sync import EXIT_CANCELLED, EXIT_CREDENTIALS_MISSING, EXIT_SUCCESS, EXIT_UNEXPECTED_ERROR
from .token_store import FileTokenStore


async def run_authorization(
    *,
    candidates: Iterable[Path],
    store: FileTokenStore,
    user_key: str = DEFAULT_USER_KEY,
    broker: AuthorizationBroker | None = None,
    cancel: asyncio.Event | None = None,
) -> int:
    """Authorize ``user_key`` and return the process exit code."""
    try:
        credentials_path = locate_credentials(candidates)
    except CredentialsNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_CREDENTIALS_MISSING

    print(f"Using credentials: {credentials_path}")
    broker = broker or AuthorizationBroker()
    try:
        secrets = load_client_secrets(credentials_path)
        await broker.authorize(secrets, CALENDAR_SCOPES, store, user_key, cancel)
    except AuthorizationCancelled:
        print("Authorization cancelled.", file=sys.stderr)
        return EXIT_CANCELLED
    except Exception as exc:  # noqa: BLE001 - reported once, then the process exits
        logger.opt(exception=exc).debug("Authorization failed")
        print(f"Authorization failed: {exc}", file=sys.stderr)
        return EXIT_UNEXPECTED_ERROR

    print(f"Google Calendar authorization OK. Token stored at: {store.path_for(user_key)}")
    return EXIT_SUCCESS


async def _main(user_key: str) -> int:
    cancel = asyncio.Event()
    with cancel_on_signals(cancel):
        return await run_authorization(
            candidates=default_credential_candidates(),
            store=FileTokenStore(default_token_store_dir()),
            user_key=user_key,
            cancel=cancel,
        )


def main(user_key: str = DEFAULT_USER_KEY) -> int:
    return asyncio.run(_main(user_key))


if __name__ == "__main__":
    sys.exit(main())
