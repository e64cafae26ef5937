"""Credential discovery and OAuth authorization for the calendar sync."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from loguru import logger

from .cancellation import OperationCancelled, call_or_cancel
from .config import AUTH_REDIRECT_PORT
from .token_store import FileTokenStore

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


class CredentialsNotFoundError(RuntimeError):
    """Raised when no candidate location holds a readable client secret."""

    def __init__(self, searched: Sequence[Path]) -> None:
        self.searched = tuple(searched)
        lines = "\n".join(f"  {path}" for path in self.searched)
        super().__init__(
            "credentials.json not found. Please download your OAuth 2.0 Desktop credentials "
            "from Google Cloud Console and place the file at one of these locations:\n" + lines
        )


class CredentialConfigurationError(RuntimeError):
    """Raised when the client credentials file is unreadable or malformed."""


class AuthorizationRequiredError(RuntimeError):
    """Raised when the user must complete the OAuth flow before continuing."""


class AuthorizationFailedError(RuntimeError):
    """Raised when consent is denied or the token exchange fails."""


class AuthorizationCancelled(OperationCancelled):
    """Raised when the cancel event fires before authorization completes."""


def locate_credentials(candidates: Iterable[Path]) -> Path:
    """Return the first candidate that is an existing, readable file."""
    searched: list[Path] = []
    for candidate in candidates:
        path = Path(candidate)
        searched.append(path)
        if _is_readable_file(path):
            return path
    raise CredentialsNotFoundError(searched)


def _is_readable_file(path: Path) -> bool:
    if not path.is_file():
        return False
    try:
        with path.open("rb"):
            return True
    except OSError:
        return False


@dataclass(frozen=True, slots=True)
class CredentialBundle:
    """Client configuration loaded from a Google OAuth client secret file."""

    client_type: str
    client_config: Mapping[str, Any] = field(repr=False)
    source: Path | None = None

    @property
    def client_id(self) -> str:
        return self.client_config[self.client_type]["client_id"]


def load_client_secrets(path: Path) -> CredentialBundle:
    """
    Parse a Google "desktop app" (or web) client secret file.

    Raises:
        CredentialConfigurationError: If the file cannot be read, is not JSON, or
            lacks a client id and secret.
    """
    try:
        with Path(path).open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
    except OSError as exc:
        raise CredentialConfigurationError(f"Cannot read credentials file {path}: {exc}") from exc
    except ValueError as exc:
        raise CredentialConfigurationError(f"Credentials file {path} is not valid JSON: {exc}") from exc

    if not isinstance(raw, Mapping):
        raise CredentialConfigurationError(f"Credentials file {path} must contain a JSON object.")

    client_type = next((key for key in ("installed", "web") if key in raw), None)
    if client_type is None:
        raise CredentialConfigurationError(
            f"Credentials file {path} has no 'installed' or 'web' client section."
        )

    section = raw[client_type]
    if not isinstance(section, Mapping):
        raise CredentialConfigurationError(f"Credentials file {path}: '{client_type}' must be an object.")

    missing = [name for name in ("client_id", "client_secret") if not section.get(name)]
    if missing:
        raise CredentialConfigurationError(
            f"Credentials file {path} is missing: {', '.join(missing)}."
        )

    normalized = dict(section)
    normalized.setdefault("auth_uri", GOOGLE_AUTH_URI)
    normalized.setdefault("token_uri", GOOGLE_TOKEN_URI)
    return CredentialBundle(
        client_type=client_type,
        client_config={client_type: normalized},
        source=Path(path),
    )


def run_local_consent(
    client_config: Mapping[str, Any],
    scopes: Sequence[str],
    *,
    port: int = AUTH_REDIRECT_PORT,
    timeout_seconds: int | None = 300,
) -> Credentials:
    """Open the browser consent page and capture the redirect on a loopback server."""
    flow = InstalledAppFlow.from_client_config(dict(client_config), list(scopes))
    return flow.run_local_server(
        host="localhost",
        port=port,
        authorization_prompt_message="Authorize access to Google Calendar: {url}",
        success_message="Authorization completed. You may close this tab.",
        timeout_seconds=timeout_seconds,
    )


ConsentFn = Callable[[Mapping[str, Any], Sequence[str]], Credentials]


class AuthState(str, Enum):
    NO_TOKEN = "no_token"
    HAS_VALID_TOKEN = "has_valid_token"
    HAS_EXPIRED_TOKEN = "has_expired_token"
    AWAITING_CONSENT = "awaiting_consent"
    AUTHORIZED = "authorized"
    CANCELLED = "cancelled"


class AuthorizationBroker:
    """
    Returns valid user credentials, prompting for consent only when needed.

    A stored token is reused as-is while valid and refreshed when expired. The
    consent step runs only when the store has nothing usable, and its result is
    persisted under the same key so the next run is silent. Nothing is written
    to the store once ``cancel`` has fired.
    """

    def __init__(
        self,
        consent: ConsentFn | None = None,
        *,
        interactive: bool = True,
        request_factory: Callable[[], Request] = Request,
    ) -> None:
        self._consent = consent or run_local_consent
        self._interactive = interactive
        self._request_factory = request_factory
        self._history: list[AuthState] = []

    @property
    def state(self) -> AuthState | None:
        return self._history[-1] if self._history else None

    @property
    def history(self) -> tuple[AuthState, ...]:
        return tuple(self._history)

    async def authorize(
        self,
        secrets: CredentialBundle,
        scopes: Iterable[str],
        store: FileTokenStore,
        key: str,
        cancel: asyncio.Event | None = None,
    ) -> Credentials:
        """
        Load, refresh or obtain credentials for ``key``.

        Raises:
            AuthorizationCancelled: If ``cancel`` fires before credentials are ready.
            AuthorizationRequiredError: If consent is needed but the broker is
                not interactive.
            AuthorizationFailedError: If the consent step fails.
        """
        cancel = cancel or asyncio.Event()
        scopes = list(scopes)
        self._history = []

        try:
            creds = self._load_usable(secrets, scopes, store, key)
            if creds is None:
                self._enter(AuthState.NO_TOKEN)
            elif creds.valid:
                self._enter(AuthState.HAS_VALID_TOKEN)
                self._enter(AuthState.AUTHORIZED)
                return creds
            else:
                self._enter(AuthState.HAS_EXPIRED_TOKEN)
                if creds.refresh_token and await self._refresh(creds, cancel):
                    self._persist(store, key, creds, cancel)
                    self._enter(AuthState.AUTHORIZED)
                    return creds

            return await self._await_consent(secrets, scopes, store, key, cancel)
        except OperationCancelled as exc:
            self._enter(AuthState.CANCELLED)
            if isinstance(exc, AuthorizationCancelled):
                raise
            raise AuthorizationCancelled(str(exc)) from exc

    def _load_usable(
        self,
        secrets: CredentialBundle,
        scopes: Sequence[str],
        store: FileTokenStore,
        key: str,
    ) -> Credentials | None:
        creds = store.load(key)
        if creds is None:
            return None
        if not creds.has_scopes(scopes):
            logger.info(f"Stored token for '{key}' lacks requested scopes; re-authorizing")
            return None
        if creds.client_id and creds.client_id != secrets.client_id:
            logger.info(f"Stored token for '{key}' was issued to another client; re-authorizing")
            return None
        return creds

    async def _refresh(self, creds: Credentials, cancel: asyncio.Event) -> bool:
        logger.debug("Refreshing expired access token")
        try:
            await call_or_cancel(cancel, creds.refresh, self._request_factory())
        except RefreshError as exc:
            logger.warning(f"Stored token can no longer be refreshed: {exc}")
            return False
        return True

    async def _await_consent(
        self,
        secrets: CredentialBundle,
        scopes: list[str],
        store: FileTokenStore,
        key: str,
        cancel: asyncio.Event,
    ) -> Credentials:
        if not self._interactive:
            raise AuthorizationRequiredError(
                "No usable Google OAuth token found. Run `traf-sync authorize` "
                "to sign in with your Google account."
            )

        self._enter(AuthState.AWAITING_CONSENT)
        self._checkpoint(cancel)

        try:
            creds = await call_or_cancel(cancel, self._consent, secrets.client_config, scopes)
        except OperationCancelled:
            raise
        except Exception as exc:  # noqa: BLE001 - consent failures share one error type
            raise AuthorizationFailedError(f"Authorization failed: {exc}") from exc

        self._persist(store, key, creds, cancel)
        self._enter(AuthState.AUTHORIZED)
        return creds

    def _persist(
        self,
        store: FileTokenStore,
        key: str,
        creds: Credentials,
        cancel: asyncio.Event,
    ) -> None:
        self._checkpoint(cancel)
        store.save(key, creds)

    def _checkpoint(self, cancel: asyncio.Event) -> None:
        if cancel.is_set():
            raise AuthorizationCancelled("Authorization cancelled.")

    def _enter(self, state: AuthState) -> None:
        logger.debug(f"Authorization state -> {state.value}")
        self._history.append(state)
