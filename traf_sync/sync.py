"""One-shot sync: locate credentials, authorize, create one event, report the outcome."""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, TextIO, Union

from googleapiclient.errors import HttpError
from loguru import logger

from .auth import (
    AuthorizationBroker,
    CredentialsNotFoundError,
    load_client_secrets,
    locate_credentials,
)
from .calendar_service import AuthorizedClient, ServiceFactory, build_calendar_resource
from .cancellation import OperationCancelled, call_or_cancel
from .config import CALENDAR_SCOPES, DEFAULT_TIME_ZONE, DEFAULT_USER_KEY, SWAP_EVENT_BOUNDARIES
from .models import CreatedEvent, EventSpec, build_event
from .token_store import FileTokenStore


@dataclass(frozen=True, slots=True)
class Created:
    id: str
    link: str | None


@dataclass(frozen=True, slots=True)
class CredentialsMissing:
    searched: tuple[Path, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class ApiError:
    message: str


@dataclass(frozen=True, slots=True)
class UnexpectedError:
    message: str


@dataclass(frozen=True, slots=True)
class Cancelled:
    pass


SyncResult = Union[Created, CredentialsMissing, ApiError, UnexpectedError, Cancelled]

EXIT_SUCCESS = 0
EXIT_CREDENTIALS_MISSING = 2
EXIT_API_ERROR = 3
EXIT_UNEXPECTED_ERROR = 4
EXIT_CANCELLED = 130


def exit_code_for(result: SyncResult) -> int:
    if isinstance(result, Created):
        return EXIT_SUCCESS
    if isinstance(result, CredentialsMissing):
        return EXIT_CREDENTIALS_MISSING
    if isinstance(result, ApiError):
        return EXIT_API_ERROR
    if isinstance(result, Cancelled):
        return EXIT_CANCELLED
    return EXIT_UNEXPECTED_ERROR


def report(result: SyncResult, *, out: TextIO | None = None, err: TextIO | None = None) -> None:
    """Print the human-readable outcome lines for ``result``."""
    out = out or sys.stdout
    err = err or sys.stderr

    if isinstance(result, Created):
        print(f"Event created: id={result.id}", file=out)
        if result.link:
            print(f"Open in browser: {result.link}", file=out)
    elif isinstance(result, CredentialsMissing):
        print(str(CredentialsNotFoundError(result.searched)), file=err)
    elif isinstance(result, ApiError):
        print(f"Google API error: {result.message}", file=err)
    elif isinstance(result, Cancelled):
        print("Sync cancelled.", file=err)
    else:
        print(f"Error creating event: {result.message}", file=err)


def provider_message(exc: HttpError) -> str:
    """The error text Google returned, without the request URL wrapping of ``str(exc)``."""
    return getattr(exc, "reason", None) or str(exc)


class SyncExecutor:
    """Runs the credential → authorization → insert pipeline exactly once."""

    def __init__(
        self,
        *,
        candidates: Iterable[Path],
        store: FileTokenStore,
        broker: AuthorizationBroker | None = None,
        scopes: Iterable[str] = CALENDAR_SCOPES,
        user_key: str = DEFAULT_USER_KEY,
        time_zone: str = DEFAULT_TIME_ZONE,
        swap_boundaries: bool = SWAP_EVENT_BOUNDARIES,
        service_factory: ServiceFactory = build_calendar_resource,
        cancel: asyncio.Event | None = None,
        progress: Callable[[str], None] = print,
    ) -> None:
        self._candidates = list(candidates)
        self._store = store
        self._broker = broker or AuthorizationBroker()
        self._scopes = list(scopes)
        self._user_key = user_key
        self._time_zone = time_zone
        self._swap_boundaries = swap_boundaries
        self._service_factory = service_factory
        self._cancel = cancel or asyncio.Event()
        self._progress = progress

    @property
    def cancel_event(self) -> asyncio.Event:
        return self._cancel

    async def run(self, spec: EventSpec, calendar_id: str) -> SyncResult:
        try:
            credentials_path = locate_credentials(self._candidates)
        except CredentialsNotFoundError as exc:
            logger.debug(f"No credentials file among {len(exc.searched)} candidates")
            return CredentialsMissing(searched=exc.searched)

        self._progress(f"Using credentials: {credentials_path}")

        try:
            return await self._submit(credentials_path, spec, calendar_id)
        except OperationCancelled:
            logger.info("Sync cancelled before the event was created")
            return Cancelled()
        except HttpError as exc:
            logger.debug(f"Calendar API rejected the insert: {exc}")
            return ApiError(message=provider_message(exc))
        except Exception as exc:  # noqa: BLE001 - every other failure ends the run the same way
            logger.opt(exception=exc).debug("Unexpected sync failure")
            return UnexpectedError(message=str(exc))

    async def _submit(self, credentials_path: Path, spec: EventSpec, calendar_id: str) -> Created:
        secrets = load_client_secrets(credentials_path)
        credentials = await self._broker.authorize(
            secrets,
            self._scopes,
            self._store,
            self._user_key,
            self._cancel,
        )

        client = AuthorizedClient(credentials, self._service_factory)
        body = build_event(spec, time_zone=self._time_zone, swap_boundaries=self._swap_boundaries)
        logger.info(f"Creating event '{spec.summary}' in calendar '{calendar_id}'")
        try:
            response = await call_or_cancel(
                self._cancel, client.create_event, calendar_id=calendar_id, body=body
            )
        finally:
            client.close()

        created = CreatedEvent.model_validate(response)
        return Created(id=created.id, link=created.html_link)
