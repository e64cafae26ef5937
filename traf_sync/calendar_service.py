"""Authorized handle around the Google Calendar v3 REST API."""

from __future__ import annotations

from typing import Any, Callable, Mapping

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

ServiceFactory = Callable[[Credentials], Any]


def build_calendar_resource(credentials: Credentials) -> Any:
    return build(
        "calendar",
        "v3",
        credentials=credentials,
        cache_discovery=False,
    )


class AuthorizedClient:
    """
    Valid user credentials plus the Calendar resource that signs requests with them.

    One instance belongs to one sync run; the underlying resource is built on
    first use.
    """

    def __init__(
        self,
        credentials: Credentials,
        service_factory: ServiceFactory = build_calendar_resource,
    ) -> None:
        self._credentials = credentials
        self._service_factory = service_factory
        self._service: Any | None = None

    def create_event(self, *, calendar_id: str, body: Mapping[str, Any]) -> Mapping[str, Any]:
        """Insert one event; a failure is raised as ``googleapiclient.errors.HttpError``."""
        request = self._get_service().events().insert(calendarId=calendar_id, body=dict(body))
        return request.execute(num_retries=0)

    def close(self) -> None:
        if self._service is not None and hasattr(self._service, "close"):
            self._service.close()
        self._service = None

    def _get_service(self) -> Any:
        if self._service is None:
            self._service = self._service_factory(self._credentials)
        return self._service
