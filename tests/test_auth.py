"""Tests for credential discovery, client secret parsing and the authorization broker."""

from __future__ import annotations

import asyncio
import itertools
import json
import threading
from datetime import timedelta
from pathlib import Path

import pytest
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials

from tests.fakes.fake_google import (
    CLIENT_SECRET,
    FakeConsent,
    RefusingConsent,
    make_credentials,
    snapshot,
    utc_naive,
)
from traf_sync.auth import (
    AuthorizationBroker,
    AuthorizationCancelled,
    AuthorizationFailedError,
    AuthorizationRequiredError,
    AuthState,
    CredentialConfigurationError,
    CredentialsNotFoundError,
    load_client_secrets,
    locate_credentials,
)
from traf_sync.config import CALENDAR_SCOPES


class TestLocateCredentials:
    """Tests for locate_credentials."""

    @pytest.mark.parametrize("existing_index", [0, 1, 2])
    def test_returns_first_existing_for_every_ordering(self, tmp_path: Path, existing_index: int) -> None:
        paths = [tmp_path / f"dir{i}" / "credentials.json" for i in range(3)]
        for path in paths[existing_index:]:
            path.parent.mkdir(parents=True)
            path.write_text("{}", encoding="utf-8")

        for ordering in itertools.permutations(paths):
            expected = next(p for p in ordering if p.exists())
            assert locate_credentials(ordering) == expected

    def test_missing_everywhere_lists_candidates_in_order(self, tmp_path: Path) -> None:
        paths = [tmp_path / "config" / "credentials.json", tmp_path / "cwd" / "credentials.json"]

        with pytest.raises(CredentialsNotFoundError) as excinfo:
            locate_credentials(paths)

        assert excinfo.value.searched == tuple(paths)
        message = str(excinfo.value)
        assert message.index(str(paths[0])) < message.index(str(paths[1]))

    def test_directory_named_like_the_file_is_skipped(self, tmp_path: Path) -> None:
        decoy = tmp_path / "a" / "credentials.json"
        decoy.mkdir(parents=True)
        real = tmp_path / "b" / "credentials.json"
        real.parent.mkdir()
        real.write_text("{}", encoding="utf-8")

        assert locate_credentials([decoy, real]) == real

    def test_empty_candidate_list(self) -> None:
        with pytest.raises(CredentialsNotFoundError) as excinfo:
            locate_credentials([])
        assert excinfo.value.searched == ()


class TestLoadClientSecrets:
    """Tests for load_client_secrets."""

    def test_installed_client(self, credentials_file: Path) -> None:
        bundle = load_client_secrets(credentials_file)

        assert bundle.client_type == "installed"
        assert bundle.client_id.startswith("1234-")
        assert bundle.source == credentials_file

    def test_repr_never_shows_secret(self, credentials_file: Path) -> None:
        bundle = load_client_secrets(credentials_file)
        assert CLIENT_SECRET not in repr(bundle)

    def test_web_client_gets_default_endpoints(self, tmp_path: Path) -> None:
        path = tmp_path / "credentials.json"
        path.write_text(
            json.dumps({"web": {"client_id": "web-id", "client_secret": "web-secret"}}),
            encoding="utf-8",
        )

        bundle = load_client_secrets(path)

        section = bundle.client_config["web"]
        assert section["token_uri"] == "https://oauth2.googleapis.com/token"
        assert section["auth_uri"] == "https://accounts.google.com/o/oauth2/auth"

    @pytest.mark.parametrize(
        "content, match",
        [
            ("not json", "not valid JSON"),
            ("[]", "JSON object"),
            ('{"other": {}}', "no 'installed' or 'web'"),
            ('{"installed": {"client_id": "x"}}', "client_secret"),
        ],
    )
    def test_malformed_files(self, tmp_path: Path, content: str, match: str) -> None:
        path = tmp_path / "credentials.json"
        path.write_text(content, encoding="utf-8")

        with pytest.raises(CredentialConfigurationError, match=match):
            load_client_secrets(path)


@pytest.fixture
def secrets(credentials_file: Path):
    return load_client_secrets(credentials_file)


class TestAuthorizationBroker:
    """Tests for AuthorizationBroker.authorize."""

    @pytest.mark.asyncio
    async def test_valid_stored_token_is_reused_without_consent(self, secrets, token_store) -> None:
        token_store.save("user", make_credentials(token="stored"))
        broker = AuthorizationBroker(consent=RefusingConsent())

        first = await broker.authorize(secrets, CALENDAR_SCOPES, token_store, "user")
        second = await broker.authorize(secrets, CALENDAR_SCOPES, token_store, "user")

        assert first.token == "stored"
        assert second.token == "stored"
        assert broker.history == (AuthState.HAS_VALID_TOKEN, AuthState.AUTHORIZED)

    @pytest.mark.asyncio
    async def test_no_token_runs_consent_and_persists(self, secrets, token_store) -> None:
        consent = FakeConsent()
        broker = AuthorizationBroker(consent=consent)

        creds = await broker.authorize(secrets, CALENDAR_SCOPES, token_store, "user")

        assert creds.token == "consented-token"
        assert len(consent.calls) == 1
        client_config, scopes = consent.calls[0]
        assert "installed" in client_config
        assert scopes == CALENDAR_SCOPES
        assert token_store.load("user").token == "consented-token"
        assert broker.history == (
            AuthState.NO_TOKEN,
            AuthState.AWAITING_CONSENT,
            AuthState.AUTHORIZED,
        )

    @pytest.mark.asyncio
    async def test_second_run_after_consent_is_silent(self, secrets, token_store) -> None:
        await AuthorizationBroker(consent=FakeConsent()).authorize(
            secrets, CALENDAR_SCOPES, token_store, "user"
        )

        creds = await AuthorizationBroker(consent=RefusingConsent()).authorize(
            secrets, CALENDAR_SCOPES, token_store, "user"
        )

        assert creds.token == "consented-token"

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed_and_saved(
        self, secrets, token_store, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        token_store.save("user", make_credentials(token="old", expires_in=timedelta(hours=-1)))

        def fake_refresh(self: Credentials, request) -> None:
            self.token = "refreshed"
            self.expiry = utc_naive(timedelta(hours=1))

        monkeypatch.setattr(Credentials, "refresh", fake_refresh)
        broker = AuthorizationBroker(consent=RefusingConsent(), request_factory=object)

        creds = await broker.authorize(secrets, CALENDAR_SCOPES, token_store, "user")

        assert creds.token == "refreshed"
        assert token_store.load("user").token == "refreshed"
        assert broker.history == (AuthState.HAS_EXPIRED_TOKEN, AuthState.AUTHORIZED)

    @pytest.mark.asyncio
    async def test_rejected_refresh_falls_back_to_consent(
        self, secrets, token_store, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        token_store.save("user", make_credentials(token="old", expires_in=timedelta(hours=-1)))

        def failing_refresh(self: Credentials, request) -> None:
            raise RefreshError("invalid_grant: Token has been expired or revoked.")

        monkeypatch.setattr(Credentials, "refresh", failing_refresh)
        consent = FakeConsent()
        broker = AuthorizationBroker(consent=consent, request_factory=object)

        creds = await broker.authorize(secrets, CALENDAR_SCOPES, token_store, "user")

        assert creds.token == "consented-token"
        assert len(consent.calls) == 1
        assert token_store.load("user").token == "consented-token"
        assert broker.history == (
            AuthState.HAS_EXPIRED_TOKEN,
            AuthState.AWAITING_CONSENT,
            AuthState.AUTHORIZED,
        )

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token_needs_consent(
        self, secrets, token_store, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        stale = make_credentials(token="old", refresh_token=None, expires_in=timedelta(hours=-1))
        monkeypatch.setattr(token_store, "load", lambda key: stale)
        consent = FakeConsent()

        creds = await AuthorizationBroker(consent=consent).authorize(
            secrets, CALENDAR_SCOPES, token_store, "user"
        )

        assert creds.token == "consented-token"
        assert len(consent.calls) == 1

    @pytest.mark.asyncio
    async def test_token_with_narrower_scopes_is_replaced(self, secrets, token_store) -> None:
        token_store.save(
            "user",
            make_credentials(scopes=["https://www.googleapis.com/auth/calendar.readonly"]),
        )
        consent = FakeConsent()

        creds = await AuthorizationBroker(consent=consent).authorize(
            secrets, CALENDAR_SCOPES, token_store, "user"
        )

        assert creds.token == "consented-token"
        assert len(consent.calls) == 1

    @pytest.mark.asyncio
    async def test_token_from_another_client_is_replaced(self, secrets, token_store) -> None:
        token_store.save("user", make_credentials(client_id="someone-else"))
        consent = FakeConsent()

        await AuthorizationBroker(consent=consent).authorize(
            secrets, CALENDAR_SCOPES, token_store, "user"
        )

        assert len(consent.calls) == 1

    @pytest.mark.asyncio
    async def test_non_interactive_without_token_raises(self, secrets, token_store) -> None:
        broker = AuthorizationBroker(consent=RefusingConsent(), interactive=False)

        with pytest.raises(AuthorizationRequiredError):
            await broker.authorize(secrets, CALENDAR_SCOPES, token_store, "user")

    @pytest.mark.asyncio
    async def test_consent_failure_is_wrapped(self, secrets, token_store) -> None:
        consent = FakeConsent(error=ValueError("access_denied"))

        with pytest.raises(AuthorizationFailedError, match="access_denied"):
            await AuthorizationBroker(consent=consent).authorize(
                secrets, CALENDAR_SCOPES, token_store, "user"
            )

        assert token_store.load("user") is None

    @pytest.mark.asyncio
    async def test_cancel_during_consent_leaves_store_untouched(self, secrets, token_store) -> None:
        token_store.save(
            "user",
            make_credentials(scopes=["https://www.googleapis.com/auth/calendar.readonly"]),
        )
        before = snapshot(token_store.directory)
        consent = FakeConsent(block=True)
        broker = AuthorizationBroker(consent=consent)
        cancel = asyncio.Event()

        task = asyncio.create_task(
            broker.authorize(secrets, CALENDAR_SCOPES, token_store, "user", cancel)
        )
        while not consent.started.is_set():
            await asyncio.sleep(0.01)
        cancel.set()

        with pytest.raises(AuthorizationCancelled):
            await task

        consent.release.set()
        await asyncio.sleep(0.05)
        assert snapshot(token_store.directory) == before
        assert broker.state is AuthState.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_before_consent_never_prompts(self, secrets, token_store) -> None:
        cancel = asyncio.Event()
        cancel.set()
        broker = AuthorizationBroker(consent=RefusingConsent())

        with pytest.raises(AuthorizationCancelled):
            await broker.authorize(secrets, CALENDAR_SCOPES, token_store, "user", cancel)

        assert snapshot(token_store.directory) == {}
        assert broker.history == (
            AuthState.NO_TOKEN,
            AuthState.AWAITING_CONSENT,
            AuthState.CANCELLED,
        )

    @pytest.mark.asyncio
    async def test_cancel_during_refresh_leaves_store_untouched(
        self, secrets, token_store, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        token_store.save("user", make_credentials(token="old", expires_in=timedelta(hours=-1)))
        before = snapshot(token_store.directory)
        started = threading.Event()
        release = threading.Event()

        def slow_refresh(self: Credentials, request) -> None:
            started.set()
            release.wait(5)
            self.token = "refreshed"
            self.expiry = utc_naive(timedelta(hours=1))

        monkeypatch.setattr(Credentials, "refresh", slow_refresh)
        broker = AuthorizationBroker(consent=RefusingConsent(), request_factory=object)
        cancel = asyncio.Event()

        task = asyncio.create_task(
            broker.authorize(secrets, CALENDAR_SCOPES, token_store, "user", cancel)
        )
        while not started.is_set():
            await asyncio.sleep(0.01)
        cancel.set()

        with pytest.raises(AuthorizationCancelled):
            await task

        release.set()
        await asyncio.sleep(0.05)
        assert snapshot(token_store.directory) == before
        assert broker.state is AuthState.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_as_refresh_finishes_skips_save(
        self, secrets, token_store, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        token_store.save("user", make_credentials(token="old", expires_in=timedelta(hours=-1)))
        before = snapshot(token_store.directory)
        loop = asyncio.get_running_loop()
        cancel = asyncio.Event()

        def refresh_then_cancel(self: Credentials, request) -> None:
            loop.call_soon_threadsafe(cancel.set)
            self.token = "refreshed"
            self.expiry = utc_naive(timedelta(hours=1))

        monkeypatch.setattr(Credentials, "refresh", refresh_then_cancel)
        broker = AuthorizationBroker(consent=RefusingConsent(), request_factory=object)

        with pytest.raises(AuthorizationCancelled):
            await broker.authorize(secrets, CALENDAR_SCOPES, token_store, "user", cancel)

        assert snapshot(token_store.directory) == before
        assert token_store.load("user").token == "old"

    @pytest.mark.asyncio
    async def test_cancel_before_refresh_never_contacts_google(
        self, secrets, token_store, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        token_store.save("user", make_credentials(token="old", expires_in=timedelta(hours=-1)))
        refreshes: list[object] = []
        monkeypatch.setattr(
            Credentials, "refresh", lambda self, request: refreshes.append(request)
        )
        cancel = asyncio.Event()
        cancel.set()
        broker = AuthorizationBroker(consent=RefusingConsent(), request_factory=object)

        with pytest.raises(AuthorizationCancelled):
            await broker.authorize(secrets, CALENDAR_SCOPES, token_store, "user", cancel)

        await asyncio.sleep(0.05)
        assert refreshes == []
        assert broker.history == (AuthState.HAS_EXPIRED_TOKEN, AuthState.CANCELLED)
