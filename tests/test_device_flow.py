"""
Tests for the GitHub device-flow authenticator.

The token endpoint is scripted through httpx.MockTransport; FakeClock
records every poll interval.
"""

from datetime import timedelta
from urllib.parse import parse_qs

import httpx
import pytest

from docker_sync.auth.device_flow import ACCESS_TOKEN_URL, DEVICE_CODE_URL, DeviceFlowAuthenticator
from docker_sync.errors import AuthError, AuthErrorKind
from docker_sync.persistence.credential_store import CredentialStore

DEVICE_RESPONSE = {
    "device_code": "dev-123",
    "user_code": "ABCD-1234",
    "verification_uri": "https://github.com/login/device",
    "expires_in": 900,
    "interval": 5,
}
TOKEN_RESPONSE = {
    "access_token": "gho_newtoken",
    "token_type": "bearer",
    "scope": "repo,workflow,write:packages,read:packages",
}


class ScriptedGitHub:
    """Answers the device endpoint once and the token endpoint from a script."""

    def __init__(self, token_answers, device_answer=None):
        self.token_answers = list(token_answers)
        self.device_answer = device_answer or DEVICE_RESPONSE
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url == DEVICE_CODE_URL:
            return httpx.Response(200, json=self.device_answer)
        if url == ACCESS_TOKEN_URL:
            answer = self.token_answers.pop(0)
            if isinstance(answer, Exception):
                raise answer
            return httpx.Response(200, json=answer)
        return httpx.Response(404)

    @property
    def token_polls(self) -> int:
        return sum(1 for r in self.requests if str(r.url) == ACCESS_TOKEN_URL)


def make_authenticator(github, tmp_path, clock, presenter=None):
    http = httpx.Client(transport=httpx.MockTransport(github))
    store = CredentialStore(tmp_path / "credentials.json")
    auth = DeviceFlowAuthenticator(
        "client-id",
        store,
        presenter=presenter,
        http=http,
        clock=clock,
        sleep=clock.sleep,
    )
    return auth, store


class TestLogin:
    """Tests for the full login flow."""

    def test_pending_pending_slow_down_then_token(self, tmp_path, clock):
        github = ScriptedGitHub([
            {"error": "authorization_pending"},
            {"error": "authorization_pending"},
            {"error": "slow_down"},
            TOKEN_RESPONSE,
        ])
        auth, store = make_authenticator(github, tmp_path, clock)

        creds = auth.login()

        assert creds.access_token == "gho_newtoken"
        assert github.token_polls == 4
        # interval raised exactly once and never lowered
        assert clock.sleeps == [5, 5, 5, 10]
        assert store.load() == creds

    def test_slow_down_uses_provider_interval_when_larger(self, tmp_path, clock):
        github = ScriptedGitHub([
            {"error": "slow_down", "interval": 17},
            {"error": "authorization_pending"},
            TOKEN_RESPONSE,
        ])
        auth, _ = make_authenticator(github, tmp_path, clock)

        auth.login()

        assert clock.sleeps == [5, 17, 17]

    def test_presenter_sees_user_code(self, tmp_path, clock):
        seen = []
        github = ScriptedGitHub([TOKEN_RESPONSE])
        auth, _ = make_authenticator(github, tmp_path, clock, presenter=seen.append)

        auth.login()

        assert [s.user_code for s in seen] == ["ABCD-1234"]
        assert seen[0].verification_uri == "https://github.com/login/device"

    def test_requests_scopes_and_device_grant(self, tmp_path, clock):
        github = ScriptedGitHub([TOKEN_RESPONSE])
        auth, _ = make_authenticator(github, tmp_path, clock)

        auth.login()

        device_form = parse_qs(github.requests[0].content.decode())
        assert device_form["client_id"] == ["client-id"]
        assert device_form["scope"] == ["repo workflow write:packages read:packages"]
        token_form = parse_qs(github.requests[1].content.decode())
        assert token_form["grant_type"] == ["urn:ietf:params:oauth:grant-type:device_code"]
        assert token_form["device_code"] == ["dev-123"]

    def test_scopes_recorded_from_token_response(self, tmp_path, clock):
        github = ScriptedGitHub([TOKEN_RESPONSE])
        auth, _ = make_authenticator(github, tmp_path, clock)

        creds = auth.login()

        assert creds.scopes == {"repo", "workflow", "write:packages", "read:packages"}
        assert creds.is_valid()

    def test_expires_in_honoured(self, tmp_path, clock):
        github = ScriptedGitHub([dict(TOKEN_RESPONSE, expires_in=28800)])
        auth, _ = make_authenticator(github, tmp_path, clock)

        creds = auth.login()

        assert creds.expires_at is not None

    def test_string_expires_in_honoured(self, tmp_path, clock):
        github = ScriptedGitHub([dict(TOKEN_RESPONSE, expires_in="28800")])
        auth, store = make_authenticator(github, tmp_path, clock)

        creds = auth.login()

        assert creds.expires_at - creds.obtained_at == timedelta(seconds=28800)
        assert store.load() == creds


class TestTerminalErrors:
    """Tests for failed logins: no further polling after a terminal answer."""

    @pytest.mark.parametrize("error,kind", [
        ("access_denied", AuthErrorKind.DENIED),
        ("expired_token", AuthErrorKind.EXPIRED),
        ("unsupported_grant_type", AuthErrorKind.PROVIDER),
    ])
    def test_error_codes(self, tmp_path, clock, error, kind):
        github = ScriptedGitHub([{"error": "authorization_pending"}, {"error": error}, TOKEN_RESPONSE])
        auth, store = make_authenticator(github, tmp_path, clock)

        with pytest.raises(AuthError) as exc_info:
            auth.login()

        assert exc_info.value.kind == kind
        assert github.token_polls == 2
        assert store.load() is None

    def test_validity_window_elapsed(self, tmp_path, clock):
        device = dict(DEVICE_RESPONSE, expires_in=12)
        github = ScriptedGitHub([{"error": "authorization_pending"}] * 10, device_answer=device)
        auth, _ = make_authenticator(github, tmp_path, clock)

        with pytest.raises(AuthError) as exc_info:
            auth.login()

        assert exc_info.value.kind == AuthErrorKind.TIMEOUT
        assert github.token_polls == 2

    def test_transport_failure(self, tmp_path, clock):
        github = ScriptedGitHub([httpx.ConnectError("offline")])
        auth, _ = make_authenticator(github, tmp_path, clock)

        with pytest.raises(AuthError) as exc_info:
            auth.login()

        assert exc_info.value.kind == AuthErrorKind.NETWORK

    def test_unreadable_token_expiry(self, tmp_path, clock):
        github = ScriptedGitHub([dict(TOKEN_RESPONSE, expires_in="soon")])
        auth, store = make_authenticator(github, tmp_path, clock)

        with pytest.raises(AuthError) as exc_info:
            auth.login()

        assert exc_info.value.kind == AuthErrorKind.PROVIDER
        assert store.load() is None

    def test_device_code_rejected(self, tmp_path, clock):
        github = ScriptedGitHub([], device_answer={"error": "incorrect_client_credentials"})
        auth, _ = make_authenticator(github, tmp_path, clock)

        with pytest.raises(AuthError) as exc_info:
            auth.login()

        assert exc_info.value.kind == AuthErrorKind.PROVIDER
        assert github.token_polls == 0
