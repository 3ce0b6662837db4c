"""
Device Flow — Log in to GitHub with the OAuth device authorization grant.

Flow:
1. Ask GitHub for a device code and a short user code
2. Show the user code and verification URL (presenter callback)
3. Poll the token endpoint until the user approves, denies, or the
   code expires
4. Persist the token with the credential store

The poll interval only ever grows: GitHub answers ``slow_down`` when we
poll too fast, and every later poll keeps the longer interval.

## Usage

    auth = DeviceFlowAuthenticator(client_id, CredentialStore(), presenter=print_device_code)
    credentials = auth.login()
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from ..errors import AuthError, AuthErrorKind
from ..github.client import build_http_client
from ..models.credentials import REQUESTED_SCOPES, Credentials, DeviceSession
from ..persistence.credential_store import CredentialStore

logger = logging.getLogger(__name__)

DEVICE_CODE_URL = "https://github.com/login/device/code"
ACCESS_TOKEN_URL = "https://github.com/login/oauth/access_token"
DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

DEFAULT_INTERVAL = 5
SLOW_DOWN_INCREMENT = 5
# Used when GitHub omits expires_in
DEFAULT_EXPIRES_IN = 900

Presenter = Callable[[DeviceSession], None]


class DeviceFlowAuthenticator:
    """Interactive GitHub login. Never retried automatically."""

    def __init__(
        self,
        client_id: str,
        store: CredentialStore,
        presenter: Optional[Presenter] = None,
        http: Optional[httpx.Client] = None,
        scopes: tuple = REQUESTED_SCOPES,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client_id = client_id
        self.store = store
        self.presenter = presenter
        self.http = http or build_http_client()
        self.scopes = scopes
        self._clock = clock
        self._sleep = sleep

    def login(self) -> Credentials:
        """
        Run the whole device flow and persist the result.

        Raises AuthError.
        """
        session = self.request_device_code()
        logger.info(f"[auth] Enter code {session.user_code} at {session.verification_uri}")
        if self.presenter is not None:
            self.presenter(session)

        credentials = self.wait_for_token(session)
        self.store.save(credentials)
        logger.info(f"[auth] Logged in, scopes: {', '.join(sorted(credentials.scopes)) or 'none reported'}")
        return credentials

    def request_device_code(self) -> DeviceSession:
        data = self._post(DEVICE_CODE_URL, {
            "client_id": self.client_id,
            "scope": " ".join(self.scopes),
        })
        if "error" in data:
            raise AuthError(
                AuthErrorKind.PROVIDER,
                f"Device code request rejected: {data.get('error_description') or data['error']}",
            )
        try:
            expires_in = int(data.get("expires_in") or DEFAULT_EXPIRES_IN)
            return DeviceSession(
                device_code=data["device_code"],
                user_code=data["user_code"],
                verification_uri=data["verification_uri"],
                poll_interval=int(data.get("interval") or DEFAULT_INTERVAL),
                expires_at=self._clock() + expires_in,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise AuthError(AuthErrorKind.PROVIDER, f"Unexpected device code response: {e!r}") from e

    def wait_for_token(self, session: DeviceSession) -> Credentials:
        """Poll the token endpoint until a terminal answer."""
        interval = session.poll_interval

        while True:
            if self._clock() + interval >= session.expires_at:
                raise AuthError(AuthErrorKind.TIMEOUT, "Device code validity window elapsed")
            self._sleep(interval)

            data = self._post(ACCESS_TOKEN_URL, {
                "client_id": self.client_id,
                "device_code": session.device_code,
                "grant_type": DEVICE_GRANT_TYPE,
            })

            if data.get("access_token"):
                try:
                    return Credentials.issued(
                        access_token=data["access_token"],
                        scope=data.get("scope"),
                        expires_in=data.get("expires_in"),
                    )
                except (TypeError, ValueError) as e:
                    raise AuthError(AuthErrorKind.PROVIDER, f"Unexpected token response: {e!r}") from e

            error = data.get("error")
            if error == "authorization_pending":
                logger.debug("[auth] Authorization pending")
                continue
            if error == "slow_down":
                interval = self._slowed_interval(interval, data)
                logger.debug(f"[auth] Asked to slow down, polling every {interval}s")
                continue
            if error == "expired_token":
                raise AuthError(AuthErrorKind.EXPIRED, "Device code expired, please log in again")
            if error == "access_denied":
                raise AuthError(AuthErrorKind.DENIED, "Authorization was denied")

            description = data.get("error_description") or error or "no token in response"
            raise AuthError(AuthErrorKind.PROVIDER, f"Token request failed: {description}")

    @staticmethod
    def _slowed_interval(interval: int, data: Dict[str, Any]) -> int:
        try:
            suggested = int(data.get("interval") or 0)
        except (TypeError, ValueError):
            suggested = 0
        if suggested > interval:
            return suggested
        return interval + SLOW_DOWN_INCREMENT

    def _post(self, url: str, form: Dict[str, str]) -> Dict[str, Any]:
        try:
            resp = self.http.post(url, data=form, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise AuthError(AuthErrorKind.NETWORK, f"Could not reach GitHub: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise AuthError(
                AuthErrorKind.PROVIDER,
                f"Unexpected response from {url} (HTTP {resp.status_code})",
            )
        if not resp.is_success and "error" not in data:
            raise AuthError(AuthErrorKind.PROVIDER, f"HTTP {resp.status_code} from {url}")
        return data
