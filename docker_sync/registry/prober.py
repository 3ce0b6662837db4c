"""
Registry Prober — Ask the mirror registry whether a tag already exists.

Uses the OCI distribution API:

    HEAD https://{mirror_host}/v2/{owner}/{mirror_path}/manifests/{tag}

Public GHCR-style registries answer the first anonymous request with a
401 and a Bearer challenge. We fetch an anonymous pull token from the
challenge realm and retry once.

A failed probe is an error, never "not there": the orchestrator must not
dispatch a sync just because the registry was unreachable.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Optional

import httpx

from ..errors import ProbeError, ProbeErrorKind
from ..github.client import build_http_client
from ..models.reference import ImageReference

logger = logging.getLogger(__name__)

MANIFEST_ACCEPT = ", ".join([
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.docker.distribution.manifest.v2+json",
])

CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')


def parse_bearer_challenge(header: str) -> Optional[Dict[str, str]]:
    """
    Parse ``Bearer realm="..",service="..",scope=".."``.

    Returns None when the header is not a Bearer challenge.
    """
    scheme, _, params = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return {key.lower(): value for key, value in CHALLENGE_PARAM_RE.findall(params)}


class RegistryProber:
    """
    Existence checks against the mirror registry.

    Usage:
        prober = RegistryProber(owner="alice")
        if prober.exists(ImageReference.parse("nginx:alpine"), "ghcr.nju.edu.cn"):
            ...
    """

    def __init__(
        self,
        owner: str,
        http: Optional[httpx.Client] = None,
        timeout: float = 30.0,
        proxy: Optional[str] = None,
    ):
        self.owner = owner.lower()
        self.http = http or build_http_client(timeout=timeout, proxy=proxy)

    def close(self) -> None:
        self.http.close()

    def manifest_url(self, reference: ImageReference, mirror_host: str) -> str:
        return f"https://{mirror_host}/v2/{self.owner}/{reference.mirror_path}/manifests/{reference.tag}"

    def exists(self, reference: ImageReference, mirror_host: str) -> bool:
        """
        True if ``reference`` is pullable from the mirror.

        Raises ProbeError when the registry cannot give a clear answer.
        """
        url = self.manifest_url(reference, mirror_host)

        resp = self._head(url)
        if resp.status_code == 401:
            challenge = parse_bearer_challenge(resp.headers.get("www-authenticate", ""))
            if challenge is not None:
                scope = f"repository:{self.owner}/{reference.mirror_path}:pull"
                token = self._anonymous_token(challenge, scope)
                resp = self._head(url, token)

        if resp.is_success:
            logger.debug(f"[probe] {reference.key} present at {mirror_host}")
            return True
        if resp.status_code == 404:
            logger.debug(f"[probe] {reference.key} absent at {mirror_host}")
            return False
        if resp.status_code in (401, 403):
            raise ProbeError(
                ProbeErrorKind.UNAUTHORIZED,
                f"{mirror_host} refused access to {self.owner}/{reference.mirror_path}",
                {"status_code": resp.status_code},
            )
        if resp.status_code >= 500 or resp.status_code == 429:
            raise ProbeError(
                ProbeErrorKind.NETWORK,
                f"{mirror_host} answered HTTP {resp.status_code}",
                {"status_code": resp.status_code},
            )
        raise ProbeError(
            ProbeErrorKind.MALFORMED,
            f"Unexpected HTTP {resp.status_code} from {mirror_host}",
            {"status_code": resp.status_code},
        )

    def _head(self, url: str, token: Optional[str] = None) -> httpx.Response:
        headers = {"Accept": MANIFEST_ACCEPT}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            return self.http.head(url, headers=headers)
        except httpx.HTTPError as e:
            raise ProbeError(ProbeErrorKind.NETWORK, f"HEAD {url} failed: {e}") from e

    def _anonymous_token(self, challenge: Dict[str, str], default_scope: str) -> str:
        realm = challenge.get("realm")
        if not realm:
            raise ProbeError(ProbeErrorKind.MALFORMED, "Bearer challenge without realm")

        params = {"scope": challenge.get("scope") or default_scope}
        if challenge.get("service"):
            params["service"] = challenge["service"]

        try:
            resp = self.http.get(realm, params=params)
        except httpx.HTTPError as e:
            raise ProbeError(ProbeErrorKind.NETWORK, f"Token request to {realm} failed: {e}") from e

        if resp.status_code in (401, 403):
            raise ProbeError(
                ProbeErrorKind.UNAUTHORIZED,
                f"Anonymous pull token refused by {realm}",
                {"status_code": resp.status_code},
            )
        if resp.status_code >= 500:
            raise ProbeError(ProbeErrorKind.NETWORK, f"{realm} answered HTTP {resp.status_code}")

        try:
            data = resp.json()
            token = data.get("token") or data.get("access_token")
        except (ValueError, AttributeError) as e:
            raise ProbeError(ProbeErrorKind.MALFORMED, f"Unreadable token response from {realm}") from e
        if not resp.is_success or not token:
            raise ProbeError(ProbeErrorKind.MALFORMED, f"No token in response from {realm}")
        return token
