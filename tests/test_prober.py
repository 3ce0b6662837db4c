"""
Tests for the mirror registry prober.
"""

import httpx
import pytest

from docker_sync.errors import ProbeError, ProbeErrorKind
from docker_sync.models.reference import ImageReference
from docker_sync.registry.prober import RegistryProber, parse_bearer_challenge

MIRROR = "ghcr.nju.edu.cn"
MANIFEST_URL = f"https://{MIRROR}/v2/alice/nginx/manifests/alpine"
CHALLENGE = 'Bearer realm="https://ghcr.nju.edu.cn/token",service="ghcr.nju.edu.cn",scope="repository:alice/nginx:pull"'


def make_prober(handler) -> RegistryProber:
    return RegistryProber("Alice", http=httpx.Client(transport=httpx.MockTransport(handler)))


@pytest.fixture
def reference():
    return ImageReference.parse("nginx:alpine")


class TestChallenge:
    """Tests for WWW-Authenticate parsing."""

    def test_parse_bearer(self):
        params = parse_bearer_challenge(CHALLENGE)

        assert params == {
            "realm": "https://ghcr.nju.edu.cn/token",
            "service": "ghcr.nju.edu.cn",
            "scope": "repository:alice/nginx:pull",
        }

    def test_non_bearer(self):
        assert parse_bearer_challenge('Basic realm="x"') is None


class TestExists:
    """Tests for RegistryProber.exists."""

    def test_present(self, reference):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        assert make_prober(handler).exists(reference, MIRROR) is True
        assert str(seen[0].url) == MANIFEST_URL
        assert seen[0].method == "HEAD"
        assert "application/vnd.oci.image.index.v1+json" in seen[0].headers["accept"]

    def test_absent(self, reference):
        assert make_prober(lambda r: httpx.Response(404)).exists(reference, MIRROR) is False

    def test_hub_copy_does_not_count_for_other_registry(self):
        hub_url = f"https://{MIRROR}/v2/alice/bitnami/redis/manifests/7"

        def handler(request):
            return httpx.Response(200 if str(request.url) == hub_url else 404)

        prober = make_prober(handler)

        assert prober.exists(ImageReference.parse("docker.io/bitnami/redis:7"), MIRROR) is True
        assert prober.exists(ImageReference.parse("ghcr.io/bitnami/redis:7"), MIRROR) is False
        assert prober.manifest_url(ImageReference.parse("ghcr.io/bitnami/redis:7"), MIRROR) == (
            f"https://{MIRROR}/v2/alice/ghcr.io/bitnami/redis/manifests/7"
        )

    def test_anonymous_token_handshake(self, reference):
        seen = []

        def handler(request):
            seen.append(request)
            if request.url.path == "/token":
                assert request.url.params["scope"] == "repository:alice/nginx:pull"
                return httpx.Response(200, json={"token": "anon"})
            if request.headers.get("authorization") == "Bearer anon":
                return httpx.Response(200)
            return httpx.Response(401, headers={"www-authenticate": CHALLENGE})

        assert make_prober(handler).exists(reference, MIRROR) is True
        assert len(seen) == 3

    def test_handshake_then_absent(self, reference):
        def handler(request):
            if request.url.path == "/token":
                return httpx.Response(200, json={"access_token": "anon"})
            if request.headers.get("authorization"):
                return httpx.Response(404)
            return httpx.Response(401, headers={"www-authenticate": CHALLENGE})

        assert make_prober(handler).exists(reference, MIRROR) is False

    def test_still_unauthorized_after_token(self, reference):
        def handler(request):
            if request.url.path == "/token":
                return httpx.Response(200, json={"token": "anon"})
            return httpx.Response(401, headers={"www-authenticate": CHALLENGE})

        with pytest.raises(ProbeError) as exc_info:
            make_prober(handler).exists(reference, MIRROR)
        assert exc_info.value.kind == ProbeErrorKind.UNAUTHORIZED

    def test_forbidden(self, reference):
        with pytest.raises(ProbeError) as exc_info:
            make_prober(lambda r: httpx.Response(403)).exists(reference, MIRROR)
        assert exc_info.value.kind == ProbeErrorKind.UNAUTHORIZED

    def test_server_error_is_network(self, reference):
        with pytest.raises(ProbeError) as exc_info:
            make_prober(lambda r: httpx.Response(503)).exists(reference, MIRROR)
        assert exc_info.value.kind == ProbeErrorKind.NETWORK

    def test_transport_error_is_network_not_absent(self, reference):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        with pytest.raises(ProbeError) as exc_info:
            make_prober(handler).exists(reference, MIRROR)
        assert exc_info.value.kind == ProbeErrorKind.NETWORK

    def test_unexpected_status_is_malformed(self, reference):
        with pytest.raises(ProbeError) as exc_info:
            make_prober(lambda r: httpx.Response(418)).exists(reference, MIRROR)
        assert exc_info.value.kind == ProbeErrorKind.MALFORMED

    def test_unreadable_token_response_is_malformed(self, reference):
        def handler(request):
            if request.url.path == "/token":
                return httpx.Response(200, text="not json")
            return httpx.Response(401, headers={"www-authenticate": CHALLENGE})

        with pytest.raises(ProbeError) as exc_info:
            make_prober(handler).exists(reference, MIRROR)
        assert exc_info.value.kind == ProbeErrorKind.MALFORMED

    def test_namespaced_image_path(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200)

        make_prober(handler).exists(ImageReference.parse("bitnami/redis:7"), MIRROR)

        assert seen == [f"https://{MIRROR}/v2/alice/bitnami/redis/manifests/7"]
