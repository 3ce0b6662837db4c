"""
Image Reference — Parsed, normalised container image names.

    nginx                     → docker.io/library/nginx:latest
    bitnami/redis:7           → docker.io/bitnami/redis:7
    quay.io/prometheus/node-exporter:v1.8.0

Mirror paths:

    docker.io/library/nginx   → <owner>/nginx
    docker.io/bitnami/redis   → <owner>/bitnami/redis
    ghcr.io/bitnami/redis     → <owner>/ghcr.io/bitnami/redis

The normalised ``key`` identifies a reference for single-flight
coordination; ``mirror_path`` is where the workflow publishes it under
the mirror owner's namespace.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from ..errors import InvalidReferenceError

DOCKER_HUB = "docker.io"
DEFAULT_NAMESPACE = "library"
DEFAULT_TAG = "latest"

_DOCKER_HUB_ALIASES = {"docker.io", "index.docker.io", "registry-1.docker.io"}

PATH_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")


def _looks_like_host(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


@dataclass(frozen=True)
class ImageReference:
    """An image reference addressed by tag."""

    namespace: str
    repository: str
    tag: str = DEFAULT_TAG
    registry_host: Optional[str] = None

    @classmethod
    def parse(cls, raw: str) -> "ImageReference":
        """Parse a user-supplied reference such as ``nginx:alpine``."""
        text = (raw or "").strip()
        if not text:
            raise InvalidReferenceError(raw, "empty reference")
        if "@" in text:
            raise InvalidReferenceError(raw, "digest references are not supported")

        parts = text.split("/")
        host: Optional[str] = None
        if len(parts) > 1 and _looks_like_host(parts[0]):
            host = parts.pop(0).lower()
            if host in _DOCKER_HUB_ALIASES:
                host = DOCKER_HUB

        # Tag separator is the last ':' in the final path component only
        last = parts[-1]
        tag = DEFAULT_TAG
        if ":" in last:
            last, tag = last.rsplit(":", 1)
            parts[-1] = last
            if not TAG_RE.match(tag):
                raise InvalidReferenceError(raw, f"invalid tag '{tag}'")

        if len(parts) == 1:
            if host not in (None, DOCKER_HUB):
                raise InvalidReferenceError(raw, "missing namespace")
            parts.insert(0, DEFAULT_NAMESPACE)

        for component in parts:
            if not component:
                raise InvalidReferenceError(raw, "empty path component")
            if not PATH_COMPONENT_RE.match(component):
                raise InvalidReferenceError(
                    raw, f"'{component}' must be lowercase letters, digits and separators"
                )

        return cls(
            namespace=parts[0],
            repository="/".join(parts[1:]),
            tag=tag,
            registry_host=host,
        )

    @property
    def host(self) -> str:
        return self.registry_host or DOCKER_HUB

    @property
    def is_docker_hub(self) -> bool:
        return self.host == DOCKER_HUB

    @property
    def source_image(self) -> str:
        """Fully qualified upstream repository, without tag."""
        return f"{self.host}/{self.namespace}/{self.repository}"

    @property
    def key(self) -> str:
        """Normalised identity used for single-flight coordination."""
        return f"{self.source_image}:{self.tag}"

    @property
    def mirror_path(self) -> str:
        """
        Repository path under the mirror owner.

        Docker Hub images keep their short path; images from any other
        registry are prefixed with its host.
        """
        if self.is_docker_hub:
            if self.namespace == DEFAULT_NAMESPACE:
                return self.repository
            return f"{self.namespace}/{self.repository}"
        # ports are not valid in a repository path
        host = self.host.replace(":", "-")
        return f"{host}/{self.namespace}/{self.repository}"

    def mirror_image(self, mirror_host: str, owner: str) -> str:
        """Pullable mirror reference, e.g. ``ghcr.nju.edu.cn/alice/nginx:alpine``."""
        return f"{mirror_host}/{owner.lower()}/{self.mirror_path}:{self.tag}"

    def __str__(self) -> str:
        return self.key
