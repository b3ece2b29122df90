"""Host classification for the logical-host dimension of every counter."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from urllib.parse import urlsplit

UNKNOWN_HOST = "unknown"

MAX_HOST_LENGTH = 253
DEFAULT_MAX_HOST_LABELS = 3

# RFC-1123 hostname: labels of [a-z0-9-] separated by dots, no label
# starting or ending with a hyphen.
_VALID_HOSTNAME_RE = re.compile(
    r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)*[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$"
)
_IPV4_RE = re.compile(r"^\d{1,3}(?:\.\d{1,3}){3}$")


def url_path(url: str) -> str | None:
    """Return the path component of an absolute URL, or None if malformed."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return parts.path or "/"


@dataclass(frozen=True, slots=True)
class HostClassifier:
    """Map a request URL to the host bucket used in counter keys.

    Anything malformed, oversized, an IPv4 literal, deeper than
    ``max_labels`` (e.g. "a.b.c.d" is 4 labels; rejects www.www.www... floods)
    or outside ``allowed_hosts`` collapses to ``UNKNOWN_HOST``.
    """

    allowed_hosts: frozenset[str] | None = None
    max_labels: int = DEFAULT_MAX_HOST_LABELS

    @classmethod
    def from_allow_list(
        cls, hosts: Iterable[str] | None, *, max_labels: int = DEFAULT_MAX_HOST_LABELS
    ) -> HostClassifier:
        allowed = None
        if hosts is not None:
            allowed = frozenset(h.strip().lower() for h in hosts if h.strip())
        return cls(allowed_hosts=allowed, max_labels=max_labels)

    def is_valid(self, host: str) -> bool:
        return (
            len(host) <= MAX_HOST_LENGTH
            and _VALID_HOSTNAME_RE.match(host) is not None
            and _IPV4_RE.match(host) is None
            and len(host.split(".")) <= self.max_labels
        )

    def classify(self, url: str) -> str:
        """Return the normalized host for ``url`` or ``UNKNOWN_HOST``."""
        try:
            host = urlsplit(url).hostname
        except ValueError:
            return UNKNOWN_HOST
        if not host:
            return UNKNOWN_HOST

        host = host.lower()
        if not self.is_valid(host):
            return UNKNOWN_HOST
        if self.allowed_hosts is not None and host not in self.allowed_hosts:
            return UNKNOWN_HOST
        return host
