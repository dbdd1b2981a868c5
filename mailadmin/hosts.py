"""Resolve the single IMAP host an admin command should act on."""

from __future__ import annotations

from typing import List, Optional, Union
from urllib.parse import urlparse


class HostResolutionError(ValueError):
    """Raised when no single host can be derived from the configuration."""


def resolve_host(
    configured: Union[str, List[str], None], host: Optional[str] = None
) -> str:
    """Return the host name to use.

    An explicit ``host`` wins. Otherwise the configured value must name
    exactly one host. URL-like values (``tls://imap.example.com:993``) are
    reduced to their host name.
    """
    if not host:
        if isinstance(configured, str) and configured:
            host = configured
        elif isinstance(configured, (list, tuple)) and len(configured) == 1:
            host = configured[0]
        else:
            raise HostResolutionError("Specify a host name")

    parsed = urlparse(host)
    if parsed.scheme and parsed.hostname:
        return parsed.hostname
    return host
