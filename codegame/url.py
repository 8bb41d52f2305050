"""Server address normalization and transport detection."""

from __future__ import annotations

import logging

import aiohttp

_LOGGER = logging.getLogger(__name__)

_SCHEME_SEPARATOR = "://"


def normalize_url(url: str) -> str:
    """Reduce a user-supplied address to ``host[:port][/path]``.

    At most one ``scheme://`` prefix is removed, so
    ``normalize_url("wss://host/path")`` yields ``"host/path"``. Leading and
    trailing slashes are stripped.
    """
    url = url.strip("/")
    parts = url.split(_SCHEME_SEPARATOR)
    if len(parts) < 2:
        return url
    return _SCHEME_SEPARATOR.join(parts[1:]).strip("/")


def compose_base_url(scheme: str, tls: bool, address: str) -> str:
    """Build ``scheme[s]://address`` for an already normalized address."""
    if tls:
        return f"{scheme}s{_SCHEME_SEPARATOR}{address}"
    return f"{scheme}{_SCHEME_SEPARATOR}{address}"


async def probe_tls(
    session: aiohttp.ClientSession,
    address: str,
    *,
    timeout: float | None = None,
) -> bool:
    """Return True if the server answers over HTTPS.

    Any 2xx status or a 404 counts as reachable. Transport failures (DNS, TCP,
    TLS handshake, timeout) mean plain HTTP. This is a heuristic and does no
    certificate pinning beyond what aiohttp already verifies.
    """
    url = compose_base_url("http", True, address)
    try:
        async with session.get(
            url,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            return 200 <= resp.status < 300 or resp.status == 404
    except (TimeoutError, OSError, aiohttp.ClientError) as err:
        _LOGGER.debug("[%s] TLS probe failed, using plain transport: %s", address, err)
        return False
