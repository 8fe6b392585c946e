"""
HTTP utilities for the image pipeline.

Browser-like request headers and strict URL validation. Every URL that comes
from the knowledge oracle or from a redirect goes through validate_url()
before anything dereferences it.
"""

import ipaddress

import httpx

from equipment_images.config import settings


# Spoofed browser headers; many manufacturer CDNs refuse non-browser clients
IMAGE_REQUEST_HEADERS = {
    "User-Agent": settings.browser.user_agent,
    "Accept": "image/webp,image/apng,image/*,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

REDIRECT_STATUSES = {301, 302, 303, 307, 308}


class InvalidURLError(ValueError):
    """Raised when a URL fails strict validation."""
    pass


def _is_private_host(host: str) -> bool:
    host = host.strip("[]").lower()
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


def validate_url(url: str, allow_private_hosts: bool | None = None) -> httpx.URL:
    """
    Parse and validate an absolute http(s) URL.

    Args:
        url: Candidate URL string
        allow_private_hosts: Permit loopback/private IP literals and localhost.
            Defaults to the IMAGES_ALLOW_PRIVATE_HOSTS setting.

    Returns:
        Parsed httpx.URL

    Raises:
        InvalidURLError: If the URL is malformed or points somewhere we refuse to go
    """
    if allow_private_hosts is None:
        allow_private_hosts = settings.images.allow_private_hosts

    if not isinstance(url, str) or not url.strip():
        raise InvalidURLError("Invalid URL: empty")

    candidate = url.strip()
    if any(ch.isspace() for ch in candidate):
        raise InvalidURLError(f"Invalid URL: {candidate!r}")

    try:
        parsed = httpx.URL(candidate)
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        raise InvalidURLError(f"Invalid URL: {candidate!r}") from e

    if parsed.scheme not in ("http", "https"):
        raise InvalidURLError(f"Unsupported URL scheme: {parsed.scheme or 'none'}")
    if not parsed.host:
        raise InvalidURLError(f"Invalid URL (no host): {candidate!r}")
    if parsed.userinfo:
        raise InvalidURLError("Invalid URL: embedded credentials")
    if not allow_private_hosts and _is_private_host(parsed.host):
        raise InvalidURLError(f"Refusing private host: {parsed.host}")

    return parsed


def url_origin(url: httpx.URL) -> str:
    """Return scheme://host[:port] for use as a Referer."""
    host = url.host
    if ":" in host:
        host = f"[{host}]"
    if url.port:
        return f"{url.scheme}://{host}:{url.port}"
    return f"{url.scheme}://{host}"


def is_redirect(response: httpx.Response) -> bool:
    """True for a 3xx response that carries a Location header."""
    return response.status_code in REDIRECT_STATUSES and "location" in response.headers
