"""Validation utilities for redirect targets and short tokens."""

import re
from typing import Optional
from urllib.parse import ParseResult, urlparse

from .errors import DisallowedScheme, InvalidURL, SelfReferential

MAX_URL_LENGTH = 2048
MAX_SHORTENED_LENGTH = 100

ALLOWED_SCHEMES = frozenset({"http", "https", "magnet", "steam", "spotify"})

# Path segments the web app mounts; a link may never shadow them
RESERVED_ROUTES = frozenset({"api", "docs", "redoc", "not-found"})

_ALPHANUMERIC = re.compile(r"[a-zA-Z0-9]+")


def is_alphanumeric(value: str) -> bool:
    return bool(value) and _ALPHANUMERIC.fullmatch(value) is not None


def is_reserved_route(value: str) -> bool:
    return value.lower() in RESERVED_ROUTES


def _parse(raw: str) -> Optional[ParseResult]:
    try:
        parsed = urlparse(raw)
        # Accessing port validates it; urlparse itself is lazy about it
        parsed.port
    except ValueError:
        return None
    return parsed


def _looks_schemeless(raw: str, parsed: ParseResult) -> bool:
    """True when the text before the first colon is a host, not a scheme.

    ``example.com/page`` and ``localhost:8080/x`` both parse with a bogus
    scheme, while ``magnet:?xt=...`` or ``mailto:x@y`` carry a real one.
    """
    if not parsed.scheme:
        return True
    if "://" in raw:
        return False
    if "." in parsed.scheme or parsed.scheme == "localhost":
        return True
    return parsed.path[:1].isdigit()


def normalize_redirect_url(raw: str, public_site_url: Optional[str] = None) -> str:
    """Validate a redirect target and return its normalized form.

    Args:
        raw: URL as supplied by the caller, with or without a scheme
        public_site_url: Hostname this service runs on; targets on it are rejected

    Returns:
        Absolute URL string

    Raises:
        InvalidURL: If the URL can't be parsed even with ``https://`` prepended
        DisallowedScheme: If the scheme is outside ``ALLOWED_SCHEMES``
        SelfReferential: If the target host is the shortener itself
    """
    url = (raw or "").strip()
    if not url:
        raise InvalidURL("redirect_to is required")

    parsed = _parse(url)
    if parsed is None or _looks_schemeless(url, parsed):
        if "://" in url:
            raise InvalidURL("invalid URL format")
        url = "https://" + url
        parsed = _parse(url)
        if parsed is None:
            raise InvalidURL("invalid URL format")

    if parsed.scheme not in ALLOWED_SCHEMES:
        raise DisallowedScheme(f"protocol {parsed.scheme} is not allowed")

    if parsed.scheme in ("http", "https"):
        if not parsed.hostname or any(c.isspace() for c in parsed.netloc):
            raise InvalidURL("URL must have a valid host")

    normalized = parsed.geturl()
    if len(normalized) > MAX_URL_LENGTH:
        raise InvalidURL(f"URL is too long (max {MAX_URL_LENGTH} characters)")

    if public_site_url and parsed.hostname:
        if parsed.hostname.rstrip(".") == _host_of(public_site_url):
            raise SelfReferential("cannot redirect to link shortener")

    return normalized


def _host_of(public_site_url: str) -> str:
    """Reduce a configured public site value to a bare lowercase hostname."""
    value = public_site_url.strip()
    if "://" not in value:
        value = "//" + value
    parsed = urlparse(value)
    return (parsed.hostname or "").rstrip(".")
