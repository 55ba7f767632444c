# tests/test_validators.py
import pytest

from link_shortener.errors import DisallowedScheme, InvalidURL, SelfReferential
from link_shortener.validators import (
    is_alphanumeric,
    is_reserved_route,
    normalize_redirect_url,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://example.com", "https://example.com"),
        ("  https://example.com/path?q=1  ", "https://example.com/path?q=1"),
        ("example.com", "https://example.com"),
        ("example.com/page", "https://example.com/page"),
        ("localhost:8080/x", "https://localhost:8080/x"),
        ("HTTP://Example.com", "http://Example.com"),
        ("magnet:?xt=urn:btih:abc", "magnet:?xt=urn:btih:abc"),
        ("spotify:track:4uLU6hMCjMI75M1A2tKUQC", "spotify:track:4uLU6hMCjMI75M1A2tKUQC"),
        ("steam://run/440", "steam://run/440"),
    ],
)
def test_normalize_accepts(raw, expected):
    assert normalize_redirect_url(raw) == expected


@pytest.mark.parametrize("raw", ["ftp://example.com/file", "javascript:alert(1)", "mailto:a@b.c"])
def test_normalize_rejects_scheme(raw):
    with pytest.raises(DisallowedScheme):
        normalize_redirect_url(raw)


@pytest.mark.parametrize("raw", ["", "   ", "https://", "https://exa mple.com", "https://example.com:abc"])
def test_normalize_rejects_invalid(raw):
    with pytest.raises(InvalidURL):
        normalize_redirect_url(raw)


def test_normalize_rejects_too_long():
    with pytest.raises(InvalidURL):
        normalize_redirect_url("https://example.com/" + "a" * 2048)


def test_self_referential_is_case_insensitive_and_ignores_port():
    with pytest.raises(SelfReferential):
        normalize_redirect_url("https://SHO.RT:8443/abc", public_site_url="sho.rt")
    with pytest.raises(SelfReferential):
        normalize_redirect_url("sho.rt/abc", public_site_url="https://sho.rt/")


def test_other_hosts_allowed_with_public_site():
    assert normalize_redirect_url("https://sub.sho.rt", public_site_url="sho.rt") == "https://sub.sho.rt"


def test_alphanumeric():
    assert is_alphanumeric("abc123XYZ")
    assert not is_alphanumeric("")
    assert not is_alphanumeric("with-dash")
    assert not is_alphanumeric("abc\n")
    assert not is_alphanumeric("\nabc")
    assert not is_alphanumeric("ümlaut")


def test_reserved_routes():
    assert is_reserved_route("api")
    assert is_reserved_route("Docs")
    assert is_reserved_route("not-found")
    assert not is_reserved_route("apis")
