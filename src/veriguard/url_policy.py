"""Local URL policy and VirusTotal URL identifiers.

Everything here runs without network access and must be applied before a
URL reaches any external service.
"""

from __future__ import annotations

import base64
import binascii
import ipaddress
from urllib.parse import urlparse

import tldextract

from .errors import PolicyRejected
from .models import UrlValidation

INVALID_FORMAT = "invalid format"
PRIVATE_ADDRESS = "private or local address"
SERVICE_DOMAIN = "reputation service domain"
PLATFORM_DOMAIN = "trusted platform domain"

SERVICE_DOMAINS = frozenset({"virustotal.com"})

PLATFORM_DOMAINS = frozenset(
    {
        "google.com",
        "youtube.com",
        "facebook.com",
        "instagram.com",
        "twitter.com",
        "x.com",
        "linkedin.com",
        "microsoft.com",
        "apple.com",
        "amazon.com",
        "wikipedia.org",
        "github.com",
    }
)

_LOCAL_SUFFIXES = (".localhost", ".local", ".internal")

# Bundled public-suffix snapshot only; never fetched.
_extract = tldextract.TLDExtract(cache_dir=None, suffix_list_urls=())


def url_identifier(url: str) -> str:
    """Encode a URL the way VirusTotal addresses ``/urls/{id}``."""
    encoded = base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii")
    return encoded.rstrip("=")


def decode_url_identifier(identifier: str) -> str:
    padding = "=" * (-len(identifier) % 4)
    try:
        return base64.urlsafe_b64decode(identifier + padding).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ValueError(f"Not a URL identifier: {identifier!r}") from exc


def _hostname(url: str) -> str | None:
    try:
        parsed = urlparse(url.strip())
        host = parsed.hostname
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not host:
        return None
    return host.rstrip(".").lower()


def _is_local_address(host: str) -> bool:
    if host == "localhost" or host.endswith(_LOCAL_SUFFIXES):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_multicast
        or address.is_unspecified
    )


def registered_domain(host: str) -> str | None:
    """Reduce a hostname to its registrable domain (``a.b.google.com`` -> ``google.com``)."""
    parts = _extract(host)
    if parts.domain and parts.suffix:
        return f"{parts.domain}.{parts.suffix}".lower()
    return None


def _matches(host: str, domains: frozenset[str]) -> bool:
    return registered_domain(host) in domains


def validate_url_for_scanning(url: str) -> UrlValidation:
    host = _hostname(url) if isinstance(url, str) else None
    if not host:
        return UrlValidation(valid=False, reason=INVALID_FORMAT)
    if _is_local_address(host):
        return UrlValidation(valid=False, reason=PRIVATE_ADDRESS)
    if _matches(host, SERVICE_DOMAINS):
        return UrlValidation(valid=False, reason=SERVICE_DOMAIN)
    if _matches(host, PLATFORM_DOMAINS):
        return UrlValidation(valid=False, reason=PLATFORM_DOMAIN)
    return UrlValidation(valid=True)


def ensure_url_allowed(url: str) -> None:
    result = validate_url_for_scanning(url)
    if not result.valid:
        raise PolicyRejected(result.reason or INVALID_FORMAT, url=url)
