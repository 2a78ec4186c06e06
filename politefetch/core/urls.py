from __future__ import annotations

import hashlib
import logging
import re
import unicodedata
from urllib.parse import parse_qsl, quote, unquote, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

TRACKING_KEYS = {
    "ref",
    "fbclid",
    "gclid",
    "msclkid",
    "mc_cid",
    "mc_eid",
    "_hsenc",
    "_hsmi",
    "source",
    "campaign",
    "medium",
    "content",
    "term",
}
DEFAULT_PORTS = {"http": 80, "https": 443}
PATH_SAFE_CHARS = "/:@!$&'()*+,;=~"

_ZERO_WIDTH_RE = re.compile("[\u200b-\u200f\ufeff]")
_WHITESPACE_RE = re.compile(r"\s+")


def canonicalize(raw_url: str) -> str:
    """Normalize a URL into the key used to deduplicate fetched items.

    Decoding happens per component (host, path, query pairs) so the result is a
    fixed point: ``canonicalize(canonicalize(u)) == canonicalize(u)``. Input
    that cannot be parsed as an absolute http(s) URL is returned unchanged.
    """
    try:
        return _canonicalize(raw_url)
    except (ValueError, UnicodeError) as exc:
        logger.debug("url canonicalization failed for %r: %s", raw_url, exc)
        return raw_url


def source_domain(url: str) -> str:
    return (urlsplit(url).hostname or "").lower()


def normalize_text(text: str) -> str:
    normalized = unicodedata.normalize("NFC", text)
    normalized = _ZERO_WIDTH_RE.sub("", normalized)
    return _WHITESPACE_RE.sub(" ", normalized).strip()


def content_hash(title: str, *parts: str | None) -> str:
    chunks = [normalize_text(title)] + [normalize_text(part) for part in parts if part]
    combined = "|".join(chunk for chunk in chunks if chunk)
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


def _canonicalize(raw_url: str) -> str:
    parsed = urlsplit(raw_url.strip())

    scheme = parsed.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise ValueError(f"unsupported scheme: {parsed.scheme!r}")

    host = _nfc(unquote(parsed.hostname or ""))
    if not host:
        raise ValueError("missing host")
    if not host.isascii():
        host = host.encode("idna").decode("ascii")
    host = host.lower()
    if ":" in host:
        host = f"[{host}]"

    port = parsed.port
    netloc = host if port is None or port == DEFAULT_PORTS[scheme] else f"{host}:{port}"
    userinfo, separator, _ = parsed.netloc.rpartition("@")
    if separator:
        netloc = f"{userinfo}@{netloc}"

    path = _nfc(unquote(parsed.path)).rstrip("/") or "/"
    path = quote(path, safe=PATH_SAFE_CHARS)

    filtered_query_pairs = [
        (_nfc(key), _nfc(value))
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]
    filtered_query_pairs.sort(key=lambda pair: pair[0])
    query = urlencode(filtered_query_pairs)
    return urlunsplit((scheme, netloc, path, query, ""))


def _nfc(value: str) -> str:
    return unicodedata.normalize("NFC", value)


def _is_tracking_param(key: str) -> bool:
    lowered = key.strip().lower()
    return lowered.startswith("utm_") or lowered in TRACKING_KEYS
