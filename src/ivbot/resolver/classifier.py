"""Classify free text into a reader-view link, a URL to resolve, or neither."""
from __future__ import annotations

from urllib.parse import parse_qsl, urlsplit

from ivbot.models.domain import Intent, NeedsResolution, NotAUrl, ReadyLink

READER_VIEW_HOST = "t.me"
READER_VIEW_PATH = "/iv"

_ALLOWED_SCHEMES = frozenset({"http", "https"})


def parse_absolute_url(text: str) -> tuple[str, str] | None:
    """Return ``(url, host)`` when *text* is a single absolute http(s) URL.

    The url is returned as given apart from a lowercased scheme.
    """
    text = text.strip()
    if not text or any(ch.isspace() for ch in text):
        return None
    try:
        parts = urlsplit(text)
        host = parts.hostname
        parts.port  # raises ValueError on a malformed port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if scheme not in _ALLOWED_SCHEMES or not host:
        return None
    return scheme + text[len(scheme):], host


def _query_param(query: str, name: str) -> str | None:
    for key, value in parse_qsl(query, keep_blank_values=True):
        if key == name:
            return value
    return None


def classify(
    text: str,
    reader_view_host: str = READER_VIEW_HOST,
    reader_view_path: str = READER_VIEW_PATH,
) -> Intent:
    parsed = parse_absolute_url(text)
    if parsed is None:
        return NotAUrl(text)
    url, host = parsed

    parts = urlsplit(url)
    if host != reader_view_host.lower() or parts.path != reader_view_path:
        return NeedsResolution(article_url=url, host=host)

    embedded = _query_param(parts.query, "url")
    rtoken = _query_param(parts.query, "rhash")
    if not embedded or not rtoken:
        # A reader-view link without both parameters is not something to resolve
        return NotAUrl(text)
    article = parse_absolute_url(embedded)
    if article is None:
        return NotAUrl(text)
    article_url, article_host = article
    return ReadyLink(article_url=article_url, host=article_host, rtoken=rtoken, link=url)
