"""Browsing session codec.

A browsing reply is the only place the session lives. Its text has a fixed
three-line layout that ``decode`` matches exactly:

    IV: https://t.me/iv?url=<quoted article>&rhash=<token>
    原文: <article url>
    rhash: <14-char token>    (<ordinal>/<total>)

The inline keyboard buttons carry only an action name; everything else is
recovered by decoding the message text when a button is pressed.
"""
from __future__ import annotations

import re
from urllib.parse import quote

from ivbot.models.domain import SessionState
from ivbot.resolver.classifier import READER_VIEW_HOST, READER_VIEW_PATH, parse_absolute_url

RTOKEN_LENGTH = 14

ACTION_PREV = "prev"
ACTION_SELECTED = "selected"
ACTION_SET_DEFAULT = "set as default"
ACTION_NEXT = "next"

ACTIONS = (ACTION_PREV, ACTION_SELECTED, ACTION_SET_DEFAULT, ACTION_NEXT)

_BUTTON_LABELS = {
    ACTION_PREV: "<",
    ACTION_SELECTED: "选定",
    ACTION_SET_DEFAULT: "设为默认",
    ACTION_NEXT: ">",
}

_SESSION_RE = re.compile(
    r"\AIV: (?P<iv_url>\S+)\n"
    r"原文: (?P<article_url>https?://\S+)\n"
    r"rhash: (?P<rhash>\w{%d})    \((?P<ordinal>\d+)/(?P<total>\d+)\)\Z" % RTOKEN_LENGTH
)


def reader_view_link(
    article_url: str,
    rtoken: str,
    host: str = READER_VIEW_HOST,
    path: str = READER_VIEW_PATH,
) -> str:
    return f"https://{host}{path}?url={quote(article_url, safe='')}&rhash={rtoken}"


def encode(state: SessionState, host: str = READER_VIEW_HOST, path: str = READER_VIEW_PATH) -> str:
    link = reader_view_link(state.article_url, state.current_token, host, path)
    return (
        f"IV: {link}\n"
        f"原文: {state.article_url}\n"
        f"rhash: {state.current_token}    ({state.ordinal}/{state.total_count})"
    )


def keyboard() -> dict:
    """Inline keyboard attached to every browsing reply."""
    row = [{"text": _BUTTON_LABELS[a], "callback_data": a} for a in ACTIONS]
    return {"inline_keyboard": [row]}


def decode(text: str | None) -> SessionState | None:
    """Recover the session from a browsing reply, or None if *text* is not one."""
    if not text:
        return None
    m = _SESSION_RE.match(text)
    if m is None:
        return None
    article = parse_absolute_url(m.group("article_url"))
    if article is None:
        return None
    ordinal = int(m.group("ordinal"))
    total = int(m.group("total"))
    if ordinal < 1 or total < 1:
        return None
    article_url, host = article
    return SessionState(
        article_url=article_url,
        host=host,
        current_token=m.group("rhash"),
        ordinal=ordinal,
        total_count=total,
    )


def decoded_link(text: str) -> str | None:
    """The ``IV:`` link exactly as it appears in a browsing reply."""
    m = _SESSION_RE.match(text or "")
    return m.group("iv_url") if m else None
