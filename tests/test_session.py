"""Tests for the browsing session codec: exact layout, decoding, and rejection."""
from __future__ import annotations

import pytest

from ivbot.delivery import session
from ivbot.models.domain import SessionState
from ivbot.resolver.classifier import classify

TOKEN = "AB12CD34EF56GH"

EXPECTED = (
    "IV: https://t.me/iv?url=https%3A%2F%2Fexample.com%2Fpost%2F1&rhash=AB12CD34EF56GH\n"
    "原文: https://example.com/post/1\n"
    "rhash: AB12CD34EF56GH    (2/3)"
)


@pytest.fixture
def state():
    return SessionState(
        article_url="https://example.com/post/1", host="example.com",
        current_token=TOKEN, ordinal=2, total_count=3,
    )


def test_encode_layout(state):
    assert session.encode(state) == EXPECTED


def test_reader_view_link_quotes_article():
    link = session.reader_view_link("https://example.com/a?b=1&c=2", TOKEN)
    assert link == "https://t.me/iv?url=https%3A%2F%2Fexample.com%2Fa%3Fb%3D1%26c%3D2&rhash=" + TOKEN


def test_decode(state):
    assert session.decode(EXPECTED) == state


def test_reencode_is_byte_identical():
    shouted = classify("HTTPS://Example.com/Post")
    texts = [
        EXPECTED,
        session.encode(SessionState("https://news.example.org/", "news.example.org",
                                    "ZZZZZZZZZZZZZZ", 1, 1)),
        session.encode(SessionState("http://example.com/a?x=1&y=%20", "example.com",
                                    "0123456789abcd", 12, 40)),
        session.encode(SessionState(shouted.article_url, shouted.host, TOKEN, 1, 2)),
    ]
    for text in texts:
        assert session.encode(session.decode(text)) == text


def test_decode_root_url_without_path():
    text = session.encode(SessionState("https://example.com", "example.com", TOKEN, 1, 1))
    decoded = session.decode(text)
    assert decoded is not None
    assert decoded.host == "example.com"


@pytest.mark.parametrize("text", [
    None,
    "",
    "hello",
    EXPECTED + "\nextra line",
    "prefix " + EXPECTED,
    EXPECTED.replace("AB12CD34EF56GH", "AB12CD34EF56G"),
    EXPECTED.replace("(2/3)", "(0/3)"),
    EXPECTED.replace("    (2/3)", " (2/3)"),
    EXPECTED.replace("原文", "Original"),
    EXPECTED.replace("https://example.com/post/1\n", "ftp://example.com/post/1\n"),
])
def test_decode_rejects_foreign_text(text):
    assert session.decode(text) is None


def test_keyboard_payloads_are_action_names_only():
    kb = session.keyboard()
    row = kb["inline_keyboard"][0]
    assert [b["callback_data"] for b in row] == ["prev", "selected", "set as default", "next"]
    assert [b["text"] for b in row] == ["<", "选定", "设为默认", ">"]


def test_decoded_link():
    assert session.decoded_link(EXPECTED) == (
        "https://t.me/iv?url=https%3A%2F%2Fexample.com%2Fpost%2F1&rhash=AB12CD34EF56GH"
    )
    assert session.decoded_link("nope") is None
