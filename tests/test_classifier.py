from __future__ import annotations

import hashlib
import unittest

from ivbot.models.domain import NeedsResolution, NotAUrl, ReadyLink
from ivbot.resolver.classifier import classify, parse_absolute_url
from ivbot.resolver.identity import derive_key

READY = "https://t.me/iv?url=https%3A%2F%2Fexample.com%2Fpost%2F1&rhash=AB12CD34EF56GH"


class ClassifierTests(unittest.TestCase):
    def test_plain_text_is_not_a_url(self) -> None:
        self.assertIsInstance(classify("hello there"), NotAUrl)
        self.assertIsInstance(classify(""), NotAUrl)
        self.assertIsInstance(classify("example.com/no-scheme"), NotAUrl)

    def test_non_http_scheme_rejected(self) -> None:
        self.assertIsInstance(classify("ftp://example.com/file"), NotAUrl)

    def test_malformed_port_rejected(self) -> None:
        self.assertIsInstance(classify("https://example.com:abc/x"), NotAUrl)

    def test_article_url_needs_resolution(self) -> None:
        intent = classify("https://example.com/a/b?c=1")
        self.assertEqual(intent, NeedsResolution(article_url="https://example.com/a/b?c=1",
                                                 host="example.com"))

    def test_host_is_lowercased(self) -> None:
        intent = classify("https://Example.COM/Post")
        self.assertIsInstance(intent, NeedsResolution)
        self.assertEqual(intent.host, "example.com")

    def test_scheme_is_lowercased(self) -> None:
        intent = classify("HTTPS://Example.com/Post?Q=1")
        self.assertEqual(intent, NeedsResolution(article_url="https://Example.com/Post?Q=1",
                                                 host="example.com"))
        self.assertEqual(parse_absolute_url("Http://example.com"),
                         ("http://example.com", "example.com"))

    def test_surrounding_whitespace_ignored(self) -> None:
        intent = classify("  https://example.com/x \n")
        self.assertIsInstance(intent, NeedsResolution)
        self.assertEqual(intent.article_url, "https://example.com/x")

    def test_ready_link(self) -> None:
        intent = classify(READY)
        self.assertIsInstance(intent, ReadyLink)
        self.assertEqual(intent.article_url, "https://example.com/post/1")
        self.assertEqual(intent.host, "example.com")
        self.assertEqual(intent.rtoken, "AB12CD34EF56GH")
        self.assertEqual(intent.link, READY)

    def test_reader_view_link_missing_rhash(self) -> None:
        self.assertIsInstance(classify("https://t.me/iv?url=https%3A%2F%2Fexample.com%2F"), NotAUrl)

    def test_reader_view_link_with_bad_article(self) -> None:
        self.assertIsInstance(classify("https://t.me/iv?url=not-a-url&rhash=AB12CD34EF56GH"), NotAUrl)

    def test_other_reader_host_paths_need_resolution(self) -> None:
        intent = classify("https://t.me/durov")
        self.assertEqual(intent, NeedsResolution(article_url="https://t.me/durov", host="t.me"))

    def test_custom_reader_view_host(self) -> None:
        link = "https://iv.example.org/iv?url=https%3A%2F%2Fexample.com%2F&rhash=AB12CD34EF56GH"
        self.assertIsInstance(classify(link, reader_view_host="iv.example.org"), ReadyLink)
        self.assertIsInstance(classify(link), NeedsResolution)

    def test_parse_absolute_url_rejects_embedded_spaces(self) -> None:
        self.assertIsNone(parse_absolute_url("https://example.com/a b"))


class IdentityTests(unittest.TestCase):
    def test_key_is_twenty_upper_hex_chars(self) -> None:
        key = derive_key(42, "example.com")
        self.assertEqual(len(key), 20)
        self.assertEqual(key, key.upper())
        int(key, 16)

    def test_matches_blake2s_of_user_and_host(self) -> None:
        expected = hashlib.blake2s(b"42example.com", digest_size=10).hexdigest().upper()
        self.assertEqual(derive_key(42, "example.com"), expected)
        self.assertEqual(derive_key("42", "example.com"), expected)

    def test_deterministic_and_distinct(self) -> None:
        self.assertEqual(derive_key(1, "a.com"), derive_key(1, "a.com"))
        self.assertNotEqual(derive_key(1, "a.com"), derive_key(1, "b.com"))
        self.assertNotEqual(derive_key(1, "a.com"), derive_key(2, "a.com"))

    def test_missing_user(self) -> None:
        self.assertIsNone(derive_key(None, "example.com"))
        self.assertIsNone(derive_key("", "example.com"))


if __name__ == "__main__":
    unittest.main()
