from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from ivbot.delivery.formatter import MSG_BAD_INPUT, MSG_NO_CANDIDATES, ReplyFormatter
from ivbot.models.domain import (
    Browsable,
    ErrorKind,
    Failure,
    FormattedDirect,
    NeedsResolution,
    PinnedDefault,
)
from ivbot.resolver.engine import ResolutionEngine
from ivbot.resolver.identity import derive_key
from ivbot.storage.persistence import JsonMapStore, StoreReadError, StoreWriteError
from ivbot.storage.registries import CandidateRegistry, PreferenceRegistry

TOKEN = "AB12CD34EF56GH"
READY = "https://t.me/iv?url=https%3A%2F%2Fexample.com%2Fpost%2F1&rhash=" + TOKEN


def _make_engine(data_dir: Path) -> ResolutionEngine:
    candidates = CandidateRegistry(JsonMapStore.open(data_dir / "rhash_vec_db.json"))
    preferences = PreferenceRegistry(JsonMapStore.open(data_dir / "default_setting_db.json"))
    return ResolutionEngine(candidates, preferences)


class ResolutionEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.engine = _make_engine(Path(self._tmp.name))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_ready_link_is_echoed_and_harvested(self) -> None:
        outcome = self.engine.handle_text(READY, 1)
        self.assertEqual(outcome, FormattedDirect(article_url="https://example.com/post/1",
                                                  rtoken=TOKEN, link=READY))
        self.assertEqual(self.engine.candidates.list("example.com"), [TOKEN])

    def test_harvest_happens_once_per_token(self) -> None:
        self.engine.handle_text(READY, 1)
        self.engine.handle_text(READY, 2)
        self.engine.handle_text(READY.replace("post%2F1", "post%2F2"), 3)
        self.assertEqual(self.engine.candidates.list("example.com"), [TOKEN])

    def test_first_ready_link_then_plain_url_is_browsable(self) -> None:
        self.engine.handle_text(READY, 1)
        outcome = self.engine.handle_text("https://example.com/other", 2)
        self.assertEqual(outcome, Browsable(article_url="https://example.com/other",
                                            host="example.com", candidates=(TOKEN,)))
        reply = ReplyFormatter().outcome(outcome)
        self.assertTrue(reply.text.endswith(f"rhash: {TOKEN}    (1/1)"))
        self.assertIsNotNone(reply.reply_markup)

    def test_preference_takes_precedence(self) -> None:
        for token in ("T0000000000001", "T0000000000002"):
            self.engine.candidates.append_if_absent("example.com", token)
        self.engine.preferences.set(derive_key(7, "example.com"), "T0000000000002")

        outcome = self.engine.handle_text("https://example.com/x", 7)
        self.assertEqual(outcome, PinnedDefault(article_url="https://example.com/x",
                                                rtoken="T0000000000002"))
        # Another user still browses
        self.assertIsInstance(self.engine.handle_text("https://example.com/x", 8), Browsable)

    def test_no_candidates(self) -> None:
        outcome = self.engine.handle_text("https://unknown.example/x", 1)
        self.assertEqual(outcome, Failure(ErrorKind.NO_CANDIDATES))
        self.assertEqual(ReplyFormatter().outcome(outcome).text, MSG_NO_CANDIDATES)

    def test_not_a_url(self) -> None:
        outcome = self.engine.handle_text("what is this", 1)
        self.assertEqual(outcome, Failure(ErrorKind.NOT_A_URL))
        self.assertEqual(ReplyFormatter().outcome(outcome).text, MSG_BAD_INPUT)

    def test_missing_user_fails_key_derivation(self) -> None:
        outcome = self.engine.resolve(NeedsResolution("https://example.com/x", "example.com"), None)
        self.assertEqual(outcome, Failure(ErrorKind.KEY_DERIVATION_FAILED))

    def test_candidate_read_failure_degrades(self) -> None:
        with patch.object(self.engine.candidates, "list", side_effect=StoreReadError("boom")):
            with self.assertLogs("ivbot.resolver.engine", level="WARNING"):
                outcome = self.engine.handle_text("https://example.com/x", 1)
        self.assertEqual(outcome, Failure(ErrorKind.NO_CANDIDATES))

    def test_preference_read_failure_degrades(self) -> None:
        self.engine.candidates.append_if_absent("example.com", TOKEN)
        with patch.object(self.engine.preferences, "get", side_effect=StoreReadError("boom")):
            outcome = self.engine.handle_text("https://example.com/x", 1)
        self.assertEqual(outcome, Failure(ErrorKind.STORE_READ_FAILED))
        self.assertEqual(ReplyFormatter().outcome(outcome).text, MSG_NO_CANDIDATES)

    def test_harvest_failure_does_not_block_reply(self) -> None:
        with patch.object(self.engine.candidates, "append_if_absent",
                          side_effect=StoreWriteError("disk full")):
            with self.assertLogs("ivbot.resolver.engine", level="WARNING"):
                outcome = self.engine.handle_text(READY, 1)
        self.assertIsInstance(outcome, FormattedDirect)


if __name__ == "__main__":
    unittest.main()
