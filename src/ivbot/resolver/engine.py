"""Resolution engine: turns a classified input into a reply outcome.

Lookup order for a plain article URL:
1. the user's pinned default for the host (preference registry)
2. the host's candidate list (candidate registry)

Ready-made reader-view links are harvested into the candidate registry
before being echoed back, whoever sent them.
"""
from __future__ import annotations

import logging

from ivbot.models.domain import (
    Browsable,
    ErrorKind,
    Failure,
    FormattedDirect,
    Intent,
    NeedsResolution,
    NotAUrl,
    Outcome,
    PinnedDefault,
    ReadyLink,
)
from ivbot.resolver.classifier import READER_VIEW_HOST, READER_VIEW_PATH, classify
from ivbot.resolver.identity import derive_key
from ivbot.storage.persistence import StoreError
from ivbot.storage.registries import CandidateRegistry, PreferenceRegistry

log = logging.getLogger(__name__)


class ResolutionEngine:
    def __init__(
        self,
        candidates: CandidateRegistry,
        preferences: PreferenceRegistry,
        reader_view_host: str = READER_VIEW_HOST,
        reader_view_path: str = READER_VIEW_PATH,
    ) -> None:
        self.candidates = candidates
        self.preferences = preferences
        self.reader_view_host = reader_view_host
        self.reader_view_path = reader_view_path

    def classify(self, text: str) -> Intent:
        return classify(text, self.reader_view_host, self.reader_view_path)

    def harvest(self, intent: Intent) -> bool:
        """Register the token of a ready link. Returns True if it was new.

        Store failures are logged and swallowed: harvesting never blocks
        the reply to the user.
        """
        if not isinstance(intent, ReadyLink):
            return False
        try:
            return self.candidates.append_if_absent(intent.host, intent.rtoken)
        except StoreError:
            log.warning("Unable to add rhash to the candidate registry for host=%s",
                        intent.host, exc_info=True)
            return False

    def resolve(self, intent: Intent, user_id: int | str | None) -> Outcome:
        if isinstance(intent, ReadyLink):
            return FormattedDirect(article_url=intent.article_url, rtoken=intent.rtoken,
                                   link=intent.link)
        if isinstance(intent, NeedsResolution):
            return self._resolve_host(intent, user_id)
        if isinstance(intent, NotAUrl):
            return Failure(ErrorKind.NOT_A_URL)
        raise TypeError(f"Unknown intent: {intent!r}")

    def handle_text(self, text: str, user_id: int | str | None) -> Outcome:
        """Classify, harvest, and resolve in one step."""
        intent = self.classify(text)
        self.harvest(intent)
        return self.resolve(intent, user_id)

    def _resolve_host(self, intent: NeedsResolution, user_id: int | str | None) -> Outcome:
        key = derive_key(user_id, intent.host)
        if key is None:
            return Failure(ErrorKind.KEY_DERIVATION_FAILED)

        try:
            pinned = self.preferences.get(key)
        except StoreError:
            log.warning("Unable to read preference for host=%s", intent.host, exc_info=True)
            return Failure(ErrorKind.STORE_READ_FAILED)
        if pinned:
            return PinnedDefault(article_url=intent.article_url, rtoken=pinned)

        try:
            tokens = self.candidates.list(intent.host)
        except StoreError:
            log.warning("Unable to read candidates for host=%s", intent.host, exc_info=True)
            return Failure(ErrorKind.NO_CANDIDATES)
        if not tokens:
            return Failure(ErrorKind.NO_CANDIDATES)
        return Browsable(article_url=intent.article_url, host=intent.host,
                         candidates=tuple(tokens))
