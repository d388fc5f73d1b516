from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(Enum):
    NOT_A_URL = "not_a_url"
    KEY_DERIVATION_FAILED = "key_derivation_failed"
    NO_CANDIDATES = "no_candidates"
    STORE_READ_FAILED = "store_read_failed"
    STORE_WRITE_FAILED = "store_write_failed"
    STALE_SESSION_UNPARSEABLE = "stale_session_unparseable"
    TRANSPORT_FAILED = "transport_failed"


# ── Classifier intents ───────────────────────────────────────────


@dataclass(frozen=True)
class NotAUrl:
    text: str = ""


@dataclass(frozen=True)
class ReadyLink:
    """A complete reader-view link pasted by a user."""
    article_url: str
    host: str
    rtoken: str
    link: str


@dataclass(frozen=True)
class NeedsResolution:
    article_url: str
    host: str


Intent = NotAUrl | ReadyLink | NeedsResolution


# ── Resolution outcomes ──────────────────────────────────────────


@dataclass(frozen=True)
class FormattedDirect:
    article_url: str
    rtoken: str
    link: str = ""


@dataclass(frozen=True)
class PinnedDefault:
    article_url: str
    rtoken: str


@dataclass(frozen=True)
class Browsable:
    article_url: str
    host: str
    candidates: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.candidates:
            raise ValueError("Browsable outcome needs at least one candidate")


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind


Outcome = FormattedDirect | PinnedDefault | Browsable | Failure


# ── Browsing session ─────────────────────────────────────────────


@dataclass(frozen=True)
class SessionState:
    """Browsing position carried inside a rendered reply.

    ``ordinal`` is 1-based.
    """
    article_url: str
    host: str
    current_token: str
    ordinal: int
    total_count: int

    def moved_to(self, ordinal: int, token: str, total: int) -> SessionState:
        return SessionState(
            article_url=self.article_url, host=self.host,
            current_token=token, ordinal=ordinal, total_count=total,
        )
