"""Browsing state machine for candidate-list replies.

Each button press is handled statelessly: the session is decoded from the
message being edited, the candidate list is re-read, and the result is a
``Transition`` telling the caller what to edit and how to answer the press.

    Browsing(i, n) --prev--> Browsing(i-1, n')   (boundary notice at i == 1)
    Browsing(i, n) --next--> Browsing(i+1, n')   (boundary notice at i == n')
    Browsing(i, n) --selected-------> Terminal
    Browsing(i, n) --set as default-> Terminal   (pins token i for the presser)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from ivbot.delivery import session
from ivbot.delivery.formatter import MSG_NO_EARLIER, MSG_NO_LATER, Reply, ReplyFormatter
from ivbot.models.domain import ErrorKind, SessionState
from ivbot.resolver.identity import derive_key
from ivbot.storage.persistence import StoreError
from ivbot.storage.registries import CandidateRegistry, PreferenceRegistry

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    """What to do with the pressed message.

    ``edit`` is None when the message must stay unchanged. ``notice`` is the
    transient text shown when answering the button press ("" for silent).
    """
    edit: Reply | None = None
    notice: str = ""
    terminal: bool = False
    state: SessionState | None = None
    error: ErrorKind | None = None


ACKNOWLEDGE = Transition()


class BrowsingStateMachine:
    def __init__(
        self,
        candidates: CandidateRegistry,
        preferences: PreferenceRegistry,
        formatter: ReplyFormatter | None = None,
    ) -> None:
        self.candidates = candidates
        self.preferences = preferences
        self.formatter = formatter or ReplyFormatter()

    def handle(self, action: str | None, message_text: str | None,
               user_id: int | str | None) -> Transition:
        state = session.decode(message_text)
        if state is None:
            log.debug("Ignoring button press on a message that is not a browsing reply")
            return Transition(error=ErrorKind.STALE_SESSION_UNPARSEABLE)

        if action == session.ACTION_SELECTED:
            return self._select(state, message_text)
        if action == session.ACTION_SET_DEFAULT:
            return self._pin(state, message_text, user_id)
        if action == session.ACTION_PREV:
            return self._step(state, -1)
        if action == session.ACTION_NEXT:
            return self._step(state, +1)
        return ACKNOWLEDGE

    # ── Terminal actions ─────────────────────────────────────────

    def _terminal_reply(self, state: SessionState, message_text: str | None) -> Reply:
        link = session.decoded_link(message_text or "") or ""
        return self.formatter.terminal(state.article_url, state.current_token, link)

    def _select(self, state: SessionState, message_text: str | None) -> Transition:
        return Transition(edit=self._terminal_reply(state, message_text), terminal=True)

    def _pin(self, state: SessionState, message_text: str | None,
             user_id: int | str | None) -> Transition:
        error = None
        self.candidates.refresh()
        key = derive_key(user_id, state.host)
        if key is None:
            error = ErrorKind.KEY_DERIVATION_FAILED
        else:
            try:
                self.preferences.set(key, state.current_token)
                log.info("Pinned default rhash for host=%s", state.host)
            except StoreError:
                log.warning("Unable to save default rhash for host=%s", state.host, exc_info=True)
                error = ErrorKind.STORE_WRITE_FAILED
        return Transition(edit=self._terminal_reply(state, message_text), terminal=True,
                          error=error)

    # ── Paging ───────────────────────────────────────────────────

    def _step(self, state: SessionState, delta: int) -> Transition:
        self.candidates.refresh()
        try:
            tokens = self.candidates.list(state.host)
        except StoreError:
            log.warning("Unable to read candidates for host=%s", state.host, exc_info=True)
            return Transition(error=ErrorKind.STORE_READ_FAILED)
        if not tokens:
            return ACKNOWLEDGE

        if delta < 0 and state.ordinal == 1:
            return Transition(notice=MSG_NO_EARLIER)
        if delta > 0 and state.ordinal == len(tokens):
            return Transition(notice=MSG_NO_LATER)
        if len(tokens) < 2:
            return ACKNOWLEDGE

        target = state.ordinal + delta
        if not 1 <= target <= len(tokens):
            # List shrank since the message was rendered; leave it as is.
            return ACKNOWLEDGE
        moved = state.moved_to(target, tokens[target - 1], len(tokens))
        return Transition(edit=self.formatter.browsing(moved), state=moved)
