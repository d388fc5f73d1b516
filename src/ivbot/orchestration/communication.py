"""Communication agent: routes Telegram updates through the resolver.

Handles four kinds of update:
1. text message  -> classify, harvest, resolve, send a reply
2. inline query  -> same resolution, answered as inline results
3. callback      -> browsing state machine, edit the pressed message
4. command       -> /deleteDefaultRhash, /start, /help

Each update is one independent unit of work. ``TransportError`` from the
bot client propagates to the caller; registry changes already made stay.
"""
from __future__ import annotations

import logging
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from ivbot.delivery.bot import TelegramBot

from ivbot.delivery.bot import DELETE_DEFAULT_COMMAND
from ivbot.delivery.browsing import BrowsingStateMachine
from ivbot.delivery.formatter import (
    MSG_DEFAULT_DELETE_FAILED,
    MSG_DEFAULT_DELETED,
    MSG_DEFAULT_NOT_FOUND,
    MSG_DELETE_USAGE,
    MSG_HELP,
    MSG_KEY_DERIVATION_FAILED,
    ReplyFormatter,
)
from ivbot.models.domain import Failure, NotAUrl
from ivbot.resolver.classifier import parse_absolute_url
from ivbot.resolver.engine import ResolutionEngine
from ivbot.resolver.identity import derive_key
from ivbot.storage.persistence import StoreError

log = logging.getLogger(__name__)


class CommunicationAgent:
    """Telegram-facing side of the bot.

    Glue between TelegramBot (low-level API) and the resolution engine
    and browsing state machine.
    """

    def __init__(self, engine: ResolutionEngine, bot: TelegramBot,
                 formatter: ReplyFormatter | None = None,
                 browsing: BrowsingStateMachine | None = None) -> None:
        self._engine = engine
        self._bot = bot
        self._formatter = formatter or ReplyFormatter(engine.reader_view_host,
                                                      engine.reader_view_path)
        self._browsing = browsing or BrowsingStateMachine(
            engine.candidates, engine.preferences, self._formatter,
        )

    def handle_update(self, update: dict) -> dict[str, Any] | None:
        """Process a single Telegram update end-to-end.

        Returns a result dict for testing/logging, or None if the update was ignored.
        """
        parsed = self._bot.parse_update(update)
        if not parsed:
            return None

        kind = parsed["type"]
        log.debug("Processing %s update_id=%s user=%s", kind, parsed.get("update_id"),
                  parsed.get("user_id"))

        if kind == "message":
            return self._handle_message(parsed)
        if kind == "inline_query":
            return self._handle_inline_query(parsed)
        if kind == "callback":
            return self._handle_callback(parsed)
        if kind == "command":
            return self._handle_command(parsed)
        return None

    # ── Text and inline resolution ───────────────────────────────

    def _handle_message(self, parsed: dict) -> dict[str, Any]:
        outcome = self._engine.handle_text(parsed["text"], parsed["user_id"])
        reply = self._formatter.outcome(outcome)
        self._bot.send_message(parsed["chat_id"], reply.text, parse_mode=reply.parse_mode,
                               reply_markup=reply.reply_markup)
        return self._result("reply", parsed, outcome=type(outcome).__name__,
                            error=outcome.kind.value if isinstance(outcome, Failure) else None)

    def _handle_inline_query(self, parsed: dict) -> dict[str, Any] | None:
        if not parsed["text"]:
            return None
        intent = self._engine.classify(parsed["text"])
        if isinstance(intent, NotAUrl):
            return None
        self._engine.harvest(intent)
        outcome = self._engine.resolve(intent, parsed["user_id"])
        results = self._formatter.inline_results(outcome)
        self._bot.answer_inline_query(parsed["inline_query_id"], results, cache_time=0)
        return self._result("inline_answer", parsed, outcome=type(outcome).__name__,
                            results=len(results))

    # ── Browsing buttons ─────────────────────────────────────────

    def _handle_callback(self, parsed: dict) -> dict[str, Any]:
        transition = self._browsing.handle(parsed["data"], parsed["message_text"],
                                           parsed["user_id"])
        if transition.edit is not None and parsed["chat_id"] is not None:
            edit = transition.edit
            self._bot.edit_message_text(parsed["chat_id"], parsed["message_id"], edit.text,
                                        parse_mode=edit.parse_mode,
                                        reply_markup=edit.reply_markup)
        self._bot.answer_callback(parsed["callback_id"], transition.notice)
        return self._result(
            "callback", parsed, data=parsed["data"], edited=transition.edit is not None,
            terminal=transition.terminal,
            error=transition.error.value if transition.error else None,
        )

    # ── Commands ─────────────────────────────────────────────────

    def _handle_command(self, parsed: dict) -> dict[str, Any] | None:
        command = parsed["command"]
        chat_id = parsed["chat_id"]
        if command == DELETE_DEFAULT_COMMAND:
            text = self._delete_default(parsed["user_id"], parsed["args"])
            self._bot.send_message(chat_id, text)
            return self._result("delete_default", parsed, reply=text)
        if command in ("start", "help"):
            self._bot.send_message(chat_id, MSG_HELP)
            return self._result("help", parsed)
        log.debug("Ignoring unknown command /%s", command)
        return None

    def _delete_default(self, user_id: int | str | None, args: list[str]) -> str:
        parsed_url = parse_absolute_url(args[0]) if args else None
        if parsed_url is None:
            return MSG_DELETE_USAGE
        _, host = parsed_url
        key = derive_key(user_id, host)
        if key is None:
            return MSG_KEY_DERIVATION_FAILED
        try:
            removed = self._engine.preferences.delete(key)
        except StoreError:
            log.warning("Unable to delete data from the preference registry", exc_info=True)
            return MSG_DEFAULT_DELETE_FAILED
        if removed is None:
            return MSG_DEFAULT_NOT_FOUND
        log.info("Deleted default rhash for host=%s", host)
        return MSG_DEFAULT_DELETED

    @staticmethod
    def _result(action: str, parsed: dict, **extra: Any) -> dict[str, Any]:
        result: dict[str, Any] = {
            "action": action,
            "update_id": parsed.get("update_id"),
            "user_id": parsed.get("user_id"),
        }
        result.update({k: v for k, v in extra.items() if v is not None})
        return result
