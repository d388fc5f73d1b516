"""Telegram Bot API client for the Instant View rhash bot.

Requires a bot token from https://t.me/BotFather
Set via the BOT_TOKEN environment variable or ``bot_token`` in config/bot.json.

Every call either returns the ``result`` field of the API reply or raises
``TransportError``. Nothing is retried: a failed call ends the unit of work
that made it.
"""
from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from typing import Any

log = logging.getLogger(__name__)

_API_BASE = "https://api.telegram.org/bot{token}"

# Telegram message limit
_MAX_MESSAGE_LENGTH = 4096

DELETE_DEFAULT_COMMAND = "deleteDefaultRhash"

BOT_COMMANDS = [
    {"command": DELETE_DEFAULT_COMMAND, "description": "删除某站点的默认 rhash（/deleteDefaultRhash <URL>）"},
    {"command": "help", "description": "使用说明"},
]


class TransportError(Exception):
    """A Bot API call failed or was rejected."""

    def __init__(self, method: str, description: str, error_code: int | None = None) -> None:
        super().__init__(f"{method}: {description}")
        self.method = method
        self.description = description
        self.error_code = error_code


class TelegramBot:
    """Thin synchronous Bot API client.

    Safe to share between worker threads; only ``get_updates`` keeps state
    (the polling offset) and it is called from the polling thread alone.
    """

    def __init__(self, bot_token: str, timeout: int = 10, proxy: str | None = None) -> None:
        self._token = bot_token.strip()
        self._base_url = _API_BASE.format(token=self._token)
        self._timeout = timeout
        self._offset: int = 0  # For long polling
        handlers: list[urllib.request.BaseHandler] = []
        if proxy:
            handlers.append(urllib.request.ProxyHandler({"http": proxy, "https": proxy}))
        self._opener = urllib.request.build_opener(*handlers)

    # ──────────────────────────────────────────────────────────────
    # Core API methods
    # ──────────────────────────────────────────────────────────────

    def _api_call(self, method: str, data: dict | None = None, timeout: int | None = None) -> Any:
        """POST a Bot API method with a JSON body and return its result."""
        url = f"{self._base_url}/{method}"
        body = json.dumps(data or {}).encode("utf-8")
        req = urllib.request.Request(
            url,
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with self._opener.open(req, timeout=timeout or self._timeout) as resp:
                raw = resp.read()
            result = json.loads(raw.decode("utf-8"))
        except urllib.error.HTTPError as e:
            # Telegram sends a JSON description with 4xx replies
            description = str(e)
            try:
                err_body = json.loads(e.read().decode("utf-8"))
                description = err_body.get("description", description)
            except (json.JSONDecodeError, OSError, UnicodeDecodeError):
                pass
            raise TransportError(method, description, e.code) from e
        except (urllib.error.URLError, OSError) as e:
            raise TransportError(method, str(e)) from e
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise TransportError(method, f"undecodable reply: {e}") from e

        if not isinstance(result, dict) or not result.get("ok"):
            description = result.get("description", "unknown") if isinstance(result, dict) else "unknown"
            code = result.get("error_code") if isinstance(result, dict) else None
            raise TransportError(method, description, code)
        return result.get("result")

    def get_me(self) -> dict:
        """Verify bot token and get bot info."""
        return self._api_call("getMe")

    def set_commands(self) -> bool:
        """Register bot commands with BotFather."""
        return bool(self._api_call("setMyCommands", data={"commands": BOT_COMMANDS}))

    # ──────────────────────────────────────────────────────────────
    # Messages and answers
    # ──────────────────────────────────────────────────────────────

    def send_message(
        self,
        chat_id: int | str,
        text: str,
        parse_mode: str | None = None,
        reply_markup: dict | None = None,
        disable_preview: bool = False,
    ) -> dict:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text[:_MAX_MESSAGE_LENGTH],
            "disable_web_page_preview": disable_preview,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup:
            payload["reply_markup"] = reply_markup
        return self._api_call("sendMessage", data=payload)

    def edit_message_text(
        self,
        chat_id: int | str,
        message_id: int,
        text: str,
        parse_mode: str | None = None,
        reply_markup: dict | None = None,
    ) -> dict:
        """Replace a message's text. Without *reply_markup* the keyboard is removed."""
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text[:_MAX_MESSAGE_LENGTH],
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup:
            payload["reply_markup"] = reply_markup
        return self._api_call("editMessageText", data=payload)

    def answer_callback(self, callback_query_id: str, text: str = "") -> bool:
        """Answer a callback query from inline keyboard."""
        payload: dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text
        return bool(self._api_call("answerCallbackQuery", data=payload))

    def answer_inline_query(self, inline_query_id: str, results: list[dict],
                            cache_time: int = 0) -> bool:
        return bool(self._api_call("answerInlineQuery", data={
            "inline_query_id": inline_query_id,
            "results": results,
            "cache_time": cache_time,
        }))

    # ──────────────────────────────────────────────────────────────
    # Update polling
    # ──────────────────────────────────────────────────────────────

    def get_updates(self, timeout: int = 30) -> list[dict]:
        """Long-poll for updates and advance the offset past them."""
        result = self._api_call("getUpdates", data={
            "offset": self._offset,
            "timeout": timeout,
            "allowed_updates": ["message", "inline_query", "callback_query"],
        }, timeout=timeout + self._timeout)
        updates = result if isinstance(result, list) else []
        if updates:
            self._offset = updates[-1]["update_id"] + 1
        return updates

    def parse_update(self, update: dict) -> dict[str, Any] | None:
        """Parse an update into a structured request.

        Returns a dict whose ``type`` is one of ``message``, ``command``,
        ``inline_query`` or ``callback``, or None if nothing here is handled.
        """
        update_id = update.get("update_id")

        if "callback_query" in update:
            cb = update["callback_query"] or {}
            msg = cb.get("message") or {}
            return {
                "type": "callback",
                "update_id": update_id,
                "callback_id": cb.get("id", ""),
                "user_id": (cb.get("from") or {}).get("id"),
                "chat_id": (msg.get("chat") or {}).get("id"),
                "message_id": msg.get("message_id"),
                "message_text": msg.get("text"),
                "data": cb.get("data"),
            }

        if "inline_query" in update:
            iq = update["inline_query"] or {}
            return {
                "type": "inline_query",
                "update_id": update_id,
                "inline_query_id": iq.get("id", ""),
                "user_id": (iq.get("from") or {}).get("id"),
                "text": (iq.get("query") or "").strip(),
            }

        msg = update.get("message") or {}
        text = msg.get("text", "")
        chat_id = (msg.get("chat") or {}).get("id")
        user_id = (msg.get("from") or {}).get("id")

        if not text or chat_id is None:
            return None

        if text.startswith("/"):
            parts = text.split(maxsplit=1)
            command = parts[0].lstrip("/").split("@")[0]  # Handle @botname suffix
            args = parts[1] if len(parts) > 1 else ""
            return {
                "type": "command",
                "update_id": update_id,
                "chat_id": chat_id,
                "user_id": user_id,
                "command": command,
                "args": args.split(),
                "text": text,
            }

        return {
            "type": "message",
            "update_id": update_id,
            "chat_id": chat_id,
            "user_id": user_id,
            "text": text.strip(),
        }
