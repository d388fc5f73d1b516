from __future__ import annotations

import html
from dataclasses import dataclass

from ivbot.delivery import session
from ivbot.models.domain import (
    Browsable,
    ErrorKind,
    Failure,
    FormattedDirect,
    Outcome,
    PinnedDefault,
    SessionState,
)
from ivbot.resolver.classifier import READER_VIEW_HOST, READER_VIEW_PATH

PARSE_MODE_HTML = "HTML"

MSG_BAD_INPUT = "格式错误，请发送一个 URL，或检查您的 URL 是否正确"
MSG_NO_CANDIDATES = "抱歉，由于数据库错误或是没有相应的 rhash 所以无法为您生成 Instant View 链接"
MSG_KEY_DERIVATION_FAILED = "无法生成由用户生成的 hash 字符串"
MSG_NO_EARLIER = "没有更靠前的模板"
MSG_NO_LATER = "没有更靠后的模板"
MSG_DEFAULT_DELETED = "已删除对应的默认设置"
MSG_DEFAULT_NOT_FOUND = "没找到对应的默认设置"
MSG_DEFAULT_DELETE_FAILED = "删除默认 rhash 失败"
MSG_DELETE_USAGE = "用法：/deleteDefaultRhash <URL>"

MSG_HELP = "\n".join([
    "发送一篇文章的链接，我会为它生成 Instant View 链接。",
    "",
    "• 发送 https://t.me/iv?url=...&rhash=... 形式的链接可以登记新的 rhash",
    "• 同一站点有多个 rhash 时可以用 < > 翻页，选定或设为默认",
    "• /deleteDefaultRhash <URL> 删除该站点的默认 rhash",
    "",
    "也可以在任意聊天中通过 inline 模式使用。",
])

_FAILURE_MESSAGES = {
    ErrorKind.NOT_A_URL: MSG_BAD_INPUT,
    ErrorKind.KEY_DERIVATION_FAILED: MSG_KEY_DERIVATION_FAILED,
    ErrorKind.NO_CANDIDATES: MSG_NO_CANDIDATES,
    ErrorKind.STORE_READ_FAILED: MSG_NO_CANDIDATES,
    ErrorKind.STORE_WRITE_FAILED: MSG_NO_CANDIDATES,
}


@dataclass(frozen=True)
class Reply:
    """Text plus the send options the transport needs."""
    text: str
    parse_mode: str | None = None
    reply_markup: dict | None = None


def _esc_url(url: str) -> str:
    return html.escape(url, quote=True)


def format_direct(link: str, article_url: str) -> str:
    """Terminal reply: one reader-view link next to the original article."""
    return f'<a href="{_esc_url(link)}">IV</a> from <a href="{_esc_url(article_url)}">原文</a>'


class ReplyFormatter:
    """Renders resolution outcomes for one reader-view host."""

    def __init__(self, host: str = READER_VIEW_HOST, path: str = READER_VIEW_PATH) -> None:
        self.host = host
        self.path = path

    def link(self, article_url: str, rtoken: str) -> str:
        return session.reader_view_link(article_url, rtoken, self.host, self.path)

    def terminal(self, article_url: str, rtoken: str, link: str = "") -> Reply:
        return Reply(format_direct(link or self.link(article_url, rtoken), article_url),
                     parse_mode=PARSE_MODE_HTML)

    def browsing(self, state: SessionState) -> Reply:
        return Reply(session.encode(state, self.host, self.path), reply_markup=session.keyboard())

    def failure(self, kind: ErrorKind) -> Reply:
        return Reply(_FAILURE_MESSAGES.get(kind, MSG_NO_CANDIDATES))

    def outcome(self, outcome: Outcome) -> Reply:
        if isinstance(outcome, FormattedDirect):
            return self.terminal(outcome.article_url, outcome.rtoken, outcome.link)
        if isinstance(outcome, PinnedDefault):
            return self.terminal(outcome.article_url, outcome.rtoken)
        if isinstance(outcome, Browsable):
            state = SessionState(
                article_url=outcome.article_url, host=outcome.host,
                current_token=outcome.candidates[0], ordinal=1,
                total_count=len(outcome.candidates),
            )
            return self.browsing(state)
        if isinstance(outcome, Failure):
            return self.failure(outcome.kind)
        raise TypeError(f"Unknown outcome: {outcome!r}")

    def inline_results(self, outcome: Outcome) -> list[dict]:
        """Inline query answers: one article result per usable token."""
        if isinstance(outcome, (FormattedDirect, PinnedDefault)):
            return [self._inline_article(outcome.rtoken, outcome.rtoken,
                                         self.terminal(outcome.article_url, outcome.rtoken,
                                                       getattr(outcome, "link", "")))]
        if isinstance(outcome, Browsable):
            return [
                self._inline_article(token, token, self.terminal(outcome.article_url, token))
                for token in outcome.candidates
            ]
        if isinstance(outcome, Failure):
            return [self._inline_article("Result", "Result", self.failure(outcome.kind))]
        raise TypeError(f"Unknown outcome: {outcome!r}")

    @staticmethod
    def _inline_article(result_id: str, title: str, reply: Reply) -> dict:
        content: dict = {"message_text": reply.text}
        if reply.parse_mode:
            content["parse_mode"] = reply.parse_mode
        return {
            "type": "article",
            "id": result_id[:64],
            "title": title,
            "input_message_content": content,
        }
