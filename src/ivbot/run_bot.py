"""Long-polling entry point.

Usage:
    BOT_TOKEN=... python -m ivbot.run_bot

Each update is handed to a worker thread as an independent unit of work.
A failing unit is logged and never stops polling. Ctrl+C stops the loop
and waits for in-flight units.
"""
from __future__ import annotations

import logging
import signal
import sys
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass

from ivbot.delivery.bot import TelegramBot, TransportError
from ivbot.delivery.browsing import BrowsingStateMachine
from ivbot.delivery.formatter import ReplyFormatter
from ivbot.logging_config import configure_logging
from ivbot.models.config import BotConfig, ConfigError, load_config
from ivbot.orchestration.communication import CommunicationAgent
from ivbot.resolver.engine import ResolutionEngine
from ivbot.storage.persistence import JsonMapStore, StoreError
from ivbot.storage.registries import CandidateRegistry, PreferenceRegistry

log = logging.getLogger("ivbot.run_bot")

_ERROR_BACKOFF_SECONDS = 5


@dataclass
class Application:
    config: BotConfig
    bot: TelegramBot
    agent: CommunicationAgent


def build_application(cfg: BotConfig, bot: TelegramBot | None = None) -> Application:
    """Open the stores and wire every component together."""
    cfg.data_dir.mkdir(parents=True, exist_ok=True)
    candidates = CandidateRegistry(JsonMapStore.open(cfg.candidates_path, name="rhash_vec_db"))
    preferences = PreferenceRegistry(
        JsonMapStore.open(cfg.preferences_path, name="default_setting_db"))
    engine = ResolutionEngine(candidates, preferences,
                              reader_view_host=cfg.reader_view_host,
                              reader_view_path=cfg.reader_view_path)
    formatter = ReplyFormatter(cfg.reader_view_host, cfg.reader_view_path)
    browsing = BrowsingStateMachine(candidates, preferences, formatter)
    if bot is None:
        bot = TelegramBot(cfg.bot_token, timeout=cfg.request_timeout, proxy=cfg.proxy)
    agent = CommunicationAgent(engine, bot, formatter=formatter, browsing=browsing)
    return Application(config=cfg, bot=bot, agent=agent)


def process_update(agent: CommunicationAgent, update: dict) -> dict | None:
    """Run one unit of work, logging instead of raising."""
    update_id = update.get("update_id")
    try:
        result = agent.handle_update(update)
    except TransportError as e:
        log.error("Transport failed while handling update %s: %s", update_id, e,
                  extra={"update_id": update_id})
        return None
    except Exception:
        log.exception("Error processing update %s", update_id, extra={"update_id": update_id})
        return None
    if result:
        log.info("Handled update %s: %s", update_id, result.get("action"),
                 extra={"update_id": update_id, "action": result.get("action")})
    return result


def poll(app: Application, stop: threading.Event) -> None:
    """Fetch updates until *stop* is set, dispatching each to the worker pool."""
    in_flight: set[Future] = set()
    with ThreadPoolExecutor(max_workers=app.config.max_workers,
                            thread_name_prefix="ivbot-worker") as pool:
        while not stop.is_set():
            try:
                updates = app.bot.get_updates(timeout=app.config.poll_timeout)
            except TransportError as e:
                log.warning("getUpdates failed: %s", e)
                stop.wait(_ERROR_BACKOFF_SECONDS)
                continue
            for update in updates:
                future = pool.submit(process_update, app.agent, update)
                in_flight.add(future)
                future.add_done_callback(in_flight.discard)
        if in_flight:
            log.info("Waiting for %d in-flight updates", len(in_flight))


def main() -> None:
    try:
        cfg = load_config()
    except ConfigError as e:
        configure_logging()
        log.error("Configuration error: %s", e)
        sys.exit(1)

    configure_logging(level=cfg.log_level, json_format=cfg.log_json, secrets=(cfg.bot_token,))

    try:
        app = build_application(cfg)
    except (StoreError, OSError) as e:
        log.error("Unable to open data stores in %s: %s", cfg.data_dir, e)
        sys.exit(1)

    try:
        me = app.bot.get_me()
        log.info("Authorized as @%s", me.get("username", "?") if isinstance(me, dict) else "?")
        app.bot.set_commands()
    except TransportError as e:
        log.warning("Bot startup calls failed: %s", e)

    stop = threading.Event()

    def _request_stop(signum, frame) -> None:
        log.info("Received signal %d, stopping", signum)
        stop.set()

    signal.signal(signal.SIGTERM, _request_stop)

    log.info("Polling started (workers=%d)", cfg.max_workers)
    started = time.monotonic()
    try:
        poll(app, stop)
    except KeyboardInterrupt:
        stop.set()
    log.info("Polling stopped after %.0fs", time.monotonic() - started)


if __name__ == "__main__":
    main()
