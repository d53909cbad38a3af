from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import signal
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Callable

import uvicorn

from .config import ChimeSettings
from .detector import UpdateDetector
from .graph_client import GraphClient
from .main import build_app
from .notifier import SoundNotifier
from .orchestrator import PollOrchestrator
from .token_manager import TokenManager

logger = logging.getLogger("graph_chime.daemon")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(settings: ChimeSettings) -> None:
    """Console plus a log file that rolls over at midnight."""
    root = logging.getLogger()
    root.setLevel(settings.log_level)
    if any(getattr(handler, "_graph_chime", False) for handler in root.handlers):
        return

    formatter = logging.Formatter(_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console._graph_chime = True  # type: ignore[attr-defined]
    root.addHandler(console)

    try:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            settings.log_dir / "graph-chime.log",
            when="midnight",
            backupCount=14,
            encoding="utf-8",
        )
    except OSError as exc:
        logger.warning("File logging disabled; cannot write to %s: %s", settings.log_dir, exc)
    else:
        file_handler.setFormatter(formatter)
        file_handler._graph_chime = True  # type: ignore[attr-defined]
        root.addHandler(file_handler)

    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class PollScheduler:
    """Fixed-rate ticks that never overlap.

    Each cycle is awaited before the next tick is computed. Ticks that fall
    inside a still-running cycle are skipped rather than queued.
    """

    def __init__(
        self,
        job: Callable[[], None],
        interval_seconds: float,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.job = job
        self.interval_seconds = interval_seconds
        self._monotonic = monotonic
        self._stop = asyncio.Event()
        self.cycles_run = 0
        self.ticks_skipped = 0

    def stop(self) -> None:
        self._stop.set()

    async def run_forever(self) -> None:
        logger.info("Poll scheduler started (interval=%.0fs)", self.interval_seconds)
        next_tick = self._monotonic()
        while not self._stop.is_set():
            await asyncio.to_thread(self.job)
            self.cycles_run += 1

            next_tick += self.interval_seconds
            now = self._monotonic()
            if now > next_tick:
                missed = math.ceil((now - next_tick) / self.interval_seconds)
                self.ticks_skipped += missed
                next_tick += missed * self.interval_seconds
                logger.warning("Poll cycle overran; skipped %d tick(s)", missed)

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop.wait(), timeout=max(0.0, next_tick - self._monotonic()))
        logger.info("Poll scheduler stopped after %d cycle(s)", self.cycles_run)


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the daemon."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class ChimeDaemon:
    def __init__(self, settings: ChimeSettings):
        self.settings = settings
        self.token_manager = TokenManager(settings)
        self.graph = GraphClient(
            self.token_manager.authorization_header,
            base_url=settings.graph_base_url,
            timeout=settings.http_timeout_seconds,
        )
        self.notifier = SoundNotifier(settings.notification_sound_file_path)
        self.detector = UpdateDetector(
            token_manager=self.token_manager,
            graph=self.graph,
            notifier=self.notifier,
            lookback_minutes=settings.lookback_minutes,
            message_page_size=settings.message_page_size,
            enable_event_check=settings.enable_event_check,
        )
        self.orchestrator = PollOrchestrator(self.detector)
        self.scheduler = PollScheduler(self.orchestrator.execute, settings.polling_interval_seconds)
        self._admin_server: uvicorn.Server | None = None

    def request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self.scheduler.stop()
        if self._admin_server is not None:
            self._admin_server.should_exit = True

    def shutdown(self) -> None:
        logger.info("Shutting down...")
        for closeable in (self.graph, self.token_manager):
            try:
                closeable.close()
            except Exception as exc:
                logger.warning("Error closing HTTP client: %s", exc)
        logger.info("Shutdown complete")

    async def _serve_admin(self, server: uvicorn.Server) -> None:
        # uvicorn calls sys.exit when it cannot bind
        try:
            await server.serve()
        except (SystemExit, OSError) as exc:
            logger.error(
                "Admin API failed to start on %s:%s (%r); polling continues without it",
                self.settings.admin_host, self.settings.admin_port, exc,
            )

    async def run_forever(self) -> None:
        tasks = [asyncio.create_task(self.scheduler.run_forever())]
        if self.settings.enable_admin_api:
            app = build_app(self.detector)
            config = uvicorn.Config(
                app,
                host=self.settings.admin_host,
                port=self.settings.admin_port,
                log_level="warning",
            )
            self._admin_server = _EmbeddedServer(config)
            tasks.append(asyncio.create_task(self._serve_admin(self._admin_server)))
            logger.info("Admin API listening on http://%s:%s", self.settings.admin_host, self.settings.admin_port)
        try:
            await tasks[0]
        finally:
            if self._admin_server is not None:
                self._admin_server.should_exit = True
            await asyncio.gather(*tasks[1:], return_exceptions=True)


async def run(settings: ChimeSettings | None = None) -> None:
    settings = settings or ChimeSettings()
    configure_logging(settings)
    daemon = ChimeDaemon(settings)

    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("Received signal %s", sig.name)
        daemon.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    logger.info(
        "graph-chime running (foreground). Polling every %.1f minute(s), sound=%s, calendar=%s",
        settings.polling_interval_minutes,
        settings.notification_sound_file_path,
        "on" if settings.enable_event_check else "off",
    )
    logger.info("Ready. Press Ctrl+C to stop.")

    try:
        await daemon.run_forever()
    finally:
        daemon.shutdown()


def run_once(settings: ChimeSettings | None = None) -> None:
    """Run a single poll cycle in the foreground."""
    settings = settings or ChimeSettings()
    configure_logging(settings)
    daemon = ChimeDaemon(settings)
    try:
        daemon.orchestrator.execute()
    finally:
        daemon.shutdown()
