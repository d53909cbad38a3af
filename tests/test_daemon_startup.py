import asyncio
import logging
import socket
from datetime import timedelta
from logging.handlers import TimedRotatingFileHandler

import pytest

import graph_chime.daemon as daemon_module
from graph_chime.config import ChimeSettings
from graph_chime.daemon import ChimeDaemon, configure_logging, run_once


def _settings(tmp_path, **overrides) -> ChimeSettings:
    values = {
        "log_dir": tmp_path / "logs",
        "notification_sound_file_path": str(tmp_path / "cue.wav"),
        "polling_interval_minutes": 2,
        "lookback_minutes": 10,
        "message_page_size": 35,
        "enable_event_check": False,
        "lock_path": tmp_path / "daemon.lock",
    }
    values.update(overrides)
    return ChimeSettings(_env_file=None, **values)


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        if handler not in before:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def _own_handlers(root: logging.Logger) -> list[logging.Handler]:
    return [h for h in root.handlers if getattr(h, "_graph_chime", False)]


def test_configure_logging_adds_console_and_midnight_file(tmp_path, root_logger):
    configure_logging(_settings(tmp_path, log_level="debug"))

    handlers = _own_handlers(root_logger)
    file_handlers = [h for h in handlers if isinstance(h, TimedRotatingFileHandler)]
    assert len(handlers) == 2
    assert len(file_handlers) == 1
    assert file_handlers[0].when == "MIDNIGHT"
    assert file_handlers[0].baseFilename == str(tmp_path / "logs" / "graph-chime.log")
    assert root_logger.level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING


def test_configure_logging_is_idempotent(tmp_path, root_logger):
    settings = _settings(tmp_path)

    configure_logging(settings)
    configure_logging(settings)

    assert len(_own_handlers(root_logger)) == 2


def test_configure_logging_falls_back_to_console_when_log_dir_unusable(tmp_path, root_logger):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")

    configure_logging(_settings(tmp_path, log_dir=blocker / "logs"))

    handlers = _own_handlers(root_logger)
    assert len(handlers) == 1
    assert not isinstance(handlers[0], TimedRotatingFileHandler)


def test_daemon_wires_components_from_settings(tmp_path):
    daemon = ChimeDaemon(_settings(tmp_path))
    try:
        assert daemon.detector.lookback == timedelta(minutes=10)
        assert daemon.detector.message_page_size == 35
        assert daemon.detector.enable_event_check is False
        assert daemon.detector.graph is daemon.graph
        assert daemon.detector.notifier is daemon.notifier
        assert daemon.notifier.sound_file_path == str(tmp_path / "cue.wav")
        assert daemon.scheduler.interval_seconds == 120.0
        assert daemon.scheduler.job == daemon.orchestrator.execute
        assert not daemon.detector.session.initialized
    finally:
        daemon.shutdown()


def test_request_shutdown_stops_scheduler(tmp_path):
    daemon = ChimeDaemon(_settings(tmp_path))
    calls = []
    daemon.orchestrator.execute = lambda: calls.append("tick")  # type: ignore[method-assign]
    daemon.scheduler.job = daemon.orchestrator.execute
    daemon.request_shutdown()
    try:
        asyncio.run(asyncio.wait_for(daemon.run_forever(), timeout=5))
    finally:
        daemon.shutdown()

    assert calls == []


def test_run_once_executes_a_single_cycle_and_closes(tmp_path, monkeypatch):
    events = []

    class FakeOrchestrator:
        def execute(self):
            events.append("execute")

    class FakeDaemon:
        def __init__(self, settings):
            self.orchestrator = FakeOrchestrator()

        def shutdown(self):
            events.append("shutdown")

    monkeypatch.setattr(daemon_module, "configure_logging", lambda settings: events.append("logging"))
    monkeypatch.setattr(daemon_module, "ChimeDaemon", FakeDaemon)

    run_once(_settings(tmp_path))

    assert events == ["logging", "execute", "shutdown"]


def test_admin_api_bind_failure_does_not_stop_polling(tmp_path, caplog):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as occupied:
        occupied.bind(("127.0.0.1", 0))
        occupied.listen()
        port = occupied.getsockname()[1]

        daemon = ChimeDaemon(
            _settings(
                tmp_path,
                polling_interval_minutes=0.001,
                enable_admin_api=True,
                admin_host="127.0.0.1",
                admin_port=port,
            )
        )
        ticks = []
        daemon.scheduler.job = lambda: ticks.append("tick")

        async def _run_then_stop():
            asyncio.get_running_loop().call_later(0.5, daemon.request_shutdown)
            await daemon.run_forever()

        caplog.set_level(logging.ERROR, logger="graph_chime.daemon")
        try:
            asyncio.run(asyncio.wait_for(_run_then_stop(), timeout=5))
        finally:
            daemon.shutdown()

    assert len(ticks) >= 2
    assert "Admin API failed to start" in caplog.text
