from __future__ import annotations

import argparse
import asyncio
import atexit
import fcntl
import importlib.metadata
import json
import os
import sys
from pathlib import Path
from typing import IO

from .config import ChimeSettings
from .daemon import configure_logging, run as run_daemon, run_once
from .notifier import SoundNotifier

_LOCK_FILE: IO[str] | None = None


def _read_lock_metadata(lock_path: Path) -> str:
    try:
        payload = json.loads(lock_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return ""
    if not isinstance(payload, dict):
        return ""
    return ", ".join(f"{key}={value}" for key, value in sorted(payload.items()))


def _acquire_daemon_lock(settings: ChimeSettings | None = None) -> tuple[int, Path]:
    """Take an exclusive, non-blocking lock so only one daemon polls per user."""
    global _LOCK_FILE
    settings = settings or ChimeSettings()
    lock_path = Path(settings.lock_path).expanduser()
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_fd = lock_path.open("a+", encoding="utf-8")
    try:
        fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError as exc:
        lock_fd.close()
        holder = _read_lock_metadata(lock_path)
        detail = f" Lock metadata: {holder}" if holder else ""
        raise RuntimeError(
            f"Another graph-chime daemon appears to be running (lock: {lock_path}).{detail}"
        ) from exc

    lock_fd.seek(0)
    lock_fd.truncate()
    lock_fd.write(json.dumps({"pid": str(os.getpid()), "cwd": str(Path.cwd())}))
    lock_fd.flush()
    _LOCK_FILE = lock_fd
    atexit.register(_release_daemon_lock)
    return lock_fd.fileno(), lock_path


def _release_daemon_lock() -> None:
    global _LOCK_FILE
    if _LOCK_FILE is None:
        return
    try:
        _LOCK_FILE.seek(0)
        _LOCK_FILE.truncate()
        fcntl.flock(_LOCK_FILE.fileno(), fcntl.LOCK_UN)
    except (OSError, ValueError):
        pass
    finally:
        _LOCK_FILE.close()
        _LOCK_FILE = None


def _get_version() -> str:
    try:
        return importlib.metadata.version("graph-chime")
    except importlib.metadata.PackageNotFoundError:
        return "0.1.0 (dev)"


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Plays a sound when Teams messages, mentions or meeting invitations arrive"
    )
    parser.add_argument(
        "mode",
        choices=["daemon", "check", "sound", "version"],
        nargs="?",
        default="daemon",
        help="daemon: poll until stopped; check: one poll cycle; sound: play the cue once",
    )
    parser.add_argument("--version", "-V", action="store_true", help="Show version and exit")
    args = parser.parse_args(argv)

    if args.version or args.mode == "version":
        print(f"graph-chime {_get_version()}")
        return

    settings = ChimeSettings()

    if args.mode == "sound":
        configure_logging(settings)
        SoundNotifier(settings.notification_sound_file_path).notify()
        return

    if args.mode == "check":
        run_once(settings)
        return

    try:
        _acquire_daemon_lock(settings)
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        raise SystemExit(1) from exc
    asyncio.run(run_daemon(settings))


if __name__ == "__main__":
    main()
