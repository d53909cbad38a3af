"""Plays the notification cue.

Windows uses the blocking in-process ``winsound`` player. macOS and Linux
shell out to ``afplay`` / ``aplay`` and give the player two seconds before
killing it. Nothing here raises to the caller.
"""

from __future__ import annotations

import logging
import subprocess
import sys
from pathlib import Path

from .errors import SoundFileNotFound

logger = logging.getLogger("graph_chime.notifier")

PLAYER_TIMEOUT_SECONDS = 2.0


def _player_command(path: str, platform: str) -> list[str] | None:
    if platform == "darwin":
        return ["afplay", path]
    if platform.startswith("linux"):
        return ["aplay", path]
    return None


class SoundNotifier:
    """Fire-and-forget sound playback."""

    def __init__(self, sound_file_path: str = "", platform: str | None = None):
        self.sound_file_path = sound_file_path
        self.platform = platform or sys.platform

    def notify(self) -> None:
        """Play the configured notification sound."""
        self.play(self.sound_file_path)

    def play(self, path: str) -> None:
        try:
            self._require_file(path)
        except SoundFileNotFound as exc:
            logger.error("Notification sound file not found at: %s", exc.path)
            return

        try:
            if self.platform == "win32":
                self._play_in_process(path)
            else:
                self._play_external(path)
        except Exception as exc:
            logger.error("Failed to play sound: %s", exc)

    @staticmethod
    def _require_file(path: str) -> None:
        if not path or not Path(path).is_file():
            raise SoundFileNotFound(path)

    @staticmethod
    def _play_in_process(path: str) -> None:
        import winsound

        winsound.PlaySound(path, winsound.SND_FILENAME)

    def _play_external(self, path: str) -> None:
        command = _player_command(path, self.platform)
        if command is None:
            logger.error("Sound playback is only supported on Windows, macOS, or Linux (with aplay).")
            return

        proc = subprocess.Popen(
            command,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
        )
        try:
            _, stderr = proc.communicate(timeout=PLAYER_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired:
            proc.kill()
            _, stderr = proc.communicate()
            logger.debug("%s overran %.0fs and was killed", command[0], PLAYER_TIMEOUT_SECONDS)
        if stderr and stderr.strip():
            logger.error("Error playing sound: %s", stderr.strip())
