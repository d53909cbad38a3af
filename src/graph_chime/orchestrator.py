from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .detector import UpdateDetector

logger = logging.getLogger("graph_chime.orchestrator")


class PollOrchestrator:
    """One scheduled tick: delegate to the detector and swallow anything it lets escape."""

    def __init__(self, detector: UpdateDetector):
        self.detector = detector

    def execute(self) -> None:
        logger.info("Starting Job.")
        try:
            self.detector.check_for_updates()
            logger.info("Job completed.")
        except Exception as exc:
            logger.exception("Error: %s", exc)
