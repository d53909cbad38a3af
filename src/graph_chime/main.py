from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from . import __version__

if TYPE_CHECKING:
    from .detector import UpdateDetector


class IdentityView(BaseModel):
    id: str
    principal_name: str
    display_name: str


class StatusView(BaseModel):
    initialized: bool
    identity: IdentityView | None
    last_message_check_time: datetime | None
    last_event_check_time: datetime | None


def build_app(detector: UpdateDetector | None = None) -> FastAPI:
    app = FastAPI(title="graph-chime admin API", version=__version__)
    # the daemon attaches its detector at startup
    app.state.detector = detector

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/status", response_model=StatusView)
    def status() -> Any:
        if app.state.detector is None:
            raise HTTPException(status_code=503, detail="Detector not available. Start the daemon.")
        session = app.state.detector.session
        identity = session.identity
        return StatusView(
            initialized=session.initialized,
            identity=IdentityView(
                id=identity.id,
                principal_name=identity.principal_name,
                display_name=identity.display_name,
            ) if identity else None,
            last_message_check_time=session.last_message_check_time,
            last_event_check_time=session.last_event_check_time,
        )

    return app
