"""
demo-radar HTTP/WebSocket service.
Run: demo-radar serve --demo path/to/match.dem
"""
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pydantic import BaseModel

from radar.calibration import radar_image_name
from radar.log_aggregator import LogAggregator
from radar.session import SessionPublisher

_MAP_MEDIA_TYPES = {".png": "image/png", ".svg": "image/svg+xml", ".jpg": "image/jpeg", ".jpeg": "image/jpeg"}


# --- Pydantic models ---

class CalibrationSummary(BaseModel):
    map_name: str
    pos_x: float
    pos_y: float
    scale: float
    radar_image: str | None = None


class SessionSummary(BaseModel):
    session_id: str
    state: str
    ticks_sent: int
    dropped: int
    runtime: str
    close_code: int | None = None
    close_reason: str = ""


class StatusSummary(BaseModel):
    map_name: str
    feed: dict
    active_sessions: int
    completed_sessions: int


def create_app(
    publisher: SessionPublisher,
    log_aggregator: Optional[LogAggregator] = None,
    maps_directory: Optional[str | Path] = None,
    lifespan=None,
) -> FastAPI:
    """Build the service around one publisher; calibration and feed come with it."""
    app = FastAPI(title="demo-radar", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.publisher = publisher

    maps_dir = Path(maps_directory).resolve() if maps_directory else None
    has_maps = maps_dir is not None and maps_dir.is_dir()

    @app.websocket("/echo")
    async def echo(websocket: WebSocket):
        await publisher.handle(websocket)

    @app.get("/api/calibration")
    def get_calibration():
        cal = publisher.calibration
        image = radar_image_name(cal.map_name)
        return CalibrationSummary(
            map_name=cal.map_name,
            pos_x=cal.origin_x,
            pos_y=cal.origin_y,
            scale=cal.scale,
            radar_image=f"/maps/{image}" if has_maps and (maps_dir / image).is_file() else None,
        )

    @app.get("/api/status")
    def get_status():
        return StatusSummary(
            map_name=publisher.calibration.map_name,
            feed=publisher.feed.summary(),
            active_sessions=len(publisher.sessions),
            completed_sessions=publisher.completed,
        )

    @app.get("/api/sessions")
    def list_sessions():
        return [SessionSummary(**s) for s in publisher.summary()]

    @app.get("/api/logs")
    def get_logs(session_id: str | None = None, tail: int = 100):
        if log_aggregator is None:
            return {"lines": []}
        return {"lines": log_aggregator.get_aggregated_logs({"session_id": session_id, "tail": tail})}

    if has_maps:
        @app.get("/maps/{filename:path}")
        def serve_map_file(filename: str):
            path = (maps_dir / filename).resolve()
            if not path.is_file() or not path.is_relative_to(maps_dir):
                raise HTTPException(status_code=404, detail="Not found")
            media_type = _MAP_MEDIA_TYPES.get(path.suffix.lower(), "application/octet-stream")
            return FileResponse(path, media_type=media_type)

    return app
