"""Orchestrator - drives demo ingestion, calibration and the WebSocket service."""
import asyncio
import os
from contextlib import asynccontextmanager, closing
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import uvicorn
import yaml

from radar_server import create_app

from .calibration import DEFAULT_METADATA_URL, MapCalibration, MapCalibrationResolver
from .demo_source import DemoEventSource, DemoHeader, DemoParser2Source, RecordedDemoSource
from .errors import StartupError
from .feed import BACKPRESSURE_POLICIES, ReplayBuffer, TickFeed, start_live_ingestion
from .log_aggregator import LogAggregator
from .session import SessionPublisher
from .ticks import build_tick_record


@dataclass(frozen=True)
class Replay:
    """Result of batch ingestion: everything the serve phase reads."""
    header: DemoHeader
    calibration: MapCalibration
    records: tuple


class RadarOrchestrator:
    """Owns one demo run: parse-then-serve (run) or serve-while-parsing (run_live)."""

    def __init__(
        self,
        config_path: str = "config/settings.yaml",
        overrides: Optional[dict] = None,
        echo: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.config_path = Path(config_path).resolve()
        self.root = self.config_path.parent.parent
        self.settings = self._load_settings(overrides or {})

        self.log_aggregator = LogAggregator(
            self.settings.get("log_directory"), root=self.root, echo=echo
        )
        self.resolver = MapCalibrationResolver(
            url_template=self.settings["metadata_url_template"],
            timeout=float(self.settings["metadata_timeout"]),
        )
        self.fatal_error: Optional[BaseException] = None
        self._server: Optional[uvicorn.Server] = None

    def _load_settings(self, overrides: dict) -> dict:
        """Defaults, then settings.yaml if present, then non-None overrides."""
        settings = self._get_default_settings()
        if self.config_path.exists():
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    loaded = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise StartupError(f"cannot load settings from {self.config_path}: {e}") from e
            if not isinstance(loaded, dict):
                raise StartupError(f"settings file {self.config_path} must contain a mapping")
            settings.update(loaded)
        settings.update({k: v for k, v in overrides.items() if v is not None})
        if settings["backpressure"] not in BACKPRESSURE_POLICIES:
            raise StartupError(
                f"unknown backpressure policy {settings['backpressure']!r}, expected one of {BACKPRESSURE_POLICIES}"
            )
        return settings

    def _get_default_settings(self) -> dict:
        return {
            "metadata_url_template": DEFAULT_METADATA_URL,
            "metadata_timeout": 10,
            "host": "0.0.0.0",
            "port": 8080,
            "handshake_timeout": 10,
            "write_timeout": 5,
            "live": False,
            "feed_queue_size": 256,
            "backpressure": "drop-oldest",
            "skip_dead_players": True,
            "suppress_parser_stdout": True,
            "map_checksum": None,
            "log_directory": "./logs",
            "maps_directory": "./maps",
        }

    def _resolve_path(self, value: str) -> Path:
        path = Path(value)
        return path if path.is_absolute() else self.root / path

    def log(self, message: str, source: str = "RADAR") -> None:
        self.log_aggregator.add(message, source)

    # --- Phase 1: ingestion ---

    def open_source(self, demo_path: str, checksum: Optional[int] = None) -> DemoEventSource:
        """Pick a source for demo_path. An empty path is a startup error, not a no-op."""
        if not demo_path:
            raise StartupError("no demo path given (use --demo <path>)")
        path = Path(demo_path)
        if not path.is_file():
            raise StartupError(f"demo file not found: {path}")
        if not os.access(path, os.R_OK):
            raise StartupError(f"demo file not readable: {path}")
        if path.suffix.lower() == ".json":
            return RecordedDemoSource.from_json(path)
        return DemoParser2Source(
            path,
            checksum=checksum,
            suppress_parser_stdout=bool(self.settings["suppress_parser_stdout"]),
            default_checksum=self.settings.get("map_checksum"),
        )

    def resolve_header(self, source: DemoEventSource) -> tuple[DemoHeader, MapCalibration]:
        """Block on the header, then resolve calibration exactly once."""
        header = source.open_header()
        self.log(f"Demo header: map={header.map_name} checksum={header.checksum}")
        calibration = self.resolver.resolve(header.map_name, header.checksum)
        self.log(
            f"Map calibration: origin=({calibration.origin_x}, {calibration.origin_y}) scale={calibration.scale}"
        )
        return header, calibration

    def ingest(self, source: DemoEventSource) -> Replay:
        """Drain the whole source into translated tick records. Closes the source."""
        skip_dead = bool(self.settings["skip_dead_players"])
        with closing(source):
            header, calibration = self.resolve_header(source)
            records = [
                build_tick_record(snapshot, calibration, skip_dead=skip_dead)
                for snapshot in source.snapshots()
            ]
        self.log(f"Ingested {len(records)} ticks")
        return Replay(header=header, calibration=calibration, records=tuple(records))

    # --- Phase 2: serving ---

    def build_publisher(self, calibration: MapCalibration, feed) -> SessionPublisher:
        return SessionPublisher(
            calibration,
            feed,
            handshake_timeout=float(self.settings["handshake_timeout"]),
            write_timeout=float(self.settings["write_timeout"]),
            log_aggregator=self.log_aggregator,
        )

    def build_app(self, calibration: MapCalibration, feed, lifespan=None):
        maps_directory = self.settings.get("maps_directory")
        return create_app(
            self.build_publisher(calibration, feed),
            log_aggregator=self.log_aggregator,
            maps_directory=self._resolve_path(maps_directory) if maps_directory else None,
            lifespan=lifespan,
        )

    def serve(self, app) -> None:
        """Run the listener until the process is stopped."""
        host, port = self.settings["host"], int(self.settings["port"])
        self._server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="info"))
        self.log(f"WebSocket server started on {host}:{port}")
        self._server.run()

    def run(self, demo_path: str, checksum: Optional[int] = None) -> None:
        """Parse the whole demo, then serve it."""
        replay = self.ingest(self.open_source(demo_path, checksum))
        self.serve(self.build_app(replay.calibration, ReplayBuffer(replay.records)))

    def _on_fatal(self, error: BaseException) -> None:
        self.fatal_error = error
        if self._server is not None:
            self._server.should_exit = True

    def run_live(self, demo_path: str, checksum: Optional[int] = None) -> None:
        """Serve while parsing: sessions attach to a bounded live feed.

        Header and calibration are resolved before the listener starts. A
        decode failure during the drain ends all sessions, stops the
        listener and is re-raised here.
        """
        source = self.open_source(demo_path, checksum)
        try:
            _, calibration = self.resolve_header(source)
        except BaseException:
            source.close()
            raise
        feed = TickFeed(
            maxsize=int(self.settings["feed_queue_size"]),
            policy=self.settings["backpressure"],
        )

        @asynccontextmanager
        async def lifespan(app):
            start_live_ingestion(
                source,
                calibration,
                feed,
                asyncio.get_running_loop(),
                skip_dead=bool(self.settings["skip_dead_players"]),
                log=lambda message: self.log(message, "INGEST"),
                on_fatal=self._on_fatal,
            )
            yield

        try:
            self.serve(self.build_app(calibration, feed, lifespan=lifespan))
        finally:
            source.close()
        if self.fatal_error is not None:
            raise self.fatal_error
