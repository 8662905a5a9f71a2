import json

import pytest
import yaml

from radar.calibration import MapCalibration
from radar.demo_source import DemoHeader, Participant, RecordedDemoSource, Snapshot
from radar.map_coords import WorldPosition
from radar.orchestrator import RadarOrchestrator

DUST2_DOCUMENT = {
    "de_dust2": {"pos_x": "-2476", "pos_y": "3239", "scale": "4.4"},
    "de_mirage": {"pos_x": "-3230", "pos_y": "1713", "scale": "5.0"},
}

DUST2_CHECKSUM = 2134543254


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=None):
        self.payload = payload
        self.status_code = status_code
        self.text = text
        self.closed = False

    def json(self):
        if self.text is not None:
            return json.loads(self.text)
        return self.payload

    def close(self):
        self.closed = True


class FakeHttpSession:
    """Stands in for requests.Session; records every GET."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        if self.error is not None:
            raise self.error
        return self.response


def _participant(name, x, y, alive=True, team=2):
    return Participant(
        name=name,
        steamid=f"7656119800000{len(name):04d}",
        team=team,
        position=WorldPosition(x, y),
        is_alive=alive,
    )


@pytest.fixture
def dust2():
    return MapCalibration(map_name="de_dust2", origin_x=-2476.0, origin_y=3239.0, scale=4.4)


@pytest.fixture
def dust2_document():
    return json.loads(json.dumps(DUST2_DOCUMENT))


@pytest.fixture
def http_session():
    """Factory: http_session(payload=..., status_code=..., text=..., error=...)."""
    def make(payload=DUST2_DOCUMENT, status_code=200, text=None, error=None):
        return FakeHttpSession(FakeResponse(payload, status_code, text), error)
    return make


@pytest.fixture
def snapshots():
    return [
        Snapshot(tick=1, participants=(
            _participant("alpha", 100.0, 200.0),
            _participant("bravo", -2476.0, 3239.0, team=3),
        )),
        Snapshot(tick=2, participants=(
            _participant("alpha", 110.0, 190.0),
            _participant("bravo", -2000.0, 3000.0, alive=False, team=3),
        )),
        Snapshot(tick=3, participants=(
            _participant("alpha", 120.0, 180.0),
        )),
    ]


@pytest.fixture
def recorded_source(snapshots):
    return RecordedDemoSource(DemoHeader("de_dust2", DUST2_CHECKSUM), snapshots)


@pytest.fixture
def dump_file(tmp_path):
    """Snapshot dump on disk, ticks deliberately out of order."""
    path = tmp_path / "match.json"
    path.write_text(json.dumps({
        "map_name": "de_dust2",
        "checksum": DUST2_CHECKSUM,
        "ticks": [
            {"tick": 64, "players": [{"name": "alpha", "steamid": "1", "team": 2, "x": 120, "y": 180}]},
            {"tick": 0, "players": [
                {"name": "alpha", "steamid": "1", "team": 2, "x": 100, "y": 200},
                {"name": "bravo", "steamid": "2", "team": 3, "x": 0, "y": 0, "alive": False},
            ]},
            {"tick": 32, "players": [{"name": "alpha", "steamid": "1", "team": 2, "x": 110, "y": 190}]},
        ],
    }), encoding="utf-8")
    return path


@pytest.fixture
def settings_file(tmp_path):
    """Write a settings.yaml; returns a function taking overrides."""
    def write(**values):
        settings = {
            "log_directory": None,
            "maps_directory": None,
            "handshake_timeout": 2,
            "write_timeout": 2,
        }
        settings.update(values)
        config_dir = tmp_path / "config"
        config_dir.mkdir(exist_ok=True)
        path = config_dir / "settings.yaml"
        path.write_text(yaml.safe_dump(settings), encoding="utf-8")
        return path
    return write


@pytest.fixture
def orchestrator(settings_file, http_session):
    orch = RadarOrchestrator(str(settings_file()))
    orch.resolver.session = http_session()
    return orch
