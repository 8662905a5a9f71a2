import json
import os

import pandas as pd
import pytest

from radar import demo_source
from radar.demo_source import (
    DemoHeader,
    DemoParser2Source,
    RecordedDemoSource,
    suppress_stdout,
)
from radar.errors import DecodeError, StartupError
from radar.map_coords import WorldPosition


def _ticks_frame():
    return pd.DataFrame({
        "tick": [2, 1, 1, 2],
        "steamid": [76561198000000001, 76561198000000001, 76561198000000002, 76561198000000002],
        "name": ["alpha", "alpha", "bravo", "bravo"],
        "X": [110.0, 100.0, -2476.0, -2000.0],
        "Y": [190.0, 200.0, 3239.0, 3000.0],
        "Z": [0.0, 0.0, 0.0, 0.0],
        "is_alive": [True, True, True, False],
        "team_num": [2, 2, 3, 3],
    })


class FakeDemoParser:
    header = {"map_name": "de_dust2"}
    frame = None
    header_error = None
    ticks_error = None
    instances = []

    def __init__(self, path):
        self.path = path
        self.requested = None
        type(self).instances.append(self)

    def parse_header(self):
        os.write(1, b"demoparser noise\n")
        if self.header_error is not None:
            raise self.header_error
        return dict(self.header)

    def parse_ticks(self, props):
        self.requested = props
        if self.ticks_error is not None:
            raise self.ticks_error
        return self.frame


@pytest.fixture
def fake_parser(monkeypatch):
    parser = type("Parser", (FakeDemoParser,), {"instances": [], "frame": _ticks_frame()})
    monkeypatch.setattr(demo_source, "DemoParser", parser)
    return parser


def test_suppress_stdout_silences_fd_writes(capfd):
    with suppress_stdout():
        os.write(1, b"parser noise\n")
    os.write(1, b"after\n")
    out = capfd.readouterr().out
    assert "parser noise" not in out
    assert "after" in out


def test_header_with_explicit_checksum(fake_parser, tmp_path):
    source = DemoParser2Source(tmp_path / "match.dem", checksum=99)
    header = source.open_header()
    assert header == DemoHeader("de_dust2", 99)
    assert fake_parser.instances[0].path == str(tmp_path / "match.dem")


def test_header_checksum_from_demo(fake_parser, tmp_path):
    fake_parser.header = {"map_name": "de_mirage", "map_crc": "12345"}
    assert DemoParser2Source(tmp_path / "m.dem").open_header() == DemoHeader("de_mirage", 12345)


def test_header_without_checksum_is_a_startup_error(fake_parser, tmp_path):
    with pytest.raises(StartupError, match="--map-crc"):
        DemoParser2Source(tmp_path / "m.dem").open_header()


def test_header_without_map_name(fake_parser, tmp_path):
    fake_parser.header = {"map_name": ""}
    with pytest.raises(DecodeError):
        DemoParser2Source(tmp_path / "m.dem", checksum=1).open_header()


def test_header_with_out_of_range_checksum(fake_parser, tmp_path):
    fake_parser.header = {"map_name": "de_dust2", "map_crc": -5}
    with pytest.raises(DecodeError):
        DemoParser2Source(tmp_path / "m.dem").open_header()


def test_parser_failure_becomes_decode_error(fake_parser, tmp_path):
    fake_parser.header_error = Exception("not a demo")
    with pytest.raises(DecodeError, match="not a demo"):
        DemoParser2Source(tmp_path / "m.dem", checksum=1).open_header()


def test_header_parse_output_is_suppressed(fake_parser, tmp_path, capfd):
    DemoParser2Source(tmp_path / "m.dem", checksum=1).open_header()
    assert "demoparser noise" not in capfd.readouterr().out


def test_header_parse_output_kept_when_asked(fake_parser, tmp_path, capfd):
    DemoParser2Source(tmp_path / "m.dem", checksum=1, suppress_parser_stdout=False).open_header()
    assert "demoparser noise" in capfd.readouterr().out


def test_snapshots_require_header(fake_parser, tmp_path):
    source = DemoParser2Source(tmp_path / "m.dem", checksum=1)
    with pytest.raises(RuntimeError):
        next(source.snapshots())


def test_snapshots_grouped_in_tick_order(fake_parser, tmp_path):
    source = DemoParser2Source(tmp_path / "m.dem", checksum=1)
    source.open_header()
    snaps = list(source.snapshots())
    assert [s.tick for s in snaps] == [1, 2]
    assert fake_parser.instances[0].requested == DemoParser2Source.TICK_PROPS

    first = {p.name: p for p in snaps[0].participants}
    assert first["alpha"].position == WorldPosition(100.0, 200.0)
    assert first["alpha"].steamid == "76561198000000001"
    assert first["bravo"].team == 3

    second = {p.name: p for p in snaps[1].participants}
    assert second["bravo"].is_alive is False


def test_rows_without_position_are_skipped(fake_parser, tmp_path):
    frame = _ticks_frame()
    frame.loc[frame["name"] == "bravo", "X"] = float("nan")
    fake_parser.frame = frame
    source = DemoParser2Source(tmp_path / "m.dem", checksum=1)
    source.open_header()
    for snap in source.snapshots():
        assert [p.name for p in snap.participants] == ["alpha"]


def test_tick_decode_failure(fake_parser, tmp_path):
    fake_parser.ticks_error = Exception("truncated")
    source = DemoParser2Source(tmp_path / "m.dem", checksum=1)
    source.open_header()
    with pytest.raises(DecodeError, match="truncated"):
        list(source.snapshots())


def test_empty_demo_yields_nothing(fake_parser, tmp_path):
    fake_parser.frame = pd.DataFrame()
    with DemoParser2Source(tmp_path / "m.dem", checksum=1) as source:
        source.open_header()
        assert list(source.snapshots()) == []


def test_recorded_source_from_json(dump_file):
    with RecordedDemoSource.from_json(dump_file) as source:
        assert source.open_header() == DemoHeader("de_dust2", 2134543254)
        snaps = list(source.snapshots())
    assert source.closed
    assert [s.tick for s in snaps] == [0, 32, 64]
    assert snaps[0].participants[1].is_alive is False
    assert snaps[0].participants[0].position == WorldPosition(100.0, 200.0)


def test_recorded_source_requires_header(recorded_source):
    with pytest.raises(RuntimeError):
        next(recorded_source.snapshots())


def test_recorded_source_raises_after_last_snapshot(snapshots):
    source = RecordedDemoSource(DemoHeader("de_dust2", 1), snapshots, error=DecodeError("truncated"))
    source.open_header()
    seen = []
    with pytest.raises(DecodeError):
        for snap in source.snapshots():
            seen.append(snap.tick)
    assert seen == [1, 2, 3]


def test_dump_not_json(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{nope", encoding="utf-8")
    with pytest.raises(DecodeError):
        RecordedDemoSource.from_json(path)


@pytest.mark.parametrize("payload", [
    {"checksum": 1, "ticks": []},
    {"map_name": "de_dust2", "checksum": -1},
    {"map_name": "de_dust2", "checksum": 1, "ticks": [{"tick": 1, "players": [{"name": "a"}]}]},
])
def test_malformed_dump(tmp_path, payload):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    with pytest.raises(DecodeError):
        RecordedDemoSource.from_json(path)


def test_missing_dump(tmp_path):
    with pytest.raises(StartupError):
        RecordedDemoSource.from_json(tmp_path / "missing.json")


def test_configured_checksum_only_fills_a_gap(fake_parser, tmp_path):
    source = DemoParser2Source(tmp_path / "m.dem", default_checksum=7)
    assert source.open_header().checksum == 7

    fake_parser.header = {"map_name": "de_dust2", "map_crc": 55}
    assert DemoParser2Source(tmp_path / "m.dem", default_checksum=7).open_header().checksum == 55
    assert DemoParser2Source(tmp_path / "m.dem", checksum=3, default_checksum=7).open_header().checksum == 3
