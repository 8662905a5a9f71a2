"""Per-tick records derived from demo snapshots, in radar pixel space."""
from dataclasses import dataclass

from .calibration import MapCalibration
from .demo_source import Snapshot
from .map_coords import translate_scaled


@dataclass(frozen=True)
class PlayerMark:
    name: str
    steamid: str
    team: int
    x: float
    y: float
    alive: bool

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "steamid": self.steamid,
            "team": self.team,
            "x": self.x,
            "y": self.y,
            "alive": self.alive,
        }


@dataclass(frozen=True)
class TickRecord:
    tick: int
    players: tuple

    def to_message(self) -> dict:
        """One WebSocket message per tick."""
        return {
            "type": "tick",
            "tick": self.tick,
            "players": [p.to_dict() for p in self.players],
        }


def build_tick_record(
    snapshot: Snapshot, calibration: MapCalibration, skip_dead: bool = False
) -> TickRecord:
    """Translate every participant of a snapshot to radar pixels."""
    marks = []
    for p in snapshot.participants:
        if skip_dead and not p.is_alive:
            continue
        px, py = translate_scaled(p.position, calibration)
        marks.append(PlayerMark(p.name, p.steamid, p.team, px, py, p.is_alive))
    return TickRecord(tick=snapshot.tick, players=tuple(marks))
