"""Demo event sources: a header step followed by ordered per-tick snapshots.

Decoding the demo format itself is done by demoparser2; this module only
adapts its output behind a small interface the orchestrator drives:

    source.open_header()   -> DemoHeader (map name + map checksum)
    source.snapshots()     -> iterator of Snapshot, in tick order
    source.close()
"""
import json
import math
import os
import sys
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional, Protocol, Sequence

from demoparser2 import DemoParser
from pydantic import BaseModel, Field, ValidationError

from .calibration import MAX_CHECKSUM
from .errors import DecodeError, StartupError
from .map_coords import WorldPosition


@dataclass(frozen=True)
class DemoHeader:
    map_name: str
    checksum: int


@dataclass(frozen=True)
class Participant:
    name: str
    steamid: str
    team: int
    position: WorldPosition
    is_alive: bool


@dataclass(frozen=True)
class Snapshot:
    """One tick of world state."""
    tick: int
    participants: tuple


class DemoEventSource(Protocol):
    def open_header(self) -> DemoHeader: ...

    def snapshots(self) -> Iterator[Snapshot]: ...

    def close(self) -> None: ...


@contextmanager
def suppress_stdout():
    """Point file descriptor 1 at the null device for the duration of the block.

    The decoder is native code and writes straight to fd 1, so swapping
    sys.stdout alone is not enough.
    """
    sys.stdout.flush()
    saved = os.dup(1)
    try:
        with open(os.devnull, "w") as devnull:
            os.dup2(devnull.fileno(), 1)
            try:
                yield
            finally:
                sys.stdout.flush()
                os.dup2(saved, 1)
    finally:
        os.close(saved)


class _SourceBase:
    header: Optional[DemoHeader] = None

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _require_header(self) -> None:
        if self.header is None:
            raise RuntimeError("open_header() must be called before snapshots()")


# --- demoparser2 adapter ---

def _is_number(value: Any) -> bool:
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def _participant_from_row(row: Any) -> Optional[Participant]:
    x, y = getattr(row, "X", None), getattr(row, "Y", None)
    if not (_is_number(x) and _is_number(y)):
        return None
    team = getattr(row, "team_num", 0)
    alive = getattr(row, "is_alive", False)
    return Participant(
        name=str(getattr(row, "name", "") or ""),
        steamid=str(getattr(row, "steamid", "") or ""),
        team=int(team) if _is_number(team) else 0,
        position=WorldPosition(float(x), float(y)),
        is_alive=bool(alive) if alive == alive else False,  # NaN for players without a pawn
    )


class DemoParser2Source(_SourceBase):
    """DemoEventSource backed by demoparser2.DemoParser."""

    TICK_PROPS = ["X", "Y", "Z", "is_alive", "team_num"]

    def __init__(
        self,
        path: str | Path,
        checksum: Optional[int] = None,
        suppress_parser_stdout: bool = True,
        default_checksum: Optional[int] = None,
    ) -> None:
        self.path = Path(path)
        self.checksum_override = checksum
        self.default_checksum = default_checksum
        self.suppress_parser_stdout = suppress_parser_stdout
        self._parser: Optional[DemoParser] = None
        self.header = None

    def _quiet(self):
        return suppress_stdout() if self.suppress_parser_stdout else nullcontext()

    def open_header(self) -> DemoHeader:
        if self.header is not None:
            return self.header
        try:
            with self._quiet():
                self._parser = DemoParser(str(self.path))
                raw = self._parser.parse_header()
        except Exception as e:
            raise DecodeError(f"failed to read demo header from {self.path}: {e}") from e

        map_name = (raw or {}).get("map_name")
        if not map_name:
            raise DecodeError(f"demo header of {self.path} carries no map name")
        checksum = self.checksum_override
        if checksum is None:
            checksum = raw.get("map_crc")
        if checksum is None:
            checksum = self.default_checksum
        if checksum is None:
            raise StartupError(
                f"demo header of {self.path} carries no map checksum; pass it explicitly (--map-crc)"
            )
        try:
            checksum = int(checksum)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"invalid map checksum {checksum!r} in {self.path}") from e
        if not 0 <= checksum <= MAX_CHECKSUM:
            raise DecodeError(f"map checksum {checksum} in {self.path} is not a uint32")
        self.header = DemoHeader(map_name=map_name, checksum=checksum)
        return self.header

    def snapshots(self) -> Iterator[Snapshot]:
        self._require_header()
        try:
            with self._quiet():
                frame = self._parser.parse_ticks(self.TICK_PROPS)
        except Exception as e:
            raise DecodeError(f"failed to decode ticks from {self.path}: {e}") from e
        if frame is None or len(frame) == 0:
            return
        for tick, rows in frame.groupby("tick", sort=True):
            participants = (_participant_from_row(row) for row in rows.itertuples(index=False))
            yield Snapshot(tick=int(tick), participants=tuple(p for p in participants if p is not None))

    def close(self) -> None:
        self._parser = None


# --- recorded snapshot dumps ---

class DumpPlayer(BaseModel):
    name: str = ""
    steamid: str = ""
    team: int = 0
    x: float
    y: float
    alive: bool = True


class DumpTick(BaseModel):
    tick: int
    players: list[DumpPlayer] = []


class DemoDump(BaseModel):
    map_name: str
    checksum: int = Field(ge=0, le=MAX_CHECKSUM)
    ticks: list[DumpTick] = []


class RecordedDemoSource(_SourceBase):
    """In-memory source over already-decoded snapshots.

    If error is set it is raised after the last snapshot, the way a decoder
    reports a truncated demo.
    """

    def __init__(
        self,
        header: DemoHeader,
        snapshots: Sequence[Snapshot] = (),
        error: Optional[Exception] = None,
    ) -> None:
        self._header = header
        self._snapshots = tuple(snapshots)
        self._error = error
        self.header = None
        self.closed = False

    @classmethod
    def from_json(cls, path: str | Path) -> "RecordedDemoSource":
        """Load a snapshot dump ({"map_name", "checksum", "ticks": [...]})."""
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except OSError as e:
            raise StartupError(f"cannot read snapshot dump {path}: {e}") from e
        except ValueError as e:
            raise DecodeError(f"snapshot dump {path} is not valid JSON: {e}") from e
        try:
            dump = DemoDump.model_validate(raw)
        except ValidationError as e:
            raise DecodeError(f"malformed snapshot dump {path}: {e}") from e
        snapshots = [
            Snapshot(
                tick=t.tick,
                participants=tuple(
                    Participant(
                        name=p.name,
                        steamid=p.steamid,
                        team=p.team,
                        position=WorldPosition(p.x, p.y),
                        is_alive=p.alive,
                    )
                    for p in t.players
                ),
            )
            for t in sorted(dump.ticks, key=lambda t: t.tick)
        ]
        return cls(DemoHeader(map_name=dump.map_name, checksum=dump.checksum), snapshots)

    def open_header(self) -> DemoHeader:
        self.header = self._header
        return self.header

    def snapshots(self) -> Iterator[Snapshot]:
        self._require_header()
        yield from self._snapshots
        if self._error is not None:
            raise self._error

    def close(self) -> None:
        self.closed = True
