"""Command-line interface for demo-radar."""
from pathlib import Path

import click
import requests
from rich.console import Console
from rich.markup import escape
from rich.text import Text

from radar.errors import RadarError
from radar.map_coords import WorldPosition, translate, translate_scaled
from radar.orchestrator import RadarOrchestrator
from radar.session import SessionState

from ui import theme
from ui.widgets import key_value_table, radar_panel, radar_table

console = Console()

DEFAULT_CONFIG = Path(__file__).resolve().parent.parent / "config" / "settings.yaml"


def _echo(line: str) -> None:
    console.print(line, markup=False, highlight=False)


def get_orchestrator(config_path: str, overrides: dict | None = None) -> RadarOrchestrator:
    """Create an orchestrator; bad settings exit the process like any startup error."""
    try:
        return RadarOrchestrator(config_path, overrides=overrides, echo=_echo)
    except RadarError as e:
        _fail(e)


def _fail(error: Exception) -> None:
    console.print(f"[red]{type(error).__name__}[/]: {escape(str(error))}")
    raise SystemExit(1)


@click.group()
@click.option("--config", "config_path", default=str(DEFAULT_CONFIG), show_default=True, help="Settings YAML")
@click.pass_context
def cli(ctx: click.Context, config_path: str) -> None:
    """Demo radar: map demo positions onto radar images and stream them."""
    ctx.obj = config_path


@cli.command()
@click.option("--demo", "-demo", "demo_path", default="", help="Demo file path (.dem or snapshot .json)")
@click.option("--map-crc", type=int, default=None, help="Map checksum when the demo header lacks one")
@click.option("--live/--batch", default=None, help="Serve while parsing (default from settings)")
@click.option("--host", default=None, help="Listen address")
@click.option("--port", type=int, default=None, help="Listen port")
@click.pass_obj
def serve(config_path: str, demo_path: str, map_crc: int | None, live: bool | None, host: str | None, port: int | None) -> None:
    """Parse a demo and serve its radar feed on /echo."""
    orchestrator = get_orchestrator(config_path, {"host": host, "port": port, "live": live})
    try:
        if orchestrator.settings["live"]:
            console.print(f"[bold]{theme.MSG_SERVING}[/]")
            orchestrator.run_live(demo_path, map_crc)
        else:
            console.print(f"[bold]{theme.MSG_INGESTING}[/]")
            orchestrator.run(demo_path, map_crc)
    except RadarError as e:
        _fail(e)


@cli.command()
@click.argument("map_name")
@click.argument("checksum", type=int)
@click.pass_obj
def calibration(config_path: str, map_name: str, checksum: int) -> None:
    """Fetch calibration for MAP_NAME at version CHECKSUM."""
    orchestrator = get_orchestrator(config_path, {"log_directory": ""})
    try:
        cal = orchestrator.resolver.resolve(map_name, checksum)
    except (RadarError, ValueError) as e:
        _fail(e)
    console.print(key_value_table(
        [("Map", cal.map_name), ("Origin X", cal.origin_x), ("Origin Y", cal.origin_y), ("Scale", cal.scale)],
        title=theme.TITLE_CALIBRATION,
    ))


@cli.command("translate")
@click.argument("map_name")
@click.argument("checksum", type=int)
@click.argument("x", type=float)
@click.argument("y", type=float)
@click.pass_obj
def translate_point(config_path: str, map_name: str, checksum: int, x: float, y: float) -> None:
    """Translate world position X Y to radar pixels for MAP_NAME at CHECKSUM."""
    orchestrator = get_orchestrator(config_path, {"log_directory": ""})
    try:
        cal = orchestrator.resolver.resolve(map_name, checksum)
    except (RadarError, ValueError) as e:
        _fail(e)
    pos = WorldPosition(x, y)
    unscaled = translate(pos, cal)
    scaled = translate_scaled(pos, cal)
    console.print(key_value_table(
        [
            ("World", f"{pos.x}, {pos.y}"),
            ("Translated", f"{unscaled.x}, {unscaled.y}"),
            ("Pixels", f"{scaled.x:.2f}, {scaled.y:.2f}"),
        ],
        title=cal.map_name,
    ))


@cli.command()
@click.option("--demo", "-demo", "demo_path", default="", help="Demo file path (.dem or snapshot .json)")
@click.option("--map-crc", type=int, default=None, help="Map checksum when the demo header lacks one")
@click.pass_obj
def inspect(config_path: str, demo_path: str, map_crc: int | None) -> None:
    """Parse a demo and print a summary without serving it."""
    orchestrator = get_orchestrator(config_path)
    try:
        replay = orchestrator.ingest(orchestrator.open_source(demo_path, map_crc))
    except RadarError as e:
        _fail(e)
    records = replay.records
    console.print(key_value_table(
        [
            ("Map", replay.header.map_name),
            ("Checksum", replay.header.checksum),
            ("Scale", replay.calibration.scale),
            ("Ticks", len(records)),
            ("First tick", records[0].tick if records else "-"),
            ("Last tick", records[-1].tick if records else "-"),
            ("Max players", max((len(r.players) for r in records), default=0)),
        ],
        title=theme.TITLE_DEMO,
    ))
    if records:
        rows = [
            (p.name or p.steamid, str(p.team), f"{p.x:.1f}", f"{p.y:.1f}", "yes" if p.alive else "no")
            for p in records[-1].players
        ]
        console.print(radar_table(("Player", "Team", "X px", "Y px", "Alive"), rows, title=theme.TITLE_LAST_TICK))


@cli.command()
@click.option("--url", default="http://localhost:8080", show_default=True, help="Running radar server")
def sessions(url: str) -> None:
    """Show sessions of a running server."""
    try:
        resp = requests.get(f"{url.rstrip('/')}/api/sessions", timeout=5)
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        _fail(e)
    if not data:
        console.print(radar_panel("No active sessions", title=theme.TITLE_MAIN))
        return
    rows = []
    for s in data:
        try:
            badge = theme.style_session_state(SessionState(s["state"]))
        except ValueError:
            badge = s["state"]
        rows.append((s["session_id"], Text.from_markup(badge), str(s["ticks_sent"]), str(s["dropped"]), s["runtime"]))
    console.print(radar_table(("Session", "State", "Ticks", "Dropped", "Runtime"), rows, title=theme.TITLE_MAIN))


if __name__ == "__main__":
    cli()
