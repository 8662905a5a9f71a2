"""Radar console theme: colors, borders, session state styles and copy."""
from rich import box

# --- Box / border ---
RADAR_BOX = box.SQUARE

# --- Colors ---
RADAR_GREEN = "#3ddc84"
RADAR_GRID = "#4b5563"
RADAR_TEXT = "#d1d5db"
RADAR_SUCCESS = "green"
RADAR_WARN = "yellow3"

# --- Style combinations ---
panel_border_style = RADAR_GRID
table_header_style = f"bold {RADAR_GREEN}"
table_cell_style = RADAR_TEXT

# --- Copy ---
TITLE_MAIN = "demo-radar"
TITLE_CALIBRATION = "Map Calibration"
TITLE_DEMO = "Demo Summary"
TITLE_LAST_TICK = "Last Tick"
MSG_INGESTING = "Parsing demo..."
MSG_SERVING = "Serving radar feed (Ctrl+C to stop)"


def style_session_state(state) -> str:
    """Return Rich markup for a session state badge (e.g. [green]STREAM[/])."""
    from radar.session import SessionState

    labels = {
        SessionState.CONNECTING: (RADAR_WARN, "CONN"),
        SessionState.AWAITING_SUBSCRIBE: (RADAR_WARN, "WAIT"),
        SessionState.STREAMING: (RADAR_SUCCESS, "STREAM"),
        SessionState.CLOSED: (f"dim {RADAR_GRID}", "CLOSED"),
    }
    style, label = labels.get(state, ("dim", "???"))
    return f"[{style}]{label}[/]"
