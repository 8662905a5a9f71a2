"""Reusable radar-themed widgets for the CLI."""
from typing import Any, List, Optional, Sequence, Tuple

from rich.panel import Panel
from rich.table import Table

from ui import theme


def radar_panel(content: Any, title: Optional[str] = None) -> Panel:
    """Wrap content in a themed Panel."""
    return Panel(
        content,
        title=title,
        border_style=theme.panel_border_style,
        box=theme.RADAR_BOX,
    )


def radar_table(
    headers: Sequence[str],
    rows: List[Tuple[Any, ...]],
    title: Optional[str] = None,
) -> Table:
    """Build a themed Table with green headers and grid border."""
    t = Table(
        title=title,
        box=theme.RADAR_BOX,
        border_style=theme.panel_border_style,
        header_style=theme.table_header_style,
    )
    for h in headers:
        t.add_column(h, style=theme.table_cell_style)
    for row in rows:
        t.add_row(*row)
    return t


def key_value_table(pairs: Sequence[Tuple[str, Any]], title: Optional[str] = None) -> Table:
    """Two-column table for summaries."""
    return radar_table(("Field", "Value"), [(k, str(v)) for k, v in pairs], title=title)
