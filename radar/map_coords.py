"""Coordinate conversion between engine world space and radar image pixels.

Radar overview images place (0, 0) at the top-left corner. World Y grows
"up" while image Y grows "down", so the Y axis is flipped:

    pixel_x = (world_x - origin_x) / scale
    pixel_y = (origin_y - world_y) / scale
"""
from typing import NamedTuple, TYPE_CHECKING

if TYPE_CHECKING:
    from .calibration import MapCalibration


class WorldPosition(NamedTuple):
    """Position in engine world units."""
    x: float
    y: float


class PixelPosition(NamedTuple):
    """Position in radar image pixels, relative to the top-left corner."""
    x: float
    y: float


def translate(pos: WorldPosition, cal: "MapCalibration") -> PixelPosition:
    """Translate world coordinates to coordinates relative to the image origin (unscaled)."""
    return PixelPosition(pos.x - cal.origin_x, cal.origin_y - pos.y)


def translate_scaled(pos: WorldPosition, cal: "MapCalibration") -> PixelPosition:
    """Translate and scale world coordinates to radar image pixels.

    Args:
        pos: World position (e.g. a player's X/Y from a demo tick)
        cal: Calibration for the exact map version the demo was played on

    Returns:
        PixelPosition; not rounded or clamped, players can stand outside the image.
    """
    px, py = translate(pos, cal)
    return PixelPosition(px / cal.scale, py / cal.scale)


def untranslate(pixel: PixelPosition, cal: "MapCalibration") -> WorldPosition:
    """Inverse of translate()."""
    return WorldPosition(pixel.x + cal.origin_x, cal.origin_y - pixel.y)


def untranslate_scaled(pixel: PixelPosition, cal: "MapCalibration") -> WorldPosition:
    """Inverse of translate_scaled(): radar pixel back to world units."""
    return untranslate(PixelPosition(pixel.x * cal.scale, pixel.y * cal.scale), cal)
