import math

import pytest

from radar.calibration import MapCalibration
from radar.map_coords import (
    PixelPosition,
    WorldPosition,
    translate,
    translate_scaled,
    untranslate,
    untranslate_scaled,
)


def test_translate_flips_y_axis(dust2):
    assert translate(WorldPosition(100.0, 200.0), dust2) == PixelPosition(2576.0, 3039.0)


def test_translate_scaled_dust2_example(dust2):
    px, py = translate_scaled(WorldPosition(100.0, 200.0), dust2)
    assert px == pytest.approx(585.4545454545)
    assert py == pytest.approx(690.6818181818)


def test_origin_maps_to_top_left(dust2):
    assert translate_scaled(WorldPosition(-2476.0, 3239.0), dust2) == PixelPosition(0.0, 0.0)


def test_positions_outside_image_are_not_clamped(dust2):
    px, py = translate_scaled(WorldPosition(-3000.0, 4000.0), dust2)
    assert px < 0
    assert py < 0


def test_translation_is_deterministic(dust2):
    pos = WorldPosition(1234.5678, -987.654)
    first = translate_scaled(pos, dust2)
    for _ in range(10):
        assert translate_scaled(pos, dust2) == first


def test_doubling_scale_halves_pixels(dust2):
    pos = WorldPosition(-100.0, 500.0)
    doubled = MapCalibration(dust2.map_name, dust2.origin_x, dust2.origin_y, dust2.scale * 2)
    px, py = translate_scaled(pos, dust2)
    qx, qy = translate_scaled(pos, doubled)
    assert qx == pytest.approx(px / 2)
    assert qy == pytest.approx(py / 2)


def test_higher_world_y_is_higher_on_image(dust2):
    low = translate_scaled(WorldPosition(0.0, 0.0), dust2)
    high = translate_scaled(WorldPosition(0.0, 100.0), dust2)
    assert high.y < low.y


@pytest.mark.parametrize("x, y", [(0.0, 0.0), (100.0, 200.0), (-2476.0, 3239.0), (1e5, -1e5)])
def test_round_trip(dust2, x, y):
    pos = WorldPosition(x, y)
    assert untranslate(translate(pos, dust2), dust2) == pos
    back = untranslate_scaled(translate_scaled(pos, dust2), dust2)
    assert back.x == pytest.approx(x)
    assert back.y == pytest.approx(y)


@pytest.mark.parametrize("scale", [0.0, -1.0, math.inf, math.nan])
def test_calibration_rejects_bad_scale(scale):
    with pytest.raises(ValueError):
        MapCalibration("de_dust2", 0.0, 0.0, scale)


def test_calibration_rejects_non_finite_origin():
    with pytest.raises(ValueError):
        MapCalibration("de_dust2", math.nan, 0.0, 1.0)
