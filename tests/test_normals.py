import numpy as np
import pytest

from normals import (
    DEFAULT_MAP_ADJUSTMENTS,
    MAP_NAMES,
    MapAdjustments,
    normal_map_from_color,
    synthesize_normal_map,
    texture_map,
    texture_maps,
)
from raster import REGISTRY, InvalidDimensions, InvalidParameter, RasterBuffer
from tone import ToneParams, apply_tone


def _ramp(w=8, h=4):
    arr = np.zeros((h, w, 4), np.uint8)
    arr[..., :3] = (np.arange(w) * 30)[None, :, None]
    arr[..., 3] = 255
    return RasterBuffer(w, h, arr)


@pytest.mark.parametrize("size", [(1, 1), (3, 2), (17, 9)])
@pytest.mark.parametrize("value", [0, 77, 255])
@pytest.mark.parametrize("strength", [0.5, 1.0, 7.0])
def test_flat_input_gives_straight_up_normal(size, value, strength):
    w, h = size
    lum = RasterBuffer.new(w, h, (value, value, value, 10))
    out = synthesize_normal_map(lum, strength)
    assert out == RasterBuffer.new(w, h, (128, 128, 255, 255))


@pytest.mark.parametrize("strength", [0, -1.0, float("nan"), float("inf")])
def test_non_positive_strength_raises(strength):
    with pytest.raises(InvalidParameter):
        synthesize_normal_map(_ramp(), strength)


def test_empty_luminance_raises():
    with pytest.raises(InvalidDimensions):
        synthesize_normal_map(RasterBuffer.new(0, 2), 1.0)


def test_ramp_tilts_red_channel():
    out = synthesize_normal_map(_ramp(), 1.0)
    r, g, b, a = out.pixel(4, 2)
    assert r > 128
    assert g == 128
    assert b < 255
    assert a == 255


def test_higher_strength_is_steeper():
    soft = synthesize_normal_map(_ramp(), 0.5).pixel(4, 2)
    hard = synthesize_normal_map(_ramp(), 4.0).pixel(4, 2)
    assert hard[0] > soft[0]
    assert hard[2] < soft[2]


def test_encoded_vectors_are_unit_length():
    out = synthesize_normal_map(_ramp(), 2.0)
    v = out.rgb.astype(np.float64) / 255.0 * 2.0 - 1.0
    assert np.allclose(np.linalg.norm(v, axis=2), 1.0, atol=0.02)


def test_colour_pre_pass_uses_grayscale():
    src = _ramp()
    assert normal_map_from_color(src, 1.0) == synthesize_normal_map(apply_tone(src), 1.0)
    inverted = normal_map_from_color(src, 1.0, ToneParams(invert=True))
    assert inverted.pixel(4, 2)[0] < 128


def test_texture_maps_defaults():
    src = _ramp()
    maps = texture_maps(src)
    assert tuple(maps) == MAP_NAMES
    assert maps["normal"] == synthesize_normal_map(apply_tone(src), 1.0)
    assert maps["displacement"] == apply_tone(src, ToneParams(contrast=1.0))
    assert maps["specular"] == maps["displacement"]
    assert maps["roughness"] == apply_tone(src, ToneParams(contrast=1.0, invert=True))


def test_texture_map_with_adjustments():
    src = _ramp()
    adj = MapAdjustments(contrast=0.0, blur=0.0, invert=True)
    assert texture_map(src, "displacement", adj) == apply_tone(src, ToneParams(contrast=0.0, invert=True))
    flat = RasterBuffer.new(5, 5, (90, 90, 90, 255))
    assert texture_map(flat, "roughness", MapAdjustments(blur=3)) == apply_tone(flat)


def test_unknown_map_name():
    with pytest.raises(InvalidParameter):
        texture_map(_ramp(), "albedo")
    with pytest.raises(InvalidParameter):
        texture_map(RasterBuffer.new(3, 3, (10, 20, 30, 255)), "albedo", MapAdjustments())
    with pytest.raises(InvalidParameter):
        texture_maps(_ramp(), {"albedo": MapAdjustments()})


def test_adjustments_update_from_extras():
    adj = DEFAULT_MAP_ADJUSTMENTS["normal"].updated({"strength": "2.5", "invert": "true", "other": 1})
    assert adj.strength == 2.5
    assert adj.invert is True
    assert DEFAULT_MAP_ADJUSTMENTS["roughness"].invert is True
    assert DEFAULT_MAP_ADJUSTMENTS["normal"].strength == 1.0


def test_generators():
    img = _ramp().to_image()
    normal = REGISTRY.create("normal_map").generate(img, strength=2.0)
    assert RasterBuffer.from_image(normal) == synthesize_normal_map(apply_tone(_ramp()), 2.0)
    rough = REGISTRY.create("texture_map").generate(img, map="roughness")
    assert RasterBuffer.from_image(rough) == texture_maps(_ramp())["roughness"]
    with pytest.raises(InvalidParameter):
        REGISTRY.create("texture_map").generate(img, map="albedo")
