import numpy as np
import pytest

from filters import to_edge_map
from raster import REGISTRY, InvalidParameter, RasterBuffer
from tone import apply_tone
from vectorize import (
    TRACE_PRESETS,
    finalize_svg,
    fit_for_tracing,
    get_preset,
    prepare_for_tracing,
    trace,
)

SVG = '<svg><path fill="rgb(12,34,56)" stroke="rgb(1,2,3)" d="M0 0"/></svg>'


def _photo(w=6, h=5):
    rng = np.random.default_rng(1)
    return RasterBuffer(w, h, rng.integers(0, 256, size=(h, w, 4), dtype=np.uint8))


class _Tracer:
    def __init__(self):
        self.calls = []

    def __call__(self, raster, options):
        self.calls.append((raster, options))
        return SVG


def test_presets_expose_tracer_options():
    opts = get_preset("default").options()
    assert opts["numberofcolors"] == 32
    assert opts["viewbox"] is True
    assert "pal" not in opts
    bw = get_preset("ultra_detail_bw").options()
    assert bw["pal"] == [{"r": 0, "g": 0, "b": 0, "a": 255}, {"r": 255, "g": 255, "b": 255, "a": 255}]
    assert set(TRACE_PRESETS) == {"default", "ultra_detail_color", "ultra_detail_bw", "lineart", "sketch"}


def test_unknown_preset():
    with pytest.raises(InvalidParameter):
        get_preset("watercolour")
    assert get_preset(" LineArt ").name == "lineart"


def test_fit_for_tracing_bounds_longest_side():
    small = RasterBuffer.new(100, 50, (1, 2, 3, 255))
    assert fit_for_tracing(small) is small
    big = RasterBuffer.new(4096, 1000, (1, 2, 3, 255))
    fitted = fit_for_tracing(big)
    assert (fitted.width, fitted.height) == (2048, 500)
    assert fit_for_tracing(big, super_resolution=True) is big


def test_prepare_per_preset():
    src = _photo()
    assert prepare_for_tracing(src, get_preset("default")) == src
    assert prepare_for_tracing(src, get_preset("ultra_detail_bw")) == apply_tone(src)
    assert prepare_for_tracing(src, get_preset("lineart")) == to_edge_map(apply_tone(src))


def test_finalize_only_rewrites_outline_presets():
    assert finalize_svg(SVG, get_preset("default")) == SVG
    out = finalize_svg(SVG, get_preset("sketch"))
    assert 'fill="none"' in out
    assert 'stroke="black"' in out
    assert "rgb(" not in out


def test_trace_hands_prepared_raster_to_tracer():
    tracer = _Tracer()
    svg = trace(_photo(), "lineart", tracer)
    assert svg.count('fill="none"') == 1
    raster, options = tracer.calls[0]
    assert raster == to_edge_map(apply_tone(_photo()))
    assert options["strokewidth"] == 2


def test_trace_prep_generator():
    img = _photo().to_image()
    out = REGISTRY.create("trace_prep").generate(img, preset="sketch")
    assert RasterBuffer.from_image(out) == to_edge_map(apply_tone(_photo()))
