import logging

import numpy as np
import pytest
from PIL import Image

from palettes import Palette, extract_palette, palette_from_raster, sample_pixels
from raster import REGISTRY, InvalidDimensions, InvalidParameter, RasterBuffer


def _two_tone(w=20, h=10):
    arr = np.zeros((h, w, 4), np.uint8)
    arr[:, : w // 2] = (200, 30, 40, 255)
    arr[:, w // 2 :] = (10, 120, 250, 255)
    return RasterBuffer(w, h, arr)


def test_single_cluster_is_the_mean():
    rng = np.random.default_rng(7)
    samples = rng.integers(0, 256, size=(500, 3)).astype(np.float64)
    pal = extract_palette(samples, k=1, max_iterations=5, seed=1)
    assert len(pal) == 1
    assert np.allclose(pal.centroids[0], samples.mean(axis=0))


@pytest.mark.parametrize("seed", range(8))
def test_two_colours_are_recovered_for_any_start(seed):
    a, b = (250.0, 10.0, 10.0), (5.0, 5.0, 240.0)
    samples = [a] * 50 + [b] * 50
    pal = extract_palette(samples, k=2, max_iterations=20, seed=seed)
    assert sorted(pal.rgb()) == sorted([(250, 10, 10), (5, 5, 240)])


class _FixedStart:
    """Stands in for a Generator; always picks the same starting samples."""

    def __init__(self, *indices):
        self.indices = np.array(indices)

    def integers(self, low, high, size):
        return self.indices[:size]


_LINE = [(0, 0, 0), (10, 0, 0), (100, 0, 0), (110, 0, 0)]


def test_max_iterations_caps_the_updates():
    # start at 0 and 10; one update: {0} -> 0, {10, 100, 110} -> 73.33
    pal = extract_palette(_LINE, k=2, max_iterations=1, rng=_FixedStart(0, 1))
    assert pal.centroids[0] == (0.0, 0.0, 0.0)
    assert np.allclose(pal.centroids[1], (220.0 / 3.0, 0.0, 0.0))


def test_stops_once_centroids_settle(caplog):
    # second update gives 5 and 105, the third moves nothing
    with caplog.at_level(logging.DEBUG, logger="texturekit.palettes"):
        pal = extract_palette(_LINE, k=2, max_iterations=20, rng=_FixedStart(0, 1))
    assert pal.rgb() == [(5, 0, 0), (105, 0, 0)]
    assert "converged after 3 iteration(s)" in caplog.text


def test_empty_samples_give_empty_palette():
    pal = extract_palette([], k=3, max_iterations=10)
    assert len(pal) == 0
    assert pal.hex_codes() == []
    assert pal.to_raster(4).width == 4


@pytest.mark.parametrize("k,iterations", [(0, 10), (-2, 10), (3, 0)])
def test_bad_arguments(k, iterations):
    with pytest.raises(InvalidParameter):
        extract_palette([(1, 2, 3)], k=k, max_iterations=iterations)


def test_k_larger_than_distinct_colours_is_legal():
    pal = extract_palette([(9, 9, 9)] * 4, k=3, seed=0)
    assert pal.rgb() == [(9, 9, 9)] * 3


def test_seed_makes_clustering_reproducible():
    rng = np.random.default_rng(3)
    samples = rng.integers(0, 256, size=(300, 3))
    first = extract_palette(samples, k=4, seed=42)
    again = extract_palette(samples, k=4, seed=42)
    assert first.centroids == again.centroids


def test_empty_cluster_keeps_its_centroid():
    samples = np.array([[0, 0, 0]] * 10, np.float64)
    # Both centres start on the same sample; ties go to index 0.
    pal = extract_palette(samples, k=2, rng=np.random.default_rng(0))
    assert pal.rgb() == [(0, 0, 0), (0, 0, 0)]


def test_hex_encoding_rounds_channels():
    pal = Palette(((255.0, 0.4, 16.5), (1.0, 2.0, 171.0)))
    assert pal.hex_codes() == ["#ff0011", "#0102ab"]
    assert pal.hex_codes(upper=True) == ["#FF0011", "#0102AB"]


def test_swatch_strip():
    pal = Palette(((255.0, 0.0, 0.0), (0.0, 0.0, 255.0)))
    strip = pal.to_raster(swatch=4)
    assert (strip.width, strip.height) == (8, 4)
    assert strip.pixel(0, 0) == (255, 0, 0, 255)
    assert strip.pixel(7, 3) == (0, 0, 255, 255)


def test_sample_pixels_stride():
    src = _two_tone(20, 10)
    samples = sample_pixels(src, stride=10)
    assert samples.shape == (20, 3)
    assert samples[0].tolist() == [200.0, 30.0, 40.0]
    assert samples[1].tolist() == [10.0, 120.0, 250.0]


def test_sample_pixels_downscales_wide_images():
    src = RasterBuffer.new(800, 10, (5, 6, 7, 255))
    samples = sample_pixels(src, stride=10, max_width=400)
    assert samples.shape == (400 * 5 // 10, 3)
    small = RasterBuffer.new(40, 2, (5, 6, 7, 255))
    assert sample_pixels(small, stride=1).shape == (80, 3)


def test_sample_pixels_errors():
    with pytest.raises(InvalidParameter):
        sample_pixels(_two_tone(), stride=0)
    with pytest.raises(InvalidDimensions):
        sample_pixels(RasterBuffer.new(0, 0))


def test_palette_from_raster():
    pal = palette_from_raster(_two_tone(), 2, stride=1, seed=5)
    assert sorted(pal.hex_codes()) == ["#0a78fa", "#c81e28"]


def test_generator_writes_hex_file(tmp_path):
    out_file = tmp_path / "codes" / "palette.txt"
    gen = REGISTRY.create("palette", seed=2)
    img = gen.generate(_two_tone().to_image(), colors=2, stride=1, swatch=8, out=str(out_file))
    assert isinstance(img, Image.Image)
    assert img.size == (16, 8)
    assert sorted(out_file.read_text(encoding="utf-8").split()) == ["#0a78fa", "#c81e28"]
