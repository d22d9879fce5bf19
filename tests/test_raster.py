import numpy as np
import pytest
from PIL import Image

from raster import (
    REGISTRY,
    EmptyInput,
    InvalidDimensions,
    InvalidKernel,
    InvalidParameter,
    RasterBuffer,
    RasterError,
    gray_to_raster,
    to_u8,
    with_rgb,
)
import tone  # noqa: F401  (registers generators)


def test_new_fills_every_pixel():
    buf = RasterBuffer.new(3, 2, (10, 20, 30, 40))
    assert buf.data.shape == (2, 3, 4)
    assert len(buf.pixels) == 3 * 2 * 4
    assert buf.pixel(2, 1) == (10, 20, 30, 40)


def test_from_bytes_checks_length():
    raw = bytes(range(16))
    buf = RasterBuffer.from_bytes(2, 2, raw)
    assert buf.pixel(1, 0) == (4, 5, 6, 7)
    with pytest.raises(InvalidDimensions):
        RasterBuffer.from_bytes(3, 2, raw)


def test_negative_size_is_rejected():
    with pytest.raises(InvalidDimensions):
        RasterBuffer(-1, 2, np.zeros(0, np.uint8))


def test_zero_size_buffer_fails_require_nonempty():
    buf = RasterBuffer.new(0, 4)
    with pytest.raises(InvalidDimensions):
        buf.require_nonempty()


def test_float_data_rounds_half_up():
    buf = RasterBuffer(1, 1, np.array([127.9, 300.0, -1.0, 0.5]))
    assert buf.pixel(0, 0) == (128, 255, 0, 1)


def test_from_array_adds_opaque_alpha_and_clamps():
    arr = np.array([[[300.0, -5.0, 12.4]]])
    buf = RasterBuffer.from_array(arr)
    assert buf.pixel(0, 0) == (255, 0, 12, 255)
    with pytest.raises(InvalidDimensions):
        RasterBuffer.from_array(np.zeros((2, 2)))


def test_pillow_adapters_roundtrip_rgba():
    img = Image.new("RGB", (4, 3), (1, 2, 3))
    buf = RasterBuffer.from_image(img)
    assert (buf.width, buf.height) == (4, 3)
    assert buf.pixel(3, 2) == (1, 2, 3, 255)
    back = buf.to_image()
    assert back.mode == "RGBA"
    assert back.getpixel((0, 0)) == (1, 2, 3, 255)


def test_to_u8_rounds_half_up_and_clamps():
    out = to_u8(np.array([127.5, 0.49, -3.0, 254.5, 999.0]))
    assert out.tolist() == [128, 0, 0, 255, 255]


def test_with_rgb_keeps_alpha():
    src = RasterBuffer.new(2, 1, (0, 0, 0, 77))
    out = with_rgb(src, np.full((1, 2, 3), 300.0))
    assert out.pixel(1, 0) == (255, 255, 255, 77)
    assert src.pixel(1, 0) == (0, 0, 0, 77)


def test_gray_to_raster_broadcasts():
    out = gray_to_raster(np.array([[10.0, 20.0]]))
    assert out.pixel(0, 0) == (10, 10, 10, 255)
    assert out.pixel(1, 0) == (20, 20, 20, 255)


def test_equality_compares_pixels():
    a = RasterBuffer.new(2, 2, (1, 1, 1, 1))
    assert a == a.copy()
    assert a != RasterBuffer.new(2, 2, (1, 1, 1, 2))


def test_error_taxonomy_is_value_error():
    for exc in (InvalidDimensions, InvalidParameter, InvalidKernel, EmptyInput):
        assert issubclass(exc, RasterError)
        assert issubclass(exc, ValueError)


def test_registry_unknown_name_lists_available():
    with pytest.raises(KeyError) as ei:
        REGISTRY.create("nope")
    assert "tone" in str(ei.value)


def test_registry_is_case_insensitive():
    gen = REGISTRY.create(" Tone ", seed=3)
    assert gen.seed == 3
