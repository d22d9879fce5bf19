# tiling.py — wrap-friendly outputs: seamless tiles and mirror-tiled panoramas
# -----------------------------------------------------------------------------
# Seamless tile:
#   1. roll the image by half its size on both axes so the original borders meet
#      in the centre and the original centre lands on the tile edges;
#   2. blend row y with row H-1-y (and column x with column W-1-x) for
#      y < blend, weight smoothstep(y / blend), writing the result to both.
#   Row 0 equals row H-1 and column 0 equals column W-1 exactly afterwards.
#   Alpha is left at its (rolled) source values; only RGB is blended.
#
# Panorama:
#   scale to canvas height, centre, fill the letterbox by mirroring the image
#   outward across its own left/right edges, then intensity and box blur.
#
# Usage:
#   python main.py run --url brick.jpg --pipeline seamless --out tile.png \
#     --extra seamless.blend=20
#   python main.py run --url room.jpg --pipeline panorama --out pano.png \
#     --extra panorama.width=4096 panorama.height=2048 panorama.blur=2
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np
from PIL import Image

from filters import box_blur
from raster import (
    REGISTRY,
    BaseGenerator,
    InvalidDimensions,
    InvalidParameter,
    RasterBuffer,
    with_rgb,
)

log = logging.getLogger("texturekit.tiling")

__all__ = [
    "smoothstep",
    "TileParams",
    "make_seamless",
    "PanoramaParams",
    "synthesize_panorama",
    "SeamlessGenerator",
    "PanoramaGenerator",
]

MAX_BLEND_PERCENT = 50.0


def smoothstep(t: np.ndarray) -> np.ndarray:
    t = np.clip(t, 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


# ============================ seamless tile ============================

@dataclass(frozen=True)
class TileParams:
    blend_fraction_percent: float = 15.0

    @classmethod
    def from_extras(cls, extras: Dict[str, Any]) -> "TileParams":
        return cls(blend_fraction_percent=float(extras.get("blend", cls.blend_fraction_percent)))


def _blend_pairs(rgb: np.ndarray, blend: int, axis: int) -> None:
    """In-place symmetric blend of slices i and N-1-i along ``axis`` for i < blend."""
    a = np.moveaxis(rgb, axis, 0)
    t = smoothstep(np.arange(blend, dtype=np.float64) / blend)[:, None, None]
    near = a[:blend]
    far = a[::-1][:blend]
    mixed = np.floor(near * (1.0 - t) + far * t)
    a[:blend] = mixed
    a[a.shape[0] - blend:] = mixed[::-1]


def make_seamless(src: RasterBuffer, blend_fraction_percent: float = 15.0) -> RasterBuffer:
    """Quadrant swap, then smoothstep cross-blend of the outer ``blend`` rows/columns."""
    src.require_nonempty()
    pct = float(blend_fraction_percent)
    if not (0.0 <= pct <= MAX_BLEND_PERCENT):
        raise InvalidParameter(f"blend fraction must be within [0, {MAX_BLEND_PERCENT:g}]%, got {blend_fraction_percent}")

    h, w = src.height, src.width
    swapped = np.roll(src.data, shift=(-(h // 2), -(w // 2)), axis=(0, 1))

    blend = int(math.floor(min(w, h) * pct / 100.0))
    if blend == 0:
        log.debug("seamless: blend width 0, quadrant swap only")
        return RasterBuffer(w, h, swapped.copy())

    rgb = swapped[..., :3].astype(np.float64)
    _blend_pairs(rgb, blend, axis=0)
    _blend_pairs(rgb, blend, axis=1)
    out = RasterBuffer(w, h, swapped.copy())
    return with_rgb(out, rgb)


# ============================ panorama ============================

@dataclass(frozen=True)
class PanoramaParams:
    intensity: float = 1.0
    blur_radius_px: int = 0

    @classmethod
    def from_extras(cls, extras: Dict[str, Any]) -> "PanoramaParams":
        return cls(
            intensity=float(extras.get("intensity", 1.0)),
            blur_radius_px=int(extras.get("blur", 0)),
        )

    def validate(self) -> None:
        if not math.isfinite(self.intensity) or self.intensity < 0:
            raise InvalidParameter(f"intensity must be >= 0, got {self.intensity}")
        if self.blur_radius_px < 0:
            raise InvalidParameter(f"blur radius must be >= 0, got {self.blur_radius_px}")


def _fit_height(src: RasterBuffer, canvas_height: int) -> np.ndarray:
    scaled_w = max(1, int(round(src.width * canvas_height / src.height)))
    if (scaled_w, canvas_height) == (src.width, src.height):
        return src.data
    img = src.to_image().resize((scaled_w, canvas_height), Image.Resampling.LANCZOS)
    return np.asarray(img, dtype=np.uint8)


def synthesize_panorama(
    src: RasterBuffer,
    canvas_width: int,
    canvas_height: int,
    params: Optional[PanoramaParams] = None,
) -> RasterBuffer:
    """
    Fake an equirectangular map from one photo.

    The source is scaled to ``canvas_height`` and centred. When it is narrower than
    the canvas, the letterbox columns are filled by reflecting the image outward
    across its left and right edges (repeatedly, if the gap is wider than the
    image). A source narrower than 2px is left letterboxed (transparent).
    """
    if canvas_width <= 0 or canvas_height <= 0:
        raise InvalidDimensions(f"Canvas must have positive size, got {canvas_width}x{canvas_height}")
    src.require_nonempty()
    p = params or PanoramaParams()
    p.validate()

    layer = _fit_height(src, canvas_height)
    lw = layer.shape[1]
    x0 = (canvas_width - lw) // 2

    if x0 < 0:
        canvas = layer[:, -x0:-x0 + canvas_width].copy()
    else:
        left, right = x0, canvas_width - x0 - lw
        if (left or right) and lw >= 2:
            canvas = np.pad(layer, ((0, 0), (left, right), (0, 0)), mode="symmetric")
        else:
            if left or right:
                log.debug("panorama: %dpx-wide layer, skipping mirror fill", lw)
            canvas = np.zeros((canvas_height, canvas_width, 4), np.uint8)
            canvas[:, x0:x0 + lw] = layer

    out = RasterBuffer(canvas_width, canvas_height, canvas)
    if p.intensity != 1.0:
        out = with_rgb(out, out.data[..., :3].astype(np.float64) * p.intensity)
    if p.blur_radius_px > 0:
        out = box_blur(out, p.blur_radius_px)
    return out


# ============================ generators ============================

@dataclass
class SeamlessGenerator(BaseGenerator):
    """Tileable texture via quadrant swap + cross-edge smoothstep blend."""

    @staticmethod
    def get_params() -> List[Dict[str, Any]]:
        return [
            {"name": "blend", "type": float, "default": 15.0, "min": 0.0, "max": MAX_BLEND_PERCENT,
             "help": "Blend width as % of the shorter side."},
        ]

    def generate(self, input_image: Image.Image, **kwargs) -> Image.Image:
        p = TileParams.from_extras(kwargs)
        return make_seamless(RasterBuffer.from_image(input_image), p.blend_fraction_percent).to_image()


@dataclass
class PanoramaGenerator(BaseGenerator):
    """Mirror-tiled 2:1 panorama from a single photo."""

    @staticmethod
    def get_params() -> List[Dict[str, Any]]:
        return [
            {"name": "width", "type": int, "default": 0, "min": 0, "max": 16384,
             "help": "Canvas width (0 = 2x canvas height)."},
            {"name": "height", "type": int, "default": 0, "min": 0, "max": 8192,
             "help": "Canvas height (0 = input height)."},
            {"name": "intensity", "type": float, "default": 1.0, "min": 0.0, "max": 4.0,
             "help": "RGB multiplier."},
            {"name": "blur", "type": int, "default": 0, "min": 0, "max": 64,
             "help": "Box blur radius in pixels."},
        ]

    def generate(self, input_image: Image.Image, **kwargs) -> Image.Image:
        height = int(kwargs.get("height", 0)) or input_image.height
        width = int(kwargs.get("width", 0)) or 2 * height
        params = PanoramaParams.from_extras(kwargs)
        return synthesize_panorama(RasterBuffer.from_image(input_image), width, height, params).to_image()


REGISTRY.register("seamless", SeamlessGenerator)
REGISTRY.register("panorama", PanoramaGenerator)
