# filters.py — convolution engine, blur/sharpen, Sobel gradients, edge maps
# -----------------------------------------------------------------------------
# All kernels are applied as a sliding-window weighted sum (no kernel flip) over
# a float64 copy of the source. Out-of-range taps are clamped to the nearest
# edge pixel. The edge-map preprocessor is the one exception: it only writes
# the interior and leaves the 1px border ring at zero.
#
# Usage (examples):
#   # soften
#   python main.py run --url in.png --pipeline blur_sharpen --out out.png \
#     --extra blur_sharpen.strength=3
#
#   # custom kernel (rows separated by ';')
#   python main.py run --url in.png --pipeline convolve --out out.png \
#     --extra "convolve.kernel=0,-1,0;-1,5,-1;0,-1,0"
#
#   # line-art edges for a vector tracer
#   python main.py run --url in.png --pipeline "tone|edge_map" --out edges.png
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from raster import (
    REGISTRY,
    BaseGenerator,
    InvalidKernel,
    InvalidParameter,
    RasterBuffer,
    to_u8,
    with_rgb,
)
from tone import perceptual_luminance

log = logging.getLogger("texturekit.filters")

__all__ = [
    "Kernel",
    "SOBEL_X",
    "SOBEL_Y",
    "convolve",
    "sobel_gradients",
    "blur_sharpen_kernel",
    "blur_sharpen",
    "box_blur",
    "to_edge_map",
    "ConvolveGenerator",
    "BlurSharpenGenerator",
    "EdgeMapGenerator",
]


# ============================ kernels ============================

@dataclass(frozen=True, eq=False)
class Kernel:
    """Odd-sized weight matrix. ``divisor`` is the weight sum, or 1 when that sum is 0."""
    weights: np.ndarray

    def __post_init__(self) -> None:
        w = np.asarray(self.weights, dtype=np.float64)
        if w.ndim != 2:
            raise InvalidKernel(f"Kernel must be 2-D, got {w.ndim}-D")
        kh, kw = w.shape
        if kh <= 0 or kw <= 0 or kh % 2 == 0 or kw % 2 == 0:
            raise InvalidKernel(f"Kernel size must be odd and positive, got {kw}x{kh}")
        if not np.all(np.isfinite(w)):
            raise InvalidKernel("Kernel weights must be finite")
        object.__setattr__(self, "weights", w)

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[float]]) -> "Kernel":
        try:
            return cls(np.array(rows, dtype=np.float64))
        except ValueError as e:  # ragged rows
            raise InvalidKernel(f"Malformed kernel rows: {e}") from e

    @classmethod
    def parse(cls, spec: str) -> "Kernel":
        """'a,b,c;d,e,f;g,h,i' -> 3x3 kernel."""
        try:
            rows = [[float(v) for v in row.split(",") if v.strip()] for row in str(spec).split(";") if row.strip()]
        except ValueError as e:
            raise InvalidKernel(f"Malformed kernel '{spec}': {e}") from e
        return cls.from_rows(rows)

    @property
    def size(self) -> Tuple[int, int]:
        kh, kw = self.weights.shape
        return kw, kh

    @property
    def divisor(self) -> float:
        s = float(self.weights.sum())
        return s if s != 0 else 1.0


SOBEL_X = Kernel.from_rows([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]])
SOBEL_Y = Kernel(SOBEL_X.weights.T.copy())


# ============================ low-level helpers ============================

def _correlate(field: np.ndarray, weights: np.ndarray) -> np.ndarray:
    """Edge-clamped weighted sum over HxW or HxWxC float fields."""
    kh, kw = weights.shape
    ry, rx = kh // 2, kw // 2
    h, w = field.shape[:2]
    pad = ((ry, ry), (rx, rx)) + ((0, 0),) * (field.ndim - 2)
    fp = np.pad(field, pad, mode="edge")
    acc = np.zeros(field.shape, np.float64)
    for j in range(kh):
        for i in range(kw):
            wgt = weights[j, i]
            if wgt == 0:
                continue
            acc += wgt * fp[j:j + h, i:i + w]
    return acc


def _correlate_interior(field: np.ndarray, weights: np.ndarray) -> np.ndarray:
    """Weighted sum over windows that fit entirely inside ``field`` (output shrinks by k-1)."""
    kh, kw = weights.shape
    h, w = field.shape[:2]
    oh, ow = h - kh + 1, w - kw + 1
    acc = np.zeros((oh, ow) + field.shape[2:], np.float64)
    for j in range(kh):
        for i in range(kw):
            wgt = weights[j, i]
            if wgt == 0:
                continue
            acc += wgt * field[j:j + oh, i:i + ow]
    return acc


# ============================ public operators ============================

def convolve(src: RasterBuffer, kernel: Kernel) -> RasterBuffer:
    """Apply ``kernel`` to R, G and B independently; alpha passes through."""
    src.require_nonempty()
    rgb = src.data[..., :3].astype(np.float64)
    acc = _correlate(rgb, kernel.weights)
    return with_rgb(src, acc / kernel.divisor)


def sobel_gradients(field: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Raw (unnormalised) Sobel gx, gy of a single-channel float field, edge-clamped."""
    f = np.asarray(field, dtype=np.float64)
    return _correlate(f, SOBEL_X.weights), _correlate(f, SOBEL_Y.weights)


def blur_sharpen_kernel(strength: float) -> Optional[Kernel]:
    """
    Positive strength -> all-ones box (blur); negative -> all -1 with centre size^2
    (sharpen). Sizes round to the nearest odd integer >= 1. |strength| < 0.1 -> None.
    """
    s = float(strength)
    if not np.isfinite(s):
        raise InvalidParameter(f"blur/sharpen strength must be finite, got {strength}")
    if abs(s) < 0.1:
        return None
    size = max(1, int(round(abs(s))))
    if size % 2 == 0:
        size += 1
    if s > 0:
        return Kernel(np.ones((size, size), np.float64))
    weights = -np.ones((size, size), np.float64)
    weights[size // 2, size // 2] = float(size * size)
    return Kernel(weights)


def blur_sharpen(src: RasterBuffer, strength: float) -> RasterBuffer:
    kernel = blur_sharpen_kernel(strength)
    if kernel is None:
        src.require_nonempty()
        return src.copy()
    log.debug("blur_sharpen: strength=%s kernel=%dx%d divisor=%s", strength, *kernel.size, kernel.divisor)
    return convolve(src, kernel)


def box_blur(src: RasterBuffer, radius: int) -> RasterBuffer:
    """Separable (2r+1) box blur on RGB via running sums, edge-clamped. radius 0 is a copy."""
    r = int(radius)
    if r < 0:
        raise InvalidParameter(f"blur radius must be >= 0, got {radius}")
    src.require_nonempty()
    if r == 0:
        return src.copy()
    k = 2 * r + 1
    arr = src.data[..., :3].astype(np.float64)
    fp = np.pad(arr, ((0, 0), (r, r), (0, 0)), mode="edge")
    c = np.pad(fp, ((0, 0), (1, 0), (0, 0)), mode="constant").cumsum(axis=1)
    horiz = (c[:, k:, :] - c[:, :-k, :]) / k
    fp2 = np.pad(horiz, ((r, r), (0, 0), (0, 0)), mode="edge")
    c2 = np.pad(fp2, ((1, 0), (0, 0), (0, 0)), mode="constant").cumsum(axis=0)
    vert = (c2[k:, :, :] - c2[:-k, :, :]) / k
    return with_rgb(src, vert)


def to_edge_map(src: RasterBuffer) -> RasterBuffer:
    """
    Sobel magnitude of the BT.601 luminance, min(255, |g|), on R=G=B with alpha 255.
    The outer 1px ring has no full 3x3 neighbourhood and stays (0, 0, 0, 0).
    """
    src.require_nonempty()
    h, w = src.height, src.width
    out = np.zeros((h, w, 4), np.uint8)
    if h >= 3 and w >= 3:
        lum = perceptual_luminance(src)
        gx = _correlate_interior(lum, SOBEL_X.weights)
        gy = _correlate_interior(lum, SOBEL_Y.weights)
        mag = np.minimum(255.0, np.sqrt(gx * gx + gy * gy))
        out[1:-1, 1:-1, :3] = to_u8(mag)[..., None]
        out[1:-1, 1:-1, 3] = 255
    else:
        log.debug("edge_map: %dx%d has no interior, returning an empty map", w, h)
    return RasterBuffer(w, h, out)


# ============================ generators ============================

@dataclass
class ConvolveGenerator(BaseGenerator):
    """Arbitrary odd-sized kernel, e.g. kernel='0,-1,0;-1,5,-1;0,-1,0'."""

    @staticmethod
    def get_params() -> List[Dict[str, Any]]:
        return [
            {"name": "kernel", "type": str, "default": "0,0,0;0,1,0;0,0,0",
             "help": "Rows separated by ';', weights by ','. Divisor = weight sum (or 1)."},
        ]

    def generate(self, input_image: Image.Image, **kwargs) -> Image.Image:
        kernel = Kernel.parse(str(kwargs.get("kernel", "1")))
        return convolve(RasterBuffer.from_image(input_image), kernel).to_image()


@dataclass
class BlurSharpenGenerator(BaseGenerator):
    """Box blur (strength > 0) or sharpen (strength < 0)."""

    @staticmethod
    def get_params() -> List[Dict[str, Any]]:
        return [
            {"name": "strength", "type": float, "default": 0.0, "min": -15.0, "max": 15.0,
             "help": "Kernel size; sign selects blur (+) or sharpen (-)."},
        ]

    def generate(self, input_image: Image.Image, **kwargs) -> Image.Image:
        strength = float(kwargs.get("strength", 0.0))
        return blur_sharpen(RasterBuffer.from_image(input_image), strength).to_image()


@dataclass
class EdgeMapGenerator(BaseGenerator):
    """Sobel edge magnitude for vector tracing."""

    def generate(self, input_image: Image.Image, **kwargs) -> Image.Image:
        return to_edge_map(RasterBuffer.from_image(input_image)).to_image()


REGISTRY.register("convolve", ConvolveGenerator)
REGISTRY.register("blur_sharpen", BlurSharpenGenerator)
REGISTRY.register("edge_map", EdgeMapGenerator)
