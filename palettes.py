from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
from PIL import Image

from raster import REGISTRY, BaseGenerator, InvalidParameter, RasterBuffer, _as_bool, _rng, to_u8

log = logging.getLogger("texturekit.palettes")

RGB = Tuple[float, float, float]
Samples = Union[np.ndarray, Sequence[Sequence[float]]]

DEFAULT_COLORS = 5
DEFAULT_ITERATIONS = 20
DEFAULT_STRIDE = 10
DEFAULT_MAX_WIDTH = 400
CONVERGENCE_PX = 1.0
_ASSIGN_CHUNK = 65_536


# =============== Palette ===============
@dataclass(frozen=True)
class Palette:
    """Centroids in index order (not sorted by any visual metric)."""
    centroids: Tuple[RGB, ...] = ()

    def __len__(self) -> int:
        return len(self.centroids)

    def __iter__(self) -> Iterator[RGB]:
        return iter(self.centroids)

    def rgb(self) -> List[Tuple[int, int, int]]:
        if not self.centroids:
            return []
        q = to_u8(np.asarray(self.centroids, np.float64))
        return [tuple(int(c) for c in row) for row in q]  # type: ignore[misc]

    def hex_codes(self, upper: bool = False) -> List[str]:
        codes = ["#%02x%02x%02x" % c for c in self.rgb()]
        return [c.upper() for c in codes] if upper else codes

    def to_raster(self, swatch: int = 32) -> RasterBuffer:
        """Horizontal strip, one ``swatch`` x ``swatch`` square per colour."""
        n = len(self)
        s = max(1, int(swatch))
        if n == 0:
            return RasterBuffer.new(s, s, (0, 0, 0, 0))
        strip = np.empty((s, n * s, 4), np.uint8)
        for i, (r, g, b) in enumerate(self.rgb()):
            strip[:, i * s:(i + 1) * s] = (r, g, b, 255)
        return RasterBuffer(n * s, s, strip)


# =============== Sampling ===============
def _down(img: Image.Image, max_width: int) -> Image.Image:
    if img.width <= max_width:
        return img
    r = max_width / max(1, img.width)
    h = max(1, int(img.height * r))
    return img.resize((max_width, h), Image.Resampling.LANCZOS)


def sample_pixels(src: RasterBuffer, stride: int = DEFAULT_STRIDE, max_width: int = DEFAULT_MAX_WIDTH) -> np.ndarray:
    """
    Downscale to at most ``max_width`` wide, then keep every ``stride``-th pixel of
    the row-major raster starting at index 0. Returns (n, 3) float64 RGB; alpha ignored.
    """
    src.require_nonempty()
    stride = int(stride)
    if stride < 1:
        raise InvalidParameter(f"sample stride must be >= 1, got {stride}")
    if max_width < 1:
        raise InvalidParameter(f"max_width must be >= 1, got {max_width}")
    img = _down(src.to_image(), int(max_width))
    arr = np.asarray(img, dtype=np.float64)[..., :3].reshape(-1, 3)
    return arr[::stride].copy()


# =============== k-means ===============
def _assign(data: np.ndarray, centers: np.ndarray) -> np.ndarray:
    """Nearest centre by squared RGB distance; ties go to the lowest index."""
    labels = np.empty(data.shape[0], np.intp)
    for start in range(0, data.shape[0], _ASSIGN_CHUNK):
        chunk = data[start:start + _ASSIGN_CHUNK]
        d2 = ((chunk[:, None, :] - centers[None, :, :]) ** 2).sum(2)
        labels[start:start + _ASSIGN_CHUNK] = np.argmin(d2, axis=1)
    return labels


def extract_palette(
    samples: Samples,
    k: int = DEFAULT_COLORS,
    max_iterations: int = DEFAULT_ITERATIONS,
    *,
    seed: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
) -> Palette:
    """
    k-means over RGB samples. Centroids start as k draws (with replacement) from the
    samples; an empty cluster keeps its previous centroid. Stops after
    ``max_iterations`` or once every centroid moved less than 1.0.

    Empty ``samples`` gives an empty Palette rather than an error.
    """
    k = int(k)
    max_iterations = int(max_iterations)
    if k < 1:
        raise InvalidParameter(f"k must be >= 1, got {k}")
    if max_iterations < 1:
        raise InvalidParameter(f"max_iterations must be >= 1, got {max_iterations}")

    data = np.asarray(samples, dtype=np.float64)
    if data.size == 0:
        log.debug("extract_palette: no samples, returning an empty palette")
        return Palette(())
    data = data.reshape(-1, 3)
    n = data.shape[0]

    gen = rng if rng is not None else _rng(seed)
    centers = data[gen.integers(0, n, size=k)].copy()

    for it in range(max_iterations):
        labels = _assign(data, centers)
        counts = np.bincount(labels, minlength=k)
        sums = np.zeros((k, 3), np.float64)
        np.add.at(sums, labels, data)

        moved = centers.copy()
        filled = counts > 0
        moved[filled] = sums[filled] / counts[filled, None]

        shift = np.sqrt(((moved - centers) ** 2).sum(axis=1))
        centers = moved
        if np.all(shift < CONVERGENCE_PX):
            log.debug("extract_palette: converged after %d iteration(s)", it + 1)
            break

    return Palette(tuple((float(r), float(g), float(b)) for r, g, b in centers))


def palette_from_raster(
    src: RasterBuffer,
    k: int = DEFAULT_COLORS,
    *,
    stride: int = DEFAULT_STRIDE,
    max_iterations: int = DEFAULT_ITERATIONS,
    max_width: int = DEFAULT_MAX_WIDTH,
    seed: Optional[int] = None,
) -> Palette:
    return extract_palette(
        sample_pixels(src, stride=stride, max_width=max_width),
        k,
        max_iterations,
        seed=seed,
    )


# =============== Generator ===============
@dataclass
class PaletteGenerator(BaseGenerator):
    """
    Dominant colours as a swatch strip. With ``out=FILE`` the hex codes are also
    written one per line.
    """

    @staticmethod
    def get_params() -> List[Dict[str, Any]]:
        return [
            {"name": "colors", "type": int, "default": DEFAULT_COLORS, "min": 1, "max": 32,
             "help": "Number of clusters (k)."},
            {"name": "stride", "type": int, "default": DEFAULT_STRIDE, "min": 1, "max": 100,
             "help": "Keep every Nth pixel of the downscaled image."},
            {"name": "iterations", "type": int, "default": DEFAULT_ITERATIONS, "min": 1, "max": 200,
             "help": "Maximum k-means iterations."},
            {"name": "max_width", "type": int, "default": DEFAULT_MAX_WIDTH, "min": 16, "max": 4096,
             "help": "Working width for sampling."},
            {"name": "swatch", "type": int, "default": 32, "min": 1, "max": 512,
             "help": "Swatch square size in pixels."},
            {"name": "upper", "type": bool, "default": False, "help": "Uppercase hex codes."},
            {"name": "out", "type": str, "default": "", "help": "Optional text file for hex codes."},
        ]

    def generate(self, input_image: Image.Image, **kwargs) -> Image.Image:
        src = RasterBuffer.from_image(input_image)
        palette = palette_from_raster(
            src,
            int(kwargs.get("colors", DEFAULT_COLORS)),
            stride=int(kwargs.get("stride", DEFAULT_STRIDE)),
            max_iterations=int(kwargs.get("iterations", DEFAULT_ITERATIONS)),
            max_width=int(kwargs.get("max_width", DEFAULT_MAX_WIDTH)),
            seed=self.seed,
        )
        codes = palette.hex_codes(upper=_as_bool(kwargs.get("upper", False)))
        log.info("palette: %s", " ".join(codes) or "(empty)")

        out_path = str(kwargs.get("out") or "").strip()
        if out_path:
            p = Path(out_path)
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text("\n".join(codes) + ("\n" if codes else ""), encoding="utf-8")
        return palette.to_raster(int(kwargs.get("swatch", 32))).to_image()


REGISTRY.register("palette", PaletteGenerator)
