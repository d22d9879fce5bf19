"""
tone.py — grayscale reduction and tone remapping

Every call starts from an unconditional simple-average grayscale, then applies
the optional adjustments in a fixed order:

    invert -> contrast -> level -> mean/range window

Each adjustment is independent; a missing one is the identity. Alpha is carried
over untouched.

Usage:
    python main.py run --url in.png --pipeline tone --out out.png \
      --extra tone.contrast=40 tone.invert=true
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

import numpy as np
from PIL import Image

from raster import REGISTRY, BaseGenerator, InvalidParameter, RasterBuffer, _as_bool, gray_to_raster

log = logging.getLogger("texturekit.tone")

__all__ = [
    "ToneParams",
    "apply_tone",
    "average_luminance",
    "grayscale_field",
    "perceptual_luminance",
    "ToneGenerator",
]

CONTRAST_LIMIT = 255.0


# ============================ luminance ============================

def average_luminance(src: RasterBuffer) -> np.ndarray:
    """(R+G+B)/3 as float64, unrounded."""
    return src.data[..., :3].astype(np.float64).sum(axis=2) / 3.0


def grayscale_field(src: RasterBuffer) -> np.ndarray:
    """Simple-average gray, rounded to integers (kept as float64 for further math)."""
    return np.floor(average_luminance(src) + 0.5)


def perceptual_luminance(src: RasterBuffer) -> np.ndarray:
    """ITU-R BT.601 weighting, used for line-art edge extraction."""
    arr = src.data.astype(np.float64)
    return 0.299 * arr[..., 0] + 0.587 * arr[..., 1] + 0.114 * arr[..., 2]


# ============================ params ============================

def _opt_float(v: Any) -> Optional[float]:
    if v is None or (isinstance(v, str) and v.strip().lower() in ("", "none")):
        return None
    return float(v)


@dataclass(frozen=True)
class ToneParams:
    contrast: Optional[float] = None
    invert: bool = False
    level: Optional[float] = None
    mean: Optional[float] = None
    range: Optional[float] = None

    @classmethod
    def from_extras(cls, extras: Dict[str, Any]) -> "ToneParams":
        return cls(
            contrast=_opt_float(extras.get("contrast")),
            invert=_as_bool(extras.get("invert", False)),
            level=_opt_float(extras.get("level")),
            mean=_opt_float(extras.get("mean")),
            range=_opt_float(extras.get("range")),
        )

    def clamped(self) -> "ToneParams":
        """Slider semantics: pull every knob back into its documented range."""
        def clip(v: Optional[float], lo: float, hi: float, name: str) -> Optional[float]:
            if v is None:
                return None
            if not math.isfinite(v):
                raise InvalidParameter(f"tone {name} must be finite, got {v}")
            c = float(min(hi, max(lo, v)))
            if c != v:
                log.debug("tone: %s=%s clamped to %s", name, v, c)
            return c

        return replace(
            self,
            contrast=clip(self.contrast, -CONTRAST_LIMIT, CONTRAST_LIMIT, "contrast"),
            level=clip(self.level, 0.0, 1.0, "level"),
            mean=clip(self.mean, 0.0, 1.0, "mean"),
            range=clip(self.range, 0.0, 1.0, "range"),
        )

    @property
    def has_window(self) -> bool:
        return self.mean is not None or self.range is not None


# ============================ stages ============================

def _contrast(v: np.ndarray, c: float) -> np.ndarray:
    factor = 259.0 * (c + 255.0) / (255.0 * (259.0 - c))
    return np.clip(factor * (v - 128.0) + 128.0, 0.0, 255.0)


def _remap(v: np.ndarray, lo: float, hi: float, pivot: float) -> np.ndarray:
    # Collapsed window: hard threshold instead of a divide by zero.
    if hi <= lo:
        return np.where(v >= pivot, 255.0, 0.0)
    return np.clip((v - lo) * 255.0 / (hi - lo), 0.0, 255.0)


def _level(v: np.ndarray, level: float) -> np.ndarray:
    lo = level * 255.0
    hi = 255.0 - level * 255.0
    return _remap(v, lo, hi, pivot=127.5)


def _window(v: np.ndarray, mean: float, rng: float) -> np.ndarray:
    lo = (mean - rng / 2.0) * 255.0
    hi = (mean + rng / 2.0) * 255.0
    return _remap(v, lo, hi, pivot=mean * 255.0)


def apply_tone(src: RasterBuffer, params: Optional[ToneParams] = None) -> RasterBuffer:
    """Grayscale ``src`` and apply ``params``; returns a new buffer of the same size."""
    src.require_nonempty()
    p = (params or ToneParams()).clamped()

    v = grayscale_field(src)
    if p.invert:
        v = 255.0 - v
    if p.contrast is not None:
        v = _contrast(v, p.contrast)
    if p.level is not None:
        v = _level(v, p.level)
    if p.has_window:
        mean = 0.5 if p.mean is None else p.mean
        rng = 1.0 if p.range is None else p.range
        v = _window(v, mean, rng)
    return gray_to_raster(v, alpha=src.alpha)


# ============================ generator ============================

@dataclass
class ToneGenerator(BaseGenerator):
    """Grayscale + contrast/level/window/invert."""

    @staticmethod
    def get_params() -> List[Dict[str, Any]]:
        return [
            {"name": "contrast", "type": float, "default": None, "min": -255.0, "max": 255.0,
             "help": "Signed contrast; 0 is neutral."},
            {"name": "invert", "type": bool, "default": False, "help": "255 - value after grayscale."},
            {"name": "level", "type": float, "default": None, "min": 0.0, "max": 1.0,
             "help": "Symmetric black/white point crush; >=0.5 thresholds."},
            {"name": "mean", "type": float, "default": None, "min": 0.0, "max": 1.0,
             "help": "Window centre on the 0..1 scale."},
            {"name": "range", "type": float, "default": None, "min": 0.0, "max": 1.0,
             "help": "Window width on the 0..1 scale."},
        ]

    def generate(self, input_image: Image.Image, **kwargs) -> Image.Image:
        src = RasterBuffer.from_image(input_image)
        return apply_tone(src, ToneParams.from_extras(kwargs)).to_image()


REGISTRY.register("tone", ToneGenerator)
