from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from PIL import Image


# =============== Errors ===============
class RasterError(ValueError):
    """Base class for recoverable operator failures."""


class InvalidDimensions(RasterError):
    pass


class InvalidParameter(RasterError):
    pass


class InvalidKernel(RasterError):
    pass


class EmptyInput(RasterError):
    pass


# =============== RasterBuffer ===============
@dataclass(frozen=True, eq=False)
class RasterBuffer:
    """
    width x height grid of straight (non-premultiplied) RGBA8 pixels.

    ``data`` is a uint8 array shaped (height, width, 4), row-major, top row first.
    Operators treat it as read-only and always hand back a new buffer.
    """
    width: int
    height: int
    data: np.ndarray

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise InvalidDimensions(f"Negative raster size {self.width}x{self.height}")
        arr = np.asarray(self.data)
        if arr.size != self.width * self.height * 4:
            raise InvalidDimensions(
                f"Pixel data holds {arr.size} values, expected {self.width * self.height * 4} "
                f"for {self.width}x{self.height} RGBA"
            )
        arr = arr.reshape(self.height, self.width, 4)
        if arr.dtype != np.uint8:
            arr = to_u8(arr)
        object.__setattr__(self, "data", arr)

    # ---- constructors ----
    @classmethod
    def new(cls, width: int, height: int, fill: Tuple[int, int, int, int] = (0, 0, 0, 0)) -> "RasterBuffer":
        arr = np.empty((max(0, height), max(0, width), 4), np.uint8)
        arr[...] = np.asarray(fill, np.uint8)
        return cls(width, height, arr)

    @classmethod
    def from_bytes(cls, width: int, height: int, raw: bytes) -> "RasterBuffer":
        return cls(width, height, np.frombuffer(raw, dtype=np.uint8).copy())

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "RasterBuffer":
        """Wrap an HxWx4 (or HxWx3, alpha=255) array. Values are clamped to 0..255."""
        a = np.asarray(arr)
        if a.ndim != 3 or a.shape[2] not in (3, 4):
            raise InvalidDimensions(f"Expected HxWx3 or HxWx4 array, got shape {a.shape}")
        if a.shape[2] == 3:
            alpha = np.full(a.shape[:2] + (1,), 255, dtype=np.float64)
            a = np.concatenate([np.asarray(a, np.float64), alpha], axis=2)
        h, w = a.shape[:2]
        return cls(w, h, to_u8(a))

    @classmethod
    def from_image(cls, img: Image.Image) -> "RasterBuffer":
        rgba = img if img.mode == "RGBA" else img.convert("RGBA")
        arr = np.asarray(rgba, dtype=np.uint8).copy()
        return cls(rgba.width, rgba.height, arr)

    # ---- views / adapters ----
    @property
    def pixels(self) -> np.ndarray:
        """Flat RGBA8 sequence, len == width*height*4."""
        return self.data.reshape(-1)

    @property
    def rgb(self) -> np.ndarray:
        return self.data[..., :3]

    @property
    def alpha(self) -> np.ndarray:
        return self.data[..., 3]

    def pixel(self, x: int, y: int) -> Tuple[int, int, int, int]:
        r, g, b, a = self.data[y, x]
        return int(r), int(g), int(b), int(a)

    def copy(self) -> "RasterBuffer":
        return RasterBuffer(self.width, self.height, self.data.copy())

    def to_image(self) -> Image.Image:
        return Image.fromarray(np.ascontiguousarray(self.data), "RGBA")

    def require_nonempty(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise InvalidDimensions(f"Raster must have positive size, got {self.width}x{self.height}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RasterBuffer):
            return NotImplemented
        return (
            self.width == other.width
            and self.height == other.height
            and np.array_equal(self.data, other.data)
        )


# =============== Pixel helpers ===============
def to_u8(values: np.ndarray) -> np.ndarray:
    """Round half-up and clamp to 0..255 (the one pixel-writing rule)."""
    return np.clip(np.floor(np.asarray(values, np.float64) + 0.5), 0, 255).astype(np.uint8)


def with_rgb(src: RasterBuffer, rgb: np.ndarray) -> RasterBuffer:
    """New buffer with ``rgb`` (float or int, HxWx3) and the source alpha."""
    out = np.empty_like(src.data)
    out[..., :3] = to_u8(rgb)
    out[..., 3] = src.data[..., 3]
    return RasterBuffer(src.width, src.height, out)


def gray_to_raster(field: np.ndarray, alpha: Optional[np.ndarray] = None) -> RasterBuffer:
    """Broadcast a single HxW channel to R=G=B; alpha defaults to opaque."""
    h, w = field.shape
    out = np.empty((h, w, 4), np.uint8)
    out[..., :3] = to_u8(field)[..., None]
    out[..., 3] = 255 if alpha is None else alpha
    return RasterBuffer(w, h, out)


def _rng(seed: Optional[int]) -> np.random.Generator:
    return np.random.default_rng(seed if seed is not None else np.random.SeedSequence().entropy)


def _as_bool(v: Any) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes", "on")
    return bool(v)


# =============== Registry ===============
class GeneratorRegistry:
    def __init__(self) -> None:
        self._by_name: Dict[str, type[BaseGenerator]] = {}

    def register(self, name: str, cls: type["BaseGenerator"]) -> None:
        key = name.strip().lower()
        self._by_name[key] = cls

    def names(self) -> list[str]:
        return sorted(self._by_name.keys())

    def get(self, name: str) -> type["BaseGenerator"]:
        key = name.strip().lower()
        if key not in self._by_name:
            raise KeyError(f"Unknown generator '{name}'. Available: {', '.join(self.names()) or '(none)'}")
        return self._by_name[key]

    def create(self, name: str, **kwargs) -> "BaseGenerator":
        return self.get(name)(**kwargs)


REGISTRY = GeneratorRegistry()


@dataclass
class BaseGenerator:
    seed: Optional[int] = None

    @staticmethod
    def get_params() -> List[Dict[str, Any]]:
        return []

    def generate(self, input_image: Image.Image, **kwargs) -> Image.Image:  # pragma: no cover
        raise NotImplementedError
