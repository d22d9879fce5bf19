"""
normals.py — tangent-space normal maps and the PBR texture-map set

A normal map treats luminance as a height field: Sobel gradients give the slope,
``255 / strength`` the vertical component, and the unit vector is packed into RGB
with ``c * 0.5 + 0.5``. Flat input yields the "straight up" normal (128, 128, 255).

``texture_maps`` builds the four maps the texture tool exports (normal,
displacement, roughness, specular) from one source through a single
tone -> blur/sharpen -> (normal) path, each map with its own adjustments.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
from PIL import Image

from filters import blur_sharpen, sobel_gradients
from raster import REGISTRY, BaseGenerator, InvalidParameter, RasterBuffer, _as_bool, to_u8
from tone import ToneParams, apply_tone, average_luminance

log = logging.getLogger("texturekit.normals")

__all__ = [
    "synthesize_normal_map",
    "normal_map_from_color",
    "MapAdjustments",
    "DEFAULT_MAP_ADJUSTMENTS",
    "MAP_NAMES",
    "texture_map",
    "texture_maps",
    "NormalMapGenerator",
    "TextureMapGenerator",
]


def synthesize_normal_map(luminance: RasterBuffer, strength: float) -> RasterBuffer:
    """
    Normal map of a luminance raster. ``strength`` > 0; larger is steeper.

    Luminance is read as the RGB mean, which is the channel value itself for the
    gray rasters ``apply_tone`` produces. Alpha of the result is always 255.
    """
    luminance.require_nonempty()
    s = float(strength)
    if not np.isfinite(s) or s <= 0:
        raise InvalidParameter(f"normal map strength must be > 0, got {strength}")

    gx, gy = sobel_gradients(average_luminance(luminance))
    dz = 255.0 / s
    length = np.sqrt(gx * gx + gy * gy + dz * dz)

    out = np.empty((luminance.height, luminance.width, 4), np.uint8)
    out[..., 0] = to_u8((gx / length * 0.5 + 0.5) * 255.0)
    out[..., 1] = to_u8((gy / length * 0.5 + 0.5) * 255.0)
    out[..., 2] = to_u8((dz / length * 0.5 + 0.5) * 255.0)
    out[..., 3] = 255
    return RasterBuffer(luminance.width, luminance.height, out)


def normal_map_from_color(
    src: RasterBuffer,
    strength: float,
    tone: Optional[ToneParams] = None,
) -> RasterBuffer:
    """Grayscale (optionally tone-adjusted) pre-pass, then ``synthesize_normal_map``."""
    return synthesize_normal_map(apply_tone(src, tone), strength)


# ============================ PBR map set ============================

MAP_NAMES = ("normal", "displacement", "roughness", "specular")


@dataclass(frozen=True)
class MapAdjustments:
    strength: float = 1.0
    contrast: Optional[float] = None
    level: Optional[float] = None
    blur: float = 0.0
    invert: bool = False

    def tone(self) -> ToneParams:
        return ToneParams(contrast=self.contrast, invert=self.invert, level=self.level)

    def updated(self, extras: Mapping[str, Any]) -> "MapAdjustments":
        changes: Dict[str, Any] = {}
        for key in ("strength", "contrast", "level", "blur"):
            if key in extras:
                changes[key] = float(extras[key])
        if "invert" in extras:
            changes["invert"] = _as_bool(extras["invert"])
        return replace(self, **changes)


DEFAULT_MAP_ADJUSTMENTS: Dict[str, MapAdjustments] = {
    "normal": MapAdjustments(strength=1.0, level=None, blur=0.0, invert=False),
    "displacement": MapAdjustments(contrast=1.0, blur=0.0, invert=False),
    "roughness": MapAdjustments(contrast=1.0, blur=0.0, invert=True),
    "specular": MapAdjustments(contrast=1.0, blur=0.0, invert=False),
}


def _resolve(adjustments: Optional[Mapping[str, MapAdjustments]]) -> Dict[str, MapAdjustments]:
    merged = dict(DEFAULT_MAP_ADJUSTMENTS)
    for name, adj in (adjustments or {}).items():
        key = name.strip().lower()
        if key not in merged:
            raise InvalidParameter(f"Unknown texture map '{name}'. Known: {', '.join(MAP_NAMES)}")
        merged[key] = adj
    return merged


def texture_map(src: RasterBuffer, name: str, adjustments: Optional[MapAdjustments] = None) -> RasterBuffer:
    key = name.strip().lower()
    if key not in MAP_NAMES:
        raise InvalidParameter(f"Unknown texture map '{name}'. Known: {', '.join(MAP_NAMES)}")
    adj = DEFAULT_MAP_ADJUSTMENTS[key] if adjustments is None else adjustments
    base = apply_tone(src, adj.tone())
    base = blur_sharpen(base, adj.blur)
    if key == "normal":
        return synthesize_normal_map(base, adj.strength)
    return base


def texture_maps(
    src: RasterBuffer,
    adjustments: Optional[Mapping[str, MapAdjustments]] = None,
) -> Dict[str, RasterBuffer]:
    """All four maps, keyed by ``MAP_NAMES``. Missing adjustments fall back to the defaults."""
    src.require_nonempty()
    adj = _resolve(adjustments)
    maps: Dict[str, RasterBuffer] = {}
    for name in MAP_NAMES:
        log.debug("texture_maps: %s %s", name, adj[name])
        maps[name] = texture_map(src, name, adj[name])
    return maps


# ============================ generators ============================

@dataclass
class NormalMapGenerator(BaseGenerator):
    """Tangent-space normal map from luminance."""

    @staticmethod
    def get_params() -> List[Dict[str, Any]]:
        return [
            {"name": "strength", "type": float, "default": 1.0, "min": 0.1, "max": 10.0,
             "help": "Height-to-slope ratio (dz = 255/strength)."},
            {"name": "contrast", "type": float, "default": None, "help": "Optional tone pre-pass contrast."},
            {"name": "level", "type": float, "default": None, "help": "Optional tone pre-pass level."},
            {"name": "invert", "type": bool, "default": False, "help": "Invert heights before deriving slopes."},
        ]

    def generate(self, input_image: Image.Image, **kwargs) -> Image.Image:
        strength = float(kwargs.get("strength", 1.0))
        tone = ToneParams.from_extras(kwargs)
        return normal_map_from_color(RasterBuffer.from_image(input_image), strength, tone).to_image()


@dataclass
class TextureMapGenerator(BaseGenerator):
    """One PBR map selected by ``map`` (normal/displacement/roughness/specular)."""

    @staticmethod
    def get_params() -> List[Dict[str, Any]]:
        return [
            {"name": "map", "type": str, "default": "displacement", "choices": list(MAP_NAMES),
             "help": "Which map to emit."},
            {"name": "strength", "type": float, "default": 1.0, "help": "Normal map strength."},
            {"name": "contrast", "type": float, "default": 1.0, "help": "Tone contrast."},
            {"name": "level", "type": float, "default": None, "help": "Tone level."},
            {"name": "blur", "type": float, "default": 0.0, "help": "Blur (+) / sharpen (-) strength."},
            {"name": "invert", "type": bool, "default": None, "help": "Override the map's invert default."},
        ]

    def generate(self, input_image: Image.Image, **kwargs) -> Image.Image:
        name = str(kwargs.get("map", "displacement")).strip().lower()
        if name not in DEFAULT_MAP_ADJUSTMENTS:
            raise InvalidParameter(f"Unknown texture map '{name}'. Known: {', '.join(MAP_NAMES)}")
        adj = DEFAULT_MAP_ADJUSTMENTS[name].updated(kwargs)
        return texture_map(RasterBuffer.from_image(input_image), name, adj).to_image()


REGISTRY.register("normal_map", NormalMapGenerator)
REGISTRY.register("texture_map", TextureMapGenerator)
