"""
vectorize.py — raster preparation for an external vector tracer

The tracer itself (anything shaped like ``tracer(raster, options) -> svg``) lives
outside this package. What lives here:

* Trace presets with the tracer options the photo-to-vector tool ships.
* ``fit_for_tracing``: bound the working size (2048px, 4096px with super-res).
* ``prepare_for_tracing``: grayscale / line-art edge preprocessing per preset.
* ``finalize_svg``: outline-only presets drop fills and force black strokes.
* ``trace``: the whole hand-off in one call.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Tuple

from PIL import Image

from filters import to_edge_map
from raster import REGISTRY, BaseGenerator, InvalidParameter, RasterBuffer, _as_bool
from tone import apply_tone

log = logging.getLogger("texturekit.vectorize")

Tracer = Callable[[RasterBuffer, Dict[str, Any]], str]

MAX_TRACE_DIM = 2048
MAX_TRACE_DIM_SUPERRES = 4096

_BW = ((0, 0, 0, 255), (255, 255, 255, 255))
_FILL_RE = re.compile(r'fill="[^"]*"')
_STROKE_RE = re.compile(r'stroke="[^"]*"')


# ------------------------------- Presets -------------------------------- #

@dataclass(frozen=True)
class TracePreset:
    name: str
    colors: int
    line_threshold: float
    quad_threshold: float
    stroke_width: float
    scale: float
    path_omit: float
    palette: Tuple[Tuple[int, int, int, int], ...] = field(default_factory=tuple)
    preprocess: str = "none"       # 'none' | 'grayscale' | 'edges'
    outline_only: bool = False
    description: str = ""

    def options(self) -> Dict[str, Any]:
        """Tracer option dict (imagetracer-style key names)."""
        opts: Dict[str, Any] = {
            "numberofcolors": self.colors,
            "ltres": self.line_threshold,
            "qtres": self.quad_threshold,
            "strokewidth": self.stroke_width,
            "viewbox": True,
            "scale": self.scale,
            "pathomit": self.path_omit,
        }
        if self.palette:
            opts["pal"] = [{"r": r, "g": g, "b": b, "a": a} for r, g, b, a in self.palette]
        return opts


TRACE_PRESETS: Dict[str, TracePreset] = {
    "default": TracePreset(
        name="default", colors=32, line_threshold=0.5, quad_threshold=0.5,
        stroke_width=0, scale=2, path_omit=2,
        description="Balanced colour trace.",
    ),
    "ultra_detail_color": TracePreset(
        name="ultra_detail_color", colors=64, line_threshold=0.0005, quad_threshold=0.0005,
        stroke_width=0, scale=4, path_omit=0.05,
        description="Many colours, tight curve fitting.",
    ),
    "ultra_detail_bw": TracePreset(
        name="ultra_detail_bw", colors=2, line_threshold=0.0001, quad_threshold=0.0001,
        stroke_width=1, scale=4, path_omit=0.01, palette=_BW, preprocess="grayscale",
        description="Two-tone trace of the grayscale image.",
    ),
    "lineart": TracePreset(
        name="lineart", colors=2, line_threshold=0.05, quad_threshold=0.05,
        stroke_width=2, scale=4, path_omit=0.01, palette=_BW, preprocess="edges",
        outline_only=True, description="Edge lines, black strokes, no fills.",
    ),
    "sketch": TracePreset(
        name="sketch", colors=2, line_threshold=0.05, quad_threshold=0.05,
        stroke_width=1.5, scale=4, path_omit=0.01, palette=_BW, preprocess="edges",
        outline_only=True, description="Thinner edge lines.",
    ),
}


def get_preset(name: str) -> TracePreset:
    key = str(name).strip().lower()
    if key not in TRACE_PRESETS:
        raise InvalidParameter(f"Unknown trace preset '{name}'. Available: {', '.join(sorted(TRACE_PRESETS))}")
    return TRACE_PRESETS[key]


# ----------------------------- Preparation ------------------------------ #

def fit_for_tracing(src: RasterBuffer, super_resolution: bool = False) -> RasterBuffer:
    src.require_nonempty()
    limit = MAX_TRACE_DIM_SUPERRES if super_resolution else MAX_TRACE_DIM
    w, h = src.width, src.height
    if w <= limit and h <= limit:
        return src
    ratio = min(limit / w, limit / h)
    nw, nh = max(1, int(w * ratio)), max(1, int(h * ratio))
    log.debug("fit_for_tracing: %dx%d -> %dx%d", w, h, nw, nh)
    return RasterBuffer.from_image(src.to_image().resize((nw, nh), Image.Resampling.LANCZOS))


def prepare_for_tracing(src: RasterBuffer, preset: TracePreset) -> RasterBuffer:
    if preset.preprocess == "edges":
        return to_edge_map(apply_tone(src))
    if preset.preprocess == "grayscale":
        return apply_tone(src)
    if preset.preprocess != "none":
        raise InvalidParameter(f"Unknown preprocess mode '{preset.preprocess}'")
    src.require_nonempty()
    return src.copy()


def finalize_svg(svg: str, preset: TracePreset) -> str:
    if not preset.outline_only:
        return svg
    svg = _FILL_RE.sub('fill="none"', svg)
    return _STROKE_RE.sub('stroke="black"', svg)


def trace(
    src: RasterBuffer,
    preset_name: str,
    tracer: Tracer,
    *,
    super_resolution: bool = False,
) -> str:
    preset = get_preset(preset_name)
    raster = prepare_for_tracing(fit_for_tracing(src, super_resolution), preset)
    log.info("trace: preset=%s %dx%d", preset.name, raster.width, raster.height)
    return finalize_svg(tracer(raster, preset.options()), preset)


# ------------------------------ Generator ------------------------------- #

@dataclass
class TracePrepGenerator(BaseGenerator):
    """Emit the raster a tracer would receive for ``preset``."""

    @staticmethod
    def get_params() -> List[Dict[str, Any]]:
        return [
            {"name": "preset", "type": str, "default": "default", "choices": sorted(TRACE_PRESETS),
             "help": "Trace preset."},
            {"name": "super_resolution", "type": bool, "default": False,
             "help": "Allow a 4096px working size instead of 2048px."},
        ]

    def generate(self, input_image: Image.Image, **kwargs) -> Image.Image:
        preset = get_preset(str(kwargs.get("preset", "default")))
        src = fit_for_tracing(
            RasterBuffer.from_image(input_image),
            _as_bool(kwargs.get("super_resolution", False)),
        )
        return prepare_for_tracing(src, preset).to_image()


REGISTRY.register("trace_prep", TracePrepGenerator)
