from __future__ import annotations

import argparse
import hashlib
import io
import logging
import mimetypes
import os
import sys
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse, unquote

import requests
from PIL import Image, ImageOps

# Import registry & generators (registration happens at import time)
from raster import REGISTRY, RasterBuffer
import tone  # noqa: F401
import filters  # noqa: F401
import normals
import palettes
import tiling  # noqa: F401
import vectorize  # noqa: F401

# =============== Logging ===============
log = logging.getLogger("texturekit")


def setup_logging(verbosity: int = 0) -> None:
    level = [logging.WARNING, logging.INFO, logging.DEBUG][min(verbosity, 2)]
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )


# =============== Core: Fetcher & Loader ===============
class FileFetcher:
    """Fetch bytes from http(s) / file:// / local path with a tiny, safe cache."""

    def __init__(self, cache_dir: Optional[Path] = None, timeout: float = 20.0) -> None:
        self.timeout = timeout
        self.cache_dir = cache_dir or Path(tempfile.gettempdir()) / "texturekit_cache"
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._session = requests.Session()
        self._session.headers.update({"User-Agent": "texturekit/1.0 (+https://local)"})

    def fetch(self, src: str) -> Tuple[bytes, Optional[str]]:
        parsed = urlparse(src)
        scheme = (parsed.scheme or "").lower()
        if scheme in ("http", "https"):
            return self._fetch_http_cached(src)
        if scheme == "file":
            local_path = unquote(parsed.path)
            if os.name == "nt" and local_path.startswith("/"):
                local_path = local_path[1:]
            return self._fetch_local(local_path)
        if scheme == "" or (os.name == "nt" and len(scheme) == 1):
            return self._fetch_local(src)
        raise ValueError(f"Unsupported URL scheme: {scheme}")

    def _cache_key(self, url: str) -> Path:
        h = hashlib.sha256(url.encode("utf-8")).hexdigest()[:32]
        return self.cache_dir / f"{h}.bin"

    def _fetch_http_cached(self, url: str) -> Tuple[bytes, Optional[str]]:
        key = self._cache_key(url)
        if key.exists():
            log.info("Cache hit: %s", key.name)
            return key.read_bytes(), mimetypes.guess_type(url)[0]
        log.info("Fetching: %s", url)
        r = self._session.get(url, timeout=self.timeout)
        r.raise_for_status()
        raw = r.content
        try:
            key.write_bytes(raw)
        except OSError as e:
            log.warning("Could not cache %s: %s", url, e)
        return raw, r.headers.get("Content-Type")

    def _fetch_local(self, path_str: str) -> Tuple[bytes, Optional[str]]:
        p = Path(path_str)
        if not p.exists() or not p.is_file():
            raise FileNotFoundError(f"Input file not found: {p}")
        return p.read_bytes(), mimetypes.guess_type(p.name)[0]


class ImageLoader:
    """Decode bytes → straight RGBA Pillow image (EXIF orientation applied)."""

    def load(self, raw: bytes, content_type: Optional[str] = None, *, max_size: Optional[int] = None) -> Image.Image:
        try:
            img = Image.open(io.BytesIO(raw))
            img.load()
        except Exception as e:
            raise ValueError(f"Failed to decode image: {e}") from e

        img = ImageOps.exif_transpose(img)
        img = img.convert("RGBA")
        if max_size:
            img.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)
        log.debug("Decoded %s %dx%d", content_type or "image", img.width, img.height)
        return img


def save_image(img: Image.Image, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fmt = _infer_format_from_path(path)
    if fmt == "JPEG" and img.mode != "RGB":
        img = img.convert("RGB")
    img.save(path, format=fmt, optimize=True)


# =============== Small CLI helpers ===============
def _coerce(v: str) -> Any:
    if v.isdigit() or (v.startswith("-") and v[1:].isdigit()):
        return int(v)
    try:
        return float(v)
    except ValueError:
        low = v.lower()
        if low in ("true", "false"):
            return low == "true"
    return v


def _parse_kv_pairs(pairs: Optional[List[str]]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if not pairs:
        return out
    for p in pairs:
        if "=" in p:
            k, v = p.split("=", 1)
            out[k.strip()] = _coerce(v.strip())
        else:
            log.warning("Ignoring extra without '=': %s", p)
    return out


def _infer_format_from_path(p: Path) -> str:
    ext = p.suffix.lower()
    if ext in (".jpg", ".jpeg"):
        return "JPEG"
    if ext == ".png":
        return "PNG"
    if ext == ".webp":
        return "WEBP"
    return "PNG"


# ======= Pipeline helpers (multi-generator) =======
def _parse_pipeline(spec: Optional[str]) -> List[str]:
    stages = [s.strip().lower() for s in (spec or "").split("|") if s.strip()]
    if not stages:
        raise ValueError("Empty --pipeline. Example: tone|normal_map")
    return stages


def _split_stage_extras(stages: List[str], raw_extras: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Extras can be:
      - Unprefixed:        key=val          (applies to ALL stages unless overridden)
      - By name:           gen.key=val      (applies to the stage whose name matches 'gen')
      - By index (0-based) 0.key=val        (applies to stage at index 0)
      - 'all.key=val'      applies to all (alias of unprefixed)
    Merge order per stage: (unprefixed/all) -> (by-name) -> (by-index)
    """
    global_extras: Dict[str, Any] = {}
    name_targets: Dict[str, Dict[str, Any]] = {}
    index_targets: Dict[int, Dict[str, Any]] = {}

    for k, v in raw_extras.items():
        if "." not in k:
            global_extras[k] = v
            continue
        prefix, key = k.split(".", 1)
        prefix = prefix.strip().lower()
        key = key.strip()
        if prefix == "all":
            global_extras[key] = v
        elif prefix.isdigit():
            idx = int(prefix)
            if 0 <= idx < len(stages):
                index_targets.setdefault(idx, {})[key] = v
        else:
            name_targets.setdefault(prefix, {})[key] = v

    stage_extras: List[Dict[str, Any]] = []
    for i, name in enumerate(stages):
        merged: Dict[str, Any] = {}
        merged.update(global_extras)
        if name in name_targets:
            merged.update(name_targets[name])
        if i in index_targets:
            merged.update(index_targets[i])
        stage_extras.append(merged)
    return stage_extras


def _run_pipeline(
    img: Image.Image,
    stages: List[str],
    stage_extras: List[Dict[str, Any]],
    seed: Optional[int],
) -> Image.Image:
    out = img
    for i, name in enumerate(stages):
        gen = REGISTRY.create(name, seed=seed)
        extras = stage_extras[i]
        log.info("Stage %d/%d: %s extras=%s", i + 1, len(stages), name, {k: extras[k] for k in sorted(extras)})
        out = gen.generate(out, **extras)
    return out


def _check_stages(stages: List[str]) -> None:
    unknown = [s for s in stages if s not in REGISTRY.names()]
    if unknown:
        raise SystemExit(f"Unknown generator(s) in pipeline: {', '.join(unknown)}")


def _load_source(url: str, max_size: Optional[int] = None) -> Image.Image:
    raw, ctype = FileFetcher().fetch(url)
    return ImageLoader().load(raw, ctype, max_size=max_size)


# =============== CLI ===============
def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Texture toolkit: tone, normals, palettes, tiling, panoramas")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v, -vv).")

    sub = p.add_subparsers(dest="cmd", required=True)

    lp = sub.add_parser("list", help="List generators.")
    lp.set_defaults(func=cmd_list)

    dp = sub.add_parser("describe", help="Show a generator's parameters.")
    dp.add_argument("name", choices=REGISTRY.names())
    dp.set_defaults(func=cmd_describe)

    rp = sub.add_parser("run", help="Run one or more generators (pipeline).")
    rp.add_argument("--url", required=True, help="HTTP(S) URL, file:// URL, or local path.")
    rp.add_argument("--pipeline", required=True, help="Pipe generators as 'g1|g2|g3'. (Quote on PowerShell)")
    rp.add_argument("--out", type=Path, required=True, help="Output image file (png/jpg/webp).")
    rp.add_argument("--seed", type=int, default=None, help="RNG seed (optional).")
    rp.add_argument("--max-size", type=int, default=None, help="Downscale input longest side before processing.")
    rp.add_argument("--scale", type=int, default=1, help="Final upscale factor via Lanczos (1=off).")
    rp.add_argument(
        "--extra",
        nargs="*",
        help=(
            "Extra k=v pairs. Unprefixed apply to all stages. "
            "Use name.key=val or index.key=val for per-stage (e.g., seamless.blend=20 or 1.strength=2)."
        ),
    )
    rp.set_defaults(func=cmd_run)

    mp = sub.add_parser("maps", help="Write normal/displacement/roughness/specular maps.")
    mp.add_argument("--url", required=True)
    mp.add_argument("--out-dir", type=Path, required=True)
    mp.add_argument("--max-size", type=int, default=None)
    mp.add_argument("--extra", nargs="*", help="Per-map k=v pairs, e.g. normal.strength=2 roughness.blur=3.")
    mp.set_defaults(func=cmd_maps)

    pp = sub.add_parser("palette", help="Print dominant colours as hex codes.")
    pp.add_argument("--url", required=True)
    pp.add_argument("--colors", type=int, default=palettes.DEFAULT_COLORS)
    pp.add_argument("--stride", type=int, default=palettes.DEFAULT_STRIDE)
    pp.add_argument("--iterations", type=int, default=palettes.DEFAULT_ITERATIONS)
    pp.add_argument("--seed", type=int, default=None)
    pp.add_argument("--upper", action="store_true", help="Uppercase hex codes.")
    pp.add_argument("--swatch", type=Path, default=None, help="Optional swatch image output.")
    pp.set_defaults(func=cmd_palette)

    bp = sub.add_parser("bench", help="Micro-benchmark a pipeline.")
    bp.add_argument("--url", required=True)
    bp.add_argument("--pipeline", required=True, help="Pipe generators as 'g1|g2|g3'.")
    bp.add_argument("--runs", type=int, default=3)
    bp.add_argument("--seed", type=int, default=None)
    bp.add_argument("--extra", nargs="*")
    bp.set_defaults(func=cmd_bench)

    return p


# =============== Commands ===============
def cmd_list(_args: argparse.Namespace) -> int:
    print("Available generators:", ", ".join(REGISTRY.names()) or "(none)")
    return 0


def cmd_describe(args: argparse.Namespace) -> int:
    cls = REGISTRY.get(args.name)
    doc = (cls.__doc__ or "").strip().splitlines()
    print(f"{args.name}: {doc[0] if doc else ''}")
    for param in cls.get_params():
        bounds = ""
        if "min" in param or "max" in param:
            bounds = f" [{param.get('min', '')}..{param.get('max', '')}]"
        choices = f" {{{', '.join(param['choices'])}}}" if param.get('choices') else ""
        print(f"  {param['name']} ({param['type'].__name__}, default={param['default']}){bounds}{choices}: {param['help']}")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    try:
        # Parse pipeline first (so errors show early)
        stages = _parse_pipeline(args.pipeline)
        _check_stages(stages)
        stage_extras = _split_stage_extras(stages, _parse_kv_pairs(args.extra))

        src_img = _load_source(args.url, args.max_size)
        out_img = _run_pipeline(src_img, stages, stage_extras, seed=args.seed)

        if args.scale and args.scale > 1:
            w, h = out_img.size
            out_img = out_img.resize((w * args.scale, h * args.scale), Image.Resampling.LANCZOS)

        save_image(out_img, args.out)
        log.info("Saved %s (%dx%d)", args.out, *out_img.size)
        return 0
    except Exception as e:
        log.exception("Failed: %s", e)
        return 1


def cmd_maps(args: argparse.Namespace) -> int:
    try:
        src = RasterBuffer.from_image(_load_source(args.url, args.max_size))
        names = list(normals.MAP_NAMES)
        per_map = _split_stage_extras(names, _parse_kv_pairs(args.extra))
        adjustments = {
            name: normals.DEFAULT_MAP_ADJUSTMENTS[name].updated(extras)
            for name, extras in zip(names, per_map)
        }
        maps = normals.texture_maps(src, adjustments)

        stem = Path(urlparse(args.url).path).stem or "texture"
        for name, raster in maps.items():
            path = args.out_dir / f"{stem}_{name}.png"
            save_image(raster.to_image(), path)
            log.info("Saved %s", path)
        return 0
    except Exception as e:
        log.exception("Failed: %s", e)
        return 1


def cmd_palette(args: argparse.Namespace) -> int:
    try:
        src = RasterBuffer.from_image(_load_source(args.url))
        palette = palettes.palette_from_raster(
            src,
            args.colors,
            stride=args.stride,
            max_iterations=args.iterations,
            seed=args.seed,
        )
        codes = palette.hex_codes(upper=args.upper)
        if not codes:
            print("(no palette)")
        for code in codes:
            print(code)
        if args.swatch:
            save_image(palette.to_raster().to_image(), args.swatch)
            log.info("Saved %s", args.swatch)
        return 0
    except Exception as e:
        log.exception("Failed: %s", e)
        return 1


def cmd_bench(args: argparse.Namespace) -> int:
    try:
        src_img = _load_source(args.url)

        stages = _parse_pipeline(args.pipeline)
        _check_stages(stages)
        stage_extras = _split_stage_extras(stages, _parse_kv_pairs(args.extra))

        times = []
        for _ in range(max(1, args.runs)):
            t0 = time.perf_counter()
            _ = _run_pipeline(src_img, stages, stage_extras, seed=args.seed)
            times.append(time.perf_counter() - t0)
        avg = sum(times) / len(times)
        print(
            f"{'|'.join(stages)}: {len(times)} run(s), avg {avg*1000:.2f} ms, "
            f"min {min(times)*1000:.2f} ms, max {max(times)*1000:.2f} ms"
        )
        return 0
    except Exception as e:
        log.exception("Bench failed: %s", e)
        return 1


# =============== Entry ===============
def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
