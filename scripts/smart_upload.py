#!/usr/bin/env python3
"""Batch runner for the closet_intake smart upload pipeline.

- Scans JPG/JPEG/PNG/WebP images under `--images_dir`.
- Runs scene classification, extraction/separation, background removal and
  categorization on each image.
- Writes per-image outputs under `<out_root>/<image_stem>/`:
  - `result.json`: the upload result; inline (data URL) images are saved next
    to it as `item_XX.png` and referenced by filename
  - `boxes.jpg` (with `--debug`): source boxes of separated items
- Produces `<out_root>/summary.yaml`: recap of items per image.

Manual cropping: `--manual_crops crops.json` holds `{"images": {<filename>: [...]}}`
where each region is `{"x", "y", "width", "height", "name"?, "category"?}` in
normalized 0-1 coordinates. Listed images skip scene classification.

Tuning is via environment variables (see `IntakeConfig.from_env`):
- `VLM_MODEL` (default: "anthropic/claude-3-haiku-20240307"; provider-prefixed for LiteLLM)
- `VLM_TIMEOUT_S`, `BG_TIMEOUT_S`
- `BG_ENDPOINT`, `BG_API_KEY_ENV` (default key variable: `FAL_KEY`)
- `CATEGORIZATION_CACHE_SIZE` (default: 256)
- `VALIDATE_CROPS` (0/1, default: 0)
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any

import yaml
from PIL import Image
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from closet_intake.config import ConfigError, IntakeConfig
from closet_intake.pipelines.smart_upload import build_pipeline
from closet_intake.vision.image import decode_data_url
from closet_intake.vision.types import BoundingBox, ManualCrop, UploadResult
from closet_intake.vision.vis import draw_boxes

_IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".webp"}


def _iter_images(images_dir: Path) -> list[Path]:
    return sorted(p for p in images_dir.iterdir() if p.is_file() and p.suffix.lower() in _IMAGE_EXTS)


class _CropJson(BaseModel):
    model_config = ConfigDict(extra="forbid")

    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)
    width: float = Field(gt=0.0, le=1.0)
    height: float = Field(gt=0.0, le=1.0)
    name: str | None = None
    category: str | None = None


class _CropsFileJson(BaseModel):
    model_config = ConfigDict(extra="forbid")

    images: dict[str, list[_CropJson]]


def _load_manual_crops(path: Path) -> dict[str, list[ManualCrop]]:
    try:
        parsed = _CropsFileJson.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise SystemExit(f"Invalid manual crops JSON {path}: {e}") from e
    return {
        name: [
            ManualCrop(
                box=BoundingBox(x=c.x, y=c.y, width=c.width, height=c.height).clamp(),
                name=c.name,
                category=c.category,
            )
            for c in crops
        ]
        for name, crops in parsed.images.items()
    }


def _yaml_dump(data: object) -> str:
    dumped = yaml.safe_dump(data, sort_keys=False)
    if dumped is None:
        return ""
    if isinstance(dumped, bytes):
        return dumped.decode("utf-8")
    return dumped


def _externalize_images(result: dict[str, Any], outdir: Path) -> None:
    """Replace inline data URLs in `result` with PNG files written to `outdir`."""
    for i, item in enumerate(result.get("items", [])):
        url = item.get("image_url") or ""
        if not url.startswith("data:"):
            continue
        data, _ = decode_data_url(url)
        fname = f"item_{i:02d}.png"
        (outdir / fname).write_bytes(data)
        item["image_url"] = fname


def _summarize(image_path: Path, outdir: Path, result: UploadResult) -> dict[str, object]:
    return {
        "image": str(image_path),
        "outdir": str(outdir),
        "success": result.success,
        "scenario": result.scenario,
        "items": [
            {
                "name": it.name,
                "category": it.category,
                "confidence": round(float(it.confidence), 3),
                "method": it.categorization.method if it.categorization else None,
            }
            for it in result.items
        ],
        "error": result.error,
    }


def main(argv: list[str]) -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--images_dir", type=str, default="assets/images")
    ap.add_argument("--out_root", type=str, default="outputs/smart_upload")
    ap.add_argument("--manual_crops", type=str, default=None)
    ap.add_argument("--debug", action="store_true")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    images_dir = Path(args.images_dir).expanduser().resolve()
    if not images_dir.is_dir():
        raise SystemExit(f"--images_dir is not a directory: {images_dir}")
    out_root = Path(args.out_root).expanduser().resolve()
    out_root.mkdir(parents=True, exist_ok=True)

    try:
        cfg = IntakeConfig.from_env()
    except ConfigError as e:
        raise SystemExit(str(e)) from e
    cfg.verbose = bool(args.verbose)
    if "/" not in cfg.vlm_model:
        raise SystemExit(
            "LiteLLM requires a provider-prefixed model name.\n"
            f"Got VLM_MODEL={cfg.vlm_model!r}.\n"
            "Examples:\n"
            "  export VLM_MODEL='anthropic/claude-3-haiku-20240307'\n"
            "  export ANTHROPIC_API_KEY='...'\n"
        )

    manual = _load_manual_crops(Path(args.manual_crops)) if args.manual_crops else {}

    image_paths = _iter_images(images_dir)
    if not image_paths:
        raise SystemExit(f"No images found under: {images_dir}")

    pipeline = build_pipeline(cfg)
    summary: list[dict[str, object]] = []
    failures = 0
    for image_path in image_paths:
        per_outdir = out_root / image_path.stem
        per_outdir.mkdir(parents=True, exist_ok=True)
        print(f"Processing {image_path}")

        try:
            crops = manual.get(image_path.name)
            if crops:
                result = pipeline.upload_with_manual_cropping(image_path, crops, on_progress=print)
            else:
                result = pipeline.process_upload(image_path, on_progress=print)

            payload = result.to_dict()
            _externalize_images(payload, per_outdir)
            (per_outdir / "result.json").write_text(json.dumps(payload, indent=2), encoding="utf-8")

            if args.debug:
                with Image.open(image_path) as img:
                    draw_boxes(img, result.items, per_outdir / "boxes.jpg")

            summary.append(_summarize(image_path, per_outdir, result))
            if not result.success:
                failures += 1
                print(f"[FAILED] {image_path}: {result.error}", file=sys.stderr)
        except Exception as e:
            failures += 1
            print(f"[ERROR] {image_path}: {type(e).__name__}: {e}", file=sys.stderr)

    (out_root / "summary.yaml").write_text(
        _yaml_dump({"images": summary}),
        encoding="utf-8",
    )

    if failures:
        print(f"Completed with {failures} failures.", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
