"""Garment categorization: AI first, then filename/shape heuristics, then a placeholder."""

from __future__ import annotations

import colorsys
import logging
from collections.abc import Callable, Mapping
from time import perf_counter

import httpx
import numpy as np
from PIL import Image

from closet_intake.cache import LruCache
from closet_intake.concurrency import run_keyed
from closet_intake.detectors.schemas import CategorizeOut
from closet_intake.result import Err, ErrorKind, Ok, Result
from closet_intake.vision.image import ImageDecodeError, load_upload, open_image
from closet_intake.vision.labels import filename_hint, to_closet_category
from closet_intake.vision.types import (
    CategorizationAttributes,
    CategorizationResult,
    PriceEstimate,
    UploadedImage,
)

from .protocols import VisionBackend

LOG = logging.getLogger(__name__)

CATEGORIZE_PROMPT = """Analyze this clothing item in detail.

1. ITEM IDENTIFICATION:
   - A descriptive name (include the brand if a logo or label is visible)
   - The exact clothing type (e.g. "button-down oxford shirt", not just "shirt")
   - Category: tops|bottoms|dresses|shoes|accessories|outerwear|jackets|sweaters|skirts|shirts|pants

2. BRAND: only if a logo, label or tag is visible; give a confidence in [0, 1].

3. PRICE ESTIMATE (USD): a min/max range and a confidence in [0, 1].

4. ATTRIBUTES: primary color, secondary colors, material, style, fit, pattern,
   best seasons and suitable occasions.

Return ONLY valid JSON:
{
  "itemName": "Blue Oxford Button-Down Shirt",
  "clothingType": "button-down oxford shirt",
  "category": "tops",
  "brand": null,
  "brandConfidence": 0.0,
  "estimatedPrice": {"min": 40, "max": 90, "currency": "USD", "confidence": 0.5},
  "description": "Classic blue cotton shirt with a button-down collar.",
  "attributes": {
    "color": "blue",
    "secondaryColors": ["white"],
    "material": "cotton",
    "style": "casual",
    "fit": "regular fit",
    "pattern": "solid",
    "season": ["spring", "summer", "fall"],
    "occasion": ["casual", "work"]
  },
  "confidence": 0.9
}

NO additional text, ONLY JSON."""

DEFAULT_ITEM_NAME = "Clothing Item"
DEFAULT_CONFIDENCE = 0.1
HEURISTIC_SHAPE_CONFIDENCE = 0.3
AI_DEFAULT_CONFIDENCE = 0.85

# (min_hue_deg, max_hue_deg, name); hue ranges are half-open.
_HUE_NAMES: tuple[tuple[float, float, str], ...] = (
    (0.0, 15.0, "red"),
    (15.0, 45.0, "orange"),
    (45.0, 70.0, "yellow"),
    (70.0, 165.0, "green"),
    (165.0, 255.0, "blue"),
    (255.0, 290.0, "purple"),
    (290.0, 345.0, "pink"),
    (345.0, 360.0, "red"),
)


def dominant_color(img: Image.Image) -> str:
    """Name the average colour of an image, ignoring fully transparent pixels.

    The image is reduced to 50x50 before averaging.
    """
    arr = np.asarray(img.convert("RGBA").resize((50, 50)), dtype=np.float32)
    opaque = arr[..., 3] > 0
    pixels = arr[opaque][:, :3] if opaque.any() else arr[..., :3].reshape(-1, 3)
    r, g, b = (float(c) / 255.0 for c in pixels.mean(axis=0))
    h, s, v = colorsys.rgb_to_hsv(r, g, b)
    if v < 0.2:
        return "black"
    if s < 0.12:
        return "white" if v > 0.85 else "gray"
    hue = h * 360.0
    if 15.0 <= hue < 60.0 and s < 0.35 and v > 0.7:
        return "beige"
    if 15.0 <= hue < 45.0 and v < 0.6:
        return "brown"
    for lo, hi, name in _HUE_NAMES:
        if lo <= hue < hi:
            return name
    return "red"


def default_categorization(error: str | None = None) -> CategorizationResult:
    """Placeholder record used when neither the provider nor the heuristics produce anything."""
    return CategorizationResult(
        item_name=DEFAULT_ITEM_NAME,
        category="other",
        attributes=CategorizationAttributes(),
        confidence=DEFAULT_CONFIDENCE,
        method="default",
        description="No detailed information available",
        error=error,
    )


def _from_ai(out: CategorizeOut) -> CategorizationResult:
    attrs = out.attributes
    price = out.estimated_price
    return CategorizationResult(
        item_name=(out.item_name or "").strip() or "Unknown Item",
        category=to_closet_category(out.category),
        attributes=CategorizationAttributes(
            color=attrs.color or "unknown",
            material=attrs.material,
            style=attrs.style or "casual",
            fit=attrs.fit,
            pattern=attrs.pattern,
            season=attrs.season or ["all"],
            occasion=attrs.occasion or ["casual"],
            secondary_colors=attrs.secondary_colors,
        ),
        confidence=out.confidence if out.confidence is not None else AI_DEFAULT_CONFIDENCE,
        method="ai",
        clothing_type=out.clothing_type or "clothing",
        subcategory=out.subcategory,
        description=out.description,
        brand=out.brand or None,
        brand_confidence=out.brand_confidence,
        estimated_price=(
            PriceEstimate(min=price.min, max=price.max, currency=price.currency, confidence=price.confidence)
            if price is not None
            else None
        ),
    )


def _shape_category(img: Image.Image) -> tuple[str, str]:
    w, h = img.size
    aspect = w / h if h else 1.0
    if aspect > 1.5:
        return "accessories", "accessory"
    if aspect < 0.6:
        return "dresses", "dress"
    return "tops", "top"


class Categorizer:
    """Produce a `CategorizationResult` for a garment image; never raises.

    Successful AI results are memoized in `cache`, keyed by the image content
    hash. Heuristic and default results are never cached so that a later
    call can still reach the provider.
    """

    def __init__(
        self,
        vision: VisionBackend,
        *,
        cache: LruCache[str, CategorizationResult] | None = None,
        image_loader: Callable[[str], UploadedImage] = load_upload,
        max_workers: int = 3,
        max_tokens: int = 1500,
    ) -> None:
        self.vision = vision
        self.cache = cache if cache is not None else LruCache(maxsize=256)
        self.image_loader = image_loader
        self.max_workers = max_workers
        self.max_tokens = max_tokens

    def _load(self, image: UploadedImage | str) -> Result[UploadedImage]:
        if isinstance(image, UploadedImage):
            return Ok(image)
        try:
            return Ok(self.image_loader(image))
        except (ImageDecodeError, httpx.HTTPError, OSError) as e:
            return Err(ErrorKind.DECODE, f"Could not load image for categorization: {e}")

    def _categorize_ai(self, upload: UploadedImage) -> Result[CategorizationResult]:
        res = self.vision.ask(upload, "categorize", CATEGORIZE_PROMPT, CategorizeOut, max_tokens=self.max_tokens)
        if isinstance(res, Err):
            return Err(ErrorKind.CATEGORIZATION, res.message)
        return Ok(_from_ai(res.value))

    def _categorize_heuristic(
        self,
        upload: UploadedImage | None,
        filename: str | None,
    ) -> Result[CategorizationResult]:
        img: Image.Image | None = None
        if upload is not None:
            try:
                img = open_image(upload)
            except ImageDecodeError:
                img = None
        hint = filename_hint(filename)
        if hint is None and img is None:
            return Err(ErrorKind.CATEGORIZATION, "No filename hint and no decodable image.")

        color = dominant_color(img) if img is not None else "unknown"
        if hint is not None:
            raw_category, subcategory, confidence = hint
        elif img is not None:
            raw_category, subcategory = _shape_category(img)
            confidence = HEURISTIC_SHAPE_CONFIDENCE
        noun = subcategory.title()
        return Ok(
            CategorizationResult(
                item_name=f"{color.title()} {noun}" if color != "unknown" else noun,
                category=to_closet_category(raw_category),
                attributes=CategorizationAttributes(color=color),
                confidence=confidence,
                method="heuristic",
                clothing_type=subcategory,
                subcategory=subcategory,
                description="Categorized from filename and image shape.",
            )
        )

    def categorize(self, image: UploadedImage | str, *, filename: str | None = None) -> CategorizationResult:
        """Categorize one image.

        Args:
            image: The upload, or a URL / data URL of a cleaned garment image.
            filename: Optional filename hint; defaults to the upload's own.
        """
        t0 = perf_counter()
        loaded = self._load(image)
        upload: UploadedImage | None = None
        if isinstance(loaded, Err):
            primary_error = loaded
        else:
            upload = loaded.value
            cached = self.cache.get(upload.identity)
            if cached is not None:
                LOG.debug("Categorization cache hit: %s", upload.identity[:12])
                return cached
            ai = self._categorize_ai(upload)
            if isinstance(ai, Ok):
                self.cache.put(upload.identity, ai.value)
                LOG.debug(
                    "AI categorization: %s (%s) took=%.2fs",
                    ai.value.item_name,
                    ai.value.category,
                    perf_counter() - t0,
                )
                return ai.value
            primary_error = ai

        LOG.debug("AI categorization failed (%s); trying heuristics", primary_error)
        hint_name = filename or (upload.filename if upload is not None else None)
        heuristic = self._categorize_heuristic(upload, hint_name)
        if isinstance(heuristic, Ok):
            return heuristic.value
        LOG.debug("Heuristic categorization failed (%s); using default", heuristic)
        return default_categorization(error=str(primary_error))

    def categorize_batch(self, items: Mapping[str, UploadedImage | str]) -> dict[str, CategorizationResult]:
        """Categorize many images, `max_workers` at a time; results keyed by input id."""
        return run_keyed(lambda _id, image: self.categorize(image), items, max_workers=self.max_workers)
