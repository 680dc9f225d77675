"""Split a photo of several garments into individually cleaned, categorized items.

Also hosts the try-on garment inventory (`detect_garments`), which lists the
garments of an outfit without cropping them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from time import perf_counter

import httpx
from PIL import Image

from closet_intake.concurrency import run_keyed
from closet_intake.detectors.background_removal import GENERAL_PARAMS
from closet_intake.detectors.schemas import InventoryOut, MultiGarmentOut
from closet_intake.result import Err, ErrorKind, ExtractionError, Ok, Result
from closet_intake.vision.geometry import nms, pad_and_clamp
from closet_intake.vision.image import ImageDecodeError, crop_to_region, img_to_png_data_url, load_upload, open_image
from closet_intake.vision.labels import GARMENT_CATEGORIES, normalize_garment_category
from closet_intake.vision.types import (
    BoundingBox,
    DetectedGarment,
    GarmentInventory,
    SeparatedItem,
    SeparationResult,
    UploadedImage,
)

from .protocols import BackgroundBackend, CategorizerBackend, VisionBackend

LOG = logging.getLogger(__name__)

MULTI_DETECT_PROMPT = """Analyze this image for multiple clothing items that should be added to a closet.

1. Identify EACH separate, distinct clothing item visible.
2. For EACH item give a descriptive name, the garment type, a bounding box
   (normalized 0-1 coordinates, x/y = top-left corner) and a confidence score.

Rules:
- Only detect actual clothing garments (not bags, jewelry or watches).
- Each item is a separate piece (shirt, pants, jacket, shoes, ...).
- The bounding box tightly frames just that garment.
- If items overlap, give your best estimate for each individual box.

Return ONLY valid JSON:
{
  "hasMultipleItems": true/false,
  "items": [
    {
      "name": "Blue Denim Jacket",
      "type": "jacket",
      "boundingBox": {"x": 0.1, "y": 0.2, "width": 0.4, "height": 0.5},
      "confidence": 0.95
    }
  ]
}

NO additional text, ONLY JSON."""

INVENTORY_PROMPT = """Analyze this fashion image and detect ALL distinct garment items visible.

For EACH garment give:
1. category: tops|bottoms|one-pieces|outerwear
2. name: a specific item name (e.g. "white t-shirt", "black suit jacket")
3. description: brief details (color, style, fabric)
4. confidence: 0.0-1.0
5. isFormalWear: true for formal or business attire (suits, tuxedos, blazers, dress pants, formal dresses)

Rules:
- A shirt/top AND pants/shorts/skirt are two separate items.
- A dress or jumpsuit is a single "one-pieces" item.
- A jacket or coat over other clothes is a separate "outerwear" item.
- For a SUIT or TUXEDO list the jacket as "tops" and the pants as "bottoms",
  mark both isFormalWear and set isSuit to true.
- Ignore accessories (bags, jewelry, shoes, ties, belts).

Return ONLY valid JSON:
{
  "garments": [
    {"category": "tops", "name": "black suit jacket", "description": "single-breasted suit jacket",
     "confidence": 0.95, "isFormalWear": true}
  ],
  "suggestedOrder": ["tops", "bottoms"],
  "isCompleteOutfit": true,
  "isSuit": true
}

NO additional text, ONLY JSON."""


@dataclass(frozen=True, slots=True)
class _Candidate:
    name: str
    garment_type: str
    box: BoundingBox
    confidence: float


class MultiGarmentSeparator:
    """Detect, crop, clean and categorize each garment of a multi-item photo.

    Items are processed `max_workers` at a time and keyed by their detection
    index; an item whose crop, cleanup or categorization fails is dropped
    without affecting the others.
    """

    def __init__(
        self,
        vision: VisionBackend,
        remover: BackgroundBackend,
        categorizer: CategorizerBackend,
        *,
        padding: float = 0.10,
        dedupe_iou: float = 0.8,
        max_workers: int = 3,
        max_tokens: int = 1500,
        image_loader: Callable[[str], UploadedImage] = load_upload,
    ) -> None:
        self.vision = vision
        self.remover = remover
        self.categorizer = categorizer
        self.padding = padding
        self.dedupe_iou = dedupe_iou
        self.max_workers = max_workers
        self.max_tokens = max_tokens
        self.image_loader = image_loader

    def _open(self, image: UploadedImage | str) -> tuple[UploadedImage, Image.Image]:
        try:
            upload = image if isinstance(image, UploadedImage) else self.image_loader(image)
            return upload, open_image(upload)
        except (ImageDecodeError, httpx.HTTPError, OSError) as e:
            raise ExtractionError(ErrorKind.DECODE, f"Cannot decode image for separation: {e}") from e

    def _detect(self, upload: UploadedImage) -> Result[tuple[bool, list[_Candidate]]]:
        res = self.vision.ask(
            upload, "garment-detect-multi", MULTI_DETECT_PROMPT, MultiGarmentOut, max_tokens=self.max_tokens
        )
        if isinstance(res, Err):
            return res
        candidates = [
            _Candidate(name=it.name, garment_type=it.type, box=it.bounding_box.to_box(), confidence=it.confidence)
            for it in res.value.items
            if it.bounding_box is not None
        ]
        candidates = [c for c in candidates if c.box.area() > 0.0]
        deduped = nms(candidates, box=lambda c: c.box, score=lambda c: c.confidence, iou_thr=self.dedupe_iou)
        if len(deduped) < len(candidates):
            LOG.debug("Dropped %s duplicate detections", len(candidates) - len(deduped))
        return Ok((res.value.has_multiple_items, deduped))

    def clean_region(self, img: Image.Image, box: BoundingBox, *, padding: float) -> Result[tuple[str, str]]:
        """Crop `box` (plus `padding`) out of `img` and remove the background.

        Returns the (cropped, cleaned) image URLs.
        """
        region = pad_and_clamp(box, img.width, img.height, padding)
        try:
            crop = crop_to_region(img, region)
        except ValueError as e:
            return Err(ErrorKind.EXTRACTION, str(e))
        cropped_url = img_to_png_data_url(crop)
        cleaned = self.remover.remove_background(cropped_url, GENERAL_PARAMS)
        if isinstance(cleaned, Err):
            return cleaned
        return Ok((cropped_url, cleaned.value))

    def _process(self, img: Image.Image, candidate: _Candidate) -> Result[SeparatedItem]:
        cleaned = self.clean_region(img, candidate.box, padding=self.padding)
        if isinstance(cleaned, Err):
            return cleaned
        cropped_url, cleaned_url = cleaned.value
        categorization = self.categorizer.categorize(cleaned_url)
        return Ok(
            SeparatedItem(
                cropped_image_url=cropped_url,
                cleaned_image_url=cleaned_url,
                categorization=categorization,
                original_bounding_box=candidate.box,
                name=candidate.name or categorization.item_name,
            )
        )

    def separate(self, image: UploadedImage | str) -> SeparationResult:
        """Separate the garments of a multi-item photo.

        Raises:
            ExtractionError: If the image itself cannot be decoded.
        """
        t0 = perf_counter()
        upload, img = self._open(image)
        detected = self._detect(upload)
        if isinstance(detected, Err):
            LOG.debug("Multi-garment detection failed: %s", detected)
            return SeparationResult(success=False, has_multiple_items=False, items=[], error=str(detected))

        has_multiple, candidates = detected.value
        if not has_multiple or len(candidates) <= 1:
            return SeparationResult(success=True, has_multiple_items=False, items=[])

        outcomes = run_keyed(
            lambda _i, c: self._process(img, c),
            dict(enumerate(candidates)),
            max_workers=self.max_workers,
        )
        items: list[SeparatedItem] = []
        for i, outcome in outcomes.items():
            if isinstance(outcome, Err):
                LOG.debug("Item %s/%s (%s) dropped: %s", i + 1, len(candidates), candidates[i].name, outcome)
                continue
            items.append(outcome.value)

        LOG.debug(
            "Separated %s/%s garments took=%.2fs",
            len(items),
            len(candidates),
            perf_counter() - t0,
        )
        return SeparationResult(success=True, has_multiple_items=True, items=items)

    def detect_garments(self, image: UploadedImage) -> GarmentInventory:
        """List the garments in an outfit photo for try-on planning; never raises."""
        res = self.vision.ask(image, "garment-inventory", INVENTORY_PROMPT, InventoryOut, max_tokens=self.max_tokens)
        if isinstance(res, Err):
            return GarmentInventory(success=False, garments=[], suggested_order=[], error=str(res))

        out = res.value
        garments: list[DetectedGarment] = []
        for g in out.garments:
            category = normalize_garment_category(g.category)
            if category is None:
                LOG.debug("Ignoring garment %r with category %r", g.name, g.category)
                continue
            garments.append(
                DetectedGarment(
                    category=category,  # type: ignore[arg-type]
                    name=g.name,
                    description=g.description,
                    confidence=g.confidence,
                    is_formal_wear=g.is_formal_wear,
                )
            )

        present = [c for c in GARMENT_CATEGORIES if any(g.category == c for g in garments)]
        order = [c for c in (normalize_garment_category(s) for s in out.suggested_order) if c is not None]
        order = list(dict.fromkeys(order)) or present
        return GarmentInventory(
            success=True,
            garments=garments,
            suggested_order=order,
            is_complete_outfit=out.is_complete_outfit,
            is_suit=out.is_suit,
        )
