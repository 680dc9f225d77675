"""Extract the worn garment from a photo of a person, or clean a flat-lay as-is."""

from __future__ import annotations

import logging
from time import perf_counter

from closet_intake.detectors.background_removal import GENERAL_PARAMS, PORTRAIT_PARAMS
from closet_intake.detectors.schemas import GarmentDetectOut
from closet_intake.result import Err, ErrorKind, Ok, Result
from closet_intake.vision.geometry import pad_and_clamp
from closet_intake.vision.image import (
    ImageDecodeError,
    crop_to_region,
    img_to_png_data_url,
    open_image,
    resize_to_bound,
)
from closet_intake.vision.types import BoundingBox, ExtractionResult, GarmentDetection, UploadedImage

from .protocols import BackgroundBackend, VisionBackend

LOG = logging.getLogger(__name__)

GARMENT_DETECT_PROMPT = """Analyze this image to determine if it shows a person wearing clothes.

1. Is there a human/person visible in the image?
2. If yes, what type of garment are they wearing (the main, most prominent item)?
3. Give a bounding box for the garment area (normalized 0-1 coordinates).
4. Determine the photo type.

Return ONLY valid JSON:
{
  "hasHuman": true/false,
  "garmentType": "shirt|jacket|dress|pants|top|hoodie|sweater|coat",
  "boundingBox": {"x": 0.2, "y": 0.15, "width": 0.6, "height": 0.7},
  "photoType": "person-wearing|flat-lay|mannequin|unknown",
  "confidence": 0.95
}

The boundingBox frames the GARMENT ONLY, not the whole person; x, y is the
top-left corner. If there is no person, set hasHuman to false and photoType to
"flat-lay".

NO additional text, ONLY JSON."""

NO_PERSON = GarmentDetection(has_human=False, photo_type="flat-lay")


class PersonGarmentExtractor:
    """Crop the garment off a worn-clothing photo and remove its background.

    With no person (or a person but no garment box) the whole image goes
    through the general-purpose background removal instead. `extract` never
    raises; failures come back in `ExtractionResult.error`.
    """

    def __init__(
        self,
        vision: VisionBackend,
        remover: BackgroundBackend,
        *,
        padding: float = 0.05,
        max_side: int = 1024,
        max_tokens: int = 500,
    ) -> None:
        self.vision = vision
        self.remover = remover
        self.padding = padding
        self.max_side = max_side
        self.max_tokens = max_tokens

    def detect(self, image: UploadedImage) -> GarmentDetection:
        """Locate a person and their main garment; any failure reads as "no person"."""
        res = self.vision.ask(
            image, "garment-detect", GARMENT_DETECT_PROMPT, GarmentDetectOut, max_tokens=self.max_tokens
        )
        if isinstance(res, Err):
            LOG.debug("Garment detection failed, assuming flat-lay: %s", res)
            return NO_PERSON
        out = res.value
        return GarmentDetection(
            has_human=out.has_human,
            garment_type=out.garment_type,
            bounding_box=out.bounding_box.to_box() if out.bounding_box is not None else None,
            photo_type=out.photo_type,
            confidence=out.confidence,
        )

    def _crop_garment(self, image: UploadedImage, box: BoundingBox) -> Result[str]:
        try:
            img = open_image(image)
        except ImageDecodeError as e:
            return Err(ErrorKind.DECODE, str(e))
        region = pad_and_clamp(box, img.width, img.height, self.padding)
        try:
            crop = crop_to_region(img, region)
        except ValueError as e:
            return Err(ErrorKind.EXTRACTION, str(e))
        return Ok(img_to_png_data_url(resize_to_bound(crop, max_side=self.max_side)))

    def extract(self, image: UploadedImage) -> ExtractionResult:
        t0 = perf_counter()
        detection = self.detect(image)
        box = detection.bounding_box
        crop_person = detection.has_human and box is not None

        if detection.has_human and box is not None:
            cropped = self._crop_garment(image, box)
            if isinstance(cropped, Err):
                return ExtractionResult(success=False, was_extracted=False, detection=detection, error=str(cropped))
            removed = self.remover.remove_background(cropped.value, PORTRAIT_PARAMS)
        else:
            if detection.has_human:
                LOG.warning("Person detected without a garment box; cleaning the full image instead.")
            removed = self.remover.remove_background(image, GENERAL_PARAMS)

        if isinstance(removed, Err):
            return ExtractionResult(success=False, was_extracted=False, detection=detection, error=str(removed))

        LOG.debug(
            "Garment extraction done: person=%s garment=%s took=%.2fs",
            detection.has_human,
            detection.garment_type,
            perf_counter() - t0,
        )
        return ExtractionResult(
            success=True,
            was_extracted=crop_person,
            extracted_image_url=removed.value,
            detection=detection,
        )
