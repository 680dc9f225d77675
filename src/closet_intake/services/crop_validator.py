"""Advisory check that a crop actually shows the garment it was cut for."""

from __future__ import annotations

import logging

from closet_intake.detectors.schemas import CropCheckOut
from closet_intake.result import Err
from closet_intake.vision.labels import UNKNOWN_ITEM
from closet_intake.vision.types import CropValidationResult, UploadedImage

from .protocols import VisionBackend

LOG = logging.getLogger(__name__)

CROP_VALIDATE_PROMPT = """Analyze this cropped clothing image and identify which clothing item is visible.

Expected item: {expected_name}
Expected category: {expected_category}

1. What clothing item do you see in this image?
2. Does it match the expected item ({expected_name})?
3. Confidence score (0.0-1.0).
4. Any issues with the crop?

Respond ONLY with valid JSON:
{{
  "detectedItem": "what you see (e.g. 'white mini skirt', 'blue shorts')",
  "matchesExpected": true/false,
  "confidence": 0.95,
  "issues": ["e.g. 'image shows shorts not skirt', 'too much background', 'partial garment only'"]
}}

NO additional text, ONLY JSON."""

# Ordered (issue substring, suggestion); every matching row contributes.
ISSUE_SUGGESTIONS: tuple[tuple[str, str], ...] = (
    ("partial garment only", "Expand bounding box to capture full garment"),
    ("too much background", "Tighten bounding box around garment"),
)
MISMATCH_SUGGESTIONS: tuple[str, ...] = (
    "Re-run detection with more specific prompts",
    "Manually verify image contains expected item",
)


def suggestions_for(issues: list[str], matches_expected: bool) -> list[str]:
    """Map reported crop issues (and a mismatch) to corrective suggestions."""
    lowered = [i.lower() for i in issues]
    out = [s for needle, s in ISSUE_SUGGESTIONS if any(needle in i for i in lowered)]
    if not matches_expected:
        out.extend(MISMATCH_SUGGESTIONS)
    return out


def failed_validation(expected_name: str) -> CropValidationResult:
    return CropValidationResult(
        is_valid=False,
        confidence=0.0,
        detected_item=UNKNOWN_ITEM,
        expected_item=expected_name,
        issues=["Validation failed"],
        suggestions=["Skip this item or retry detection"],
    )


class CropValidator:
    """Ask the vision provider whether a crop shows the expected garment.

    The verdict is advisory: callers annotate items with it, never drop them.
    """

    def __init__(self, vision: VisionBackend, *, max_tokens: int = 500) -> None:
        self.vision = vision
        self.max_tokens = max_tokens

    def validate(self, cropped: UploadedImage, expected_name: str, expected_category: str) -> CropValidationResult:
        prompt = CROP_VALIDATE_PROMPT.format(expected_name=expected_name, expected_category=expected_category)
        res = self.vision.ask(cropped, "crop-validate", prompt, CropCheckOut, max_tokens=self.max_tokens)
        if isinstance(res, Err):
            LOG.debug("Crop validation failed for %r: %s", expected_name, res)
            return failed_validation(expected_name)

        out = res.value
        if not out.matches_expected:
            LOG.debug("Crop mismatch: expected=%r detected=%r issues=%s", expected_name, out.detected_item, out.issues)
        return CropValidationResult(
            is_valid=out.matches_expected,
            confidence=out.confidence,
            detected_item=out.detected_item,
            expected_item=expected_name,
            issues=out.issues,
            suggestions=suggestions_for(out.issues, out.matches_expected),
        )
