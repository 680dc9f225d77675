"""Core data types shared by the intake pipeline components."""

from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal

Method = Literal["ai", "heuristic", "default"]
Scenario = Literal["person-wearing", "multi-item", "single-item", "manual-crop"]
GarmentCategory = Literal["tops", "bottoms", "one-pieces", "outerwear"]


class SceneType(str, Enum):
    """What an uploaded photo shows."""

    PERSON_WEARING = "person-wearing"
    MULTI_ITEM = "multi-item"
    SINGLE_ITEM = "single-item"


@dataclass(frozen=True, slots=True)
class UploadedImage:
    """Encoded raster bytes as received from the caller.

    Attributes:
        data: Encoded image bytes (PNG, JPEG, WebP, ...).
        mime_type: Declared or sniffed MIME type.
        filename: Optional original filename, used for heuristic hints.
    """

    data: bytes
    mime_type: str = "image/png"
    filename: str | None = None

    @property
    def identity(self) -> str:
        """Stable content hash used as cache key."""
        return hashlib.sha256(self.data).hexdigest()


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """Axis-aligned box normalized to [0, 1] relative to image dimensions.

    Attributes:
        x, y: Top-left corner.
        width, height: Box extent.
    """

    x: float
    y: float
    width: float
    height: float

    def clamp(self) -> BoundingBox:
        """Clamp to the unit square so that x+width <= 1 and y+height <= 1."""
        x = min(max(self.x, 0.0), 1.0)
        y = min(max(self.y, 0.0), 1.0)
        width = max(0.0, min(self.width, 1.0 - x))
        height = max(0.0, min(self.height, 1.0 - y))
        return BoundingBox(x=x, y=y, width=width, height=height)

    def pad(self, padding: float) -> BoundingBox:
        """Grow each side by `padding` times the box width/height (unclamped)."""
        dx = padding * self.width
        dy = padding * self.height
        return BoundingBox(
            x=self.x - dx,
            y=self.y - dy,
            width=self.width + 2 * dx,
            height=self.height + 2 * dy,
        )

    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)


@dataclass(frozen=True, slots=True)
class PixelRegion:
    """Integer crop rectangle in pixel coordinates."""

    x: int
    y: int
    width: int
    height: int

    def as_box(self) -> tuple[int, int, int, int]:
        """Return (left, upper, right, lower) as expected by ``Image.crop``."""
        return self.x, self.y, self.x + self.width, self.y + self.height


@dataclass(frozen=True, slots=True)
class SceneClassification:
    """Scene classifier verdict for one upload."""

    type: SceneType
    has_person: bool
    item_count: int
    confidence: float
    reasoning: str = ""


@dataclass(frozen=True, slots=True)
class GarmentDetection:
    """Person/garment detection used by the extractor to decide where to crop."""

    has_human: bool
    garment_type: str | None = None
    bounding_box: BoundingBox | None = None
    photo_type: str = "unknown"
    confidence: float = 0.0


@dataclass(frozen=True, slots=True)
class DetectedGarment:
    """A garment listed by the try-on garment inventory."""

    category: GarmentCategory
    name: str
    description: str
    confidence: float
    is_formal_wear: bool = False


@dataclass(frozen=True, slots=True)
class GarmentInventory:
    """All garments detected in one outfit photo, for try-on planning."""

    success: bool
    garments: list[DetectedGarment]
    suggested_order: list[str]
    is_complete_outfit: bool = False
    is_suit: bool = False
    error: str | None = None

    @property
    def garment_count(self) -> int:
        return len(self.garments)


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    """Outcome of the person garment extractor."""

    success: bool
    was_extracted: bool
    extracted_image_url: str | None = None
    detection: GarmentDetection | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class PriceEstimate:
    min: float
    max: float
    currency: str = "USD"
    confidence: float = 0.0


@dataclass(frozen=True, slots=True)
class CategorizationAttributes:
    color: str = "unknown"
    material: str | None = None
    style: str = "casual"
    fit: str | None = None
    pattern: str | None = None
    season: list[str] = field(default_factory=lambda: ["all"])
    occasion: list[str] = field(default_factory=lambda: ["casual"])
    secondary_colors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class CategorizationResult:
    """Name, category and attributes for one garment image.

    `method` tells callers how much to trust the record: "ai" came from the
    vision provider, "heuristic" from filename/aspect hints, "default" is a
    placeholder.
    """

    item_name: str
    category: str
    attributes: CategorizationAttributes
    confidence: float
    method: Method
    clothing_type: str = "garment"
    subcategory: str | None = None
    description: str = ""
    brand: str | None = None
    brand_confidence: float = 0.0
    estimated_price: PriceEstimate | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class CropValidationResult:
    """Advisory check that a crop shows the garment it is supposed to show."""

    is_valid: bool
    confidence: float
    detected_item: str
    expected_item: str
    issues: list[str]
    suggestions: list[str]


@dataclass(frozen=True, slots=True)
class SeparatedItem:
    """One garment cut out of a multi-item photo."""

    cropped_image_url: str
    cleaned_image_url: str
    categorization: CategorizationResult
    original_bounding_box: BoundingBox
    name: str = ""


@dataclass(frozen=True, slots=True)
class SeparationResult:
    """Outcome of the multi-garment separator."""

    success: bool
    has_multiple_items: bool
    items: list[SeparatedItem]
    error: str | None = None

    @property
    def item_count(self) -> int:
        return len(self.items)


@dataclass(frozen=True, slots=True)
class ManualCrop:
    """A user-drawn region, optionally labelled."""

    box: BoundingBox
    name: str | None = None
    category: str | None = None


@dataclass(slots=True)
class DetectedItem:
    """A finished garment as returned to the caller.

    `was_extracted_from_person` is True for every item produced by the person
    branch, including a full-image cleanup when no garment box was found.
    """

    image_url: str
    name: str
    category: str
    confidence: float
    was_extracted_from_person: bool | None = None
    was_separated: bool | None = None
    original_bounding_box: BoundingBox | None = None
    categorization: CategorizationResult | None = None
    validation: CropValidationResult | None = None


@dataclass(slots=True)
class UploadResult:
    """Externally visible outcome of one upload."""

    success: bool
    items_added: int
    items: list[DetectedItem]
    scenario: Scenario | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict view suitable for JSON/YAML dumps."""
        return asdict(self)
