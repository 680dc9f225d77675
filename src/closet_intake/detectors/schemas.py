"""Pydantic models for the JSON replies of the vision provider.

Providers answer in camelCase; the models accept both camelCase and
snake_case keys and coerce the usual sloppiness (numbers as strings, a single
string where a list is expected, nulls for defaults). Extra keys are ignored.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from closet_intake.vision.types import BoundingBox


class _ProviderModel(BaseModel):
    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)


def _clamp01(v: Any, default: float | None) -> float | None:
    if v is None or v == "":
        return default
    try:
        f = float(v)
    except (TypeError, ValueError):
        return default
    return min(max(f, 0.0), 1.0)


def _as_str_list(v: Any) -> list[str]:
    if v is None:
        return []
    if isinstance(v, str):
        return [v] if v.strip() else []
    if isinstance(v, list):
        return [str(s) for s in v if s is not None]
    return [str(v)]


class BoxOut(_ProviderModel):
    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)
    width: float = Field(ge=0.0, le=1.0)
    height: float = Field(ge=0.0, le=1.0)

    @field_validator("x", "y", "width", "height", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> Any:
        return _clamp01(v, None) if v is not None else v

    def to_box(self) -> BoundingBox:
        return BoundingBox(x=self.x, y=self.y, width=self.width, height=self.height).clamp()


class SceneOut(_ProviderModel):
    type: str | None = None
    has_person: bool = False
    item_count: int = 1
    confidence: float | None = None
    reasoning: str = ""

    @field_validator("has_person", mode="before")
    @classmethod
    def _coerce_has_person(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("item_count", mode="before")
    @classmethod
    def _coerce_item_count(cls, v: Any) -> int:
        if v is None:
            return 1
        try:
            return max(0, int(float(v)))
        except (TypeError, ValueError):
            return 1

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, v: Any) -> float | None:
        return _clamp01(v, None)

    @field_validator("reasoning", mode="before")
    @classmethod
    def _coerce_reasoning(cls, v: Any) -> str:
        return "" if v is None else str(v)


class GarmentDetectOut(_ProviderModel):
    has_human: bool = False
    garment_type: str | None = None
    bounding_box: BoxOut | None = None
    photo_type: str = "unknown"
    confidence: float = 0.0

    @field_validator("has_human", mode="before")
    @classmethod
    def _coerce_has_human(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("photo_type", mode="before")
    @classmethod
    def _coerce_photo_type(cls, v: Any) -> str:
        return str(v) if v else "unknown"

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, v: Any) -> float:
        return _clamp01(v, 0.0) or 0.0


class MultiItemOut(_ProviderModel):
    name: str = ""
    type: str = ""
    bounding_box: BoxOut | None = None
    confidence: float = 0.0

    @field_validator("name", "type", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, v: Any) -> float:
        return _clamp01(v, 0.0) or 0.0


class MultiGarmentOut(_ProviderModel):
    has_multiple_items: bool = False
    items: list[MultiItemOut] = Field(default_factory=list)

    @field_validator("has_multiple_items", mode="before")
    @classmethod
    def _coerce_has_multiple(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("items", mode="before")
    @classmethod
    def _coerce_items(cls, v: Any) -> list[Any]:
        if v is None:
            return []
        if isinstance(v, dict):
            return [v]
        return v


class InventoryGarmentOut(_ProviderModel):
    category: str = ""
    name: str = ""
    description: str = ""
    confidence: float = 0.0
    is_formal_wear: bool = False

    @field_validator("is_formal_wear", mode="before")
    @classmethod
    def _coerce_formal(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("category", "name", "description", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, v: Any) -> float:
        return _clamp01(v, 0.0) or 0.0


class InventoryOut(_ProviderModel):
    garments: list[InventoryGarmentOut] = Field(default_factory=list)
    suggested_order: list[str] = Field(default_factory=list)
    is_complete_outfit: bool = False
    is_suit: bool = False

    @field_validator("is_complete_outfit", "is_suit", mode="before")
    @classmethod
    def _coerce_flags(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("garments", mode="before")
    @classmethod
    def _coerce_garments(cls, v: Any) -> list[Any]:
        if v is None:
            return []
        if isinstance(v, dict):
            return [v]
        return v

    @field_validator("suggested_order", mode="before")
    @classmethod
    def _coerce_order(cls, v: Any) -> list[str]:
        return _as_str_list(v)


class CropCheckOut(_ProviderModel):
    detected_item: str = "unknown"
    matches_expected: bool = False
    confidence: float = 0.0
    issues: list[str] = Field(default_factory=list)

    @field_validator("matches_expected", mode="before")
    @classmethod
    def _coerce_matches(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("detected_item", mode="before")
    @classmethod
    def _coerce_detected(cls, v: Any) -> str:
        return str(v).strip() if v else "unknown"

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, v: Any) -> float:
        return _clamp01(v, 0.0) or 0.0

    @field_validator("issues", mode="before")
    @classmethod
    def _coerce_issues(cls, v: Any) -> list[str]:
        return _as_str_list(v)


class PriceOut(_ProviderModel):
    min: float
    max: float
    currency: str = "USD"
    confidence: float = 0.0

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, v: Any) -> float:
        return _clamp01(v, 0.0) or 0.0


class AttributesOut(_ProviderModel):
    color: str | None = None
    secondary_colors: list[str] = Field(default_factory=list)
    material: str | None = None
    style: str | None = None
    fit: str | None = None
    pattern: str | None = None
    season: list[str] = Field(default_factory=list)
    occasion: list[str] = Field(default_factory=list)

    @field_validator("secondary_colors", "season", "occasion", mode="before")
    @classmethod
    def _coerce_lists(cls, v: Any) -> list[str]:
        return _as_str_list(v)


class CategorizeOut(_ProviderModel):
    item_name: str | None = None
    clothing_type: str | None = None
    category: str | None = None
    subcategory: str | None = None
    brand: str | None = None
    brand_confidence: float = 0.0
    estimated_price: PriceOut | None = None
    description: str = ""
    attributes: AttributesOut = Field(default_factory=AttributesOut)
    confidence: float | None = None

    @field_validator("brand_confidence", mode="before")
    @classmethod
    def _coerce_brand_confidence(cls, v: Any) -> float:
        return _clamp01(v, 0.0) or 0.0

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, v: Any) -> float | None:
        return _clamp01(v, None)

    @field_validator("description", mode="before")
    @classmethod
    def _coerce_description(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("attributes", mode="before")
    @classmethod
    def _coerce_attributes(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("estimated_price", mode="before")
    @classmethod
    def _coerce_price(cls, v: Any) -> Any:
        if not isinstance(v, dict) or v.get("min") is None or v.get("max") is None:
            return None
        return v
