"""Label utilities (category allow-lists, normalization, filename hints)."""

from __future__ import annotations

from .types import SceneType

AI_CATEGORIES: frozenset[str] = frozenset(
    {
        "tops",
        "bottoms",
        "dresses",
        "shoes",
        "accessories",
        "outerwear",
        "jackets",
        "sweaters",
        "skirts",
        "shirts",
        "pants",
        "other",
    }
)
GARMENT_CATEGORIES: tuple[str, ...] = ("tops", "bottoms", "one-pieces", "outerwear")
DEFAULT_CATEGORY = "other"
UNKNOWN_ITEM = "unknown"

# Provider vocabulary -> closet storage category.
_CLOSET_CATEGORY_MAP: dict[str, str] = {
    "tops": "tops",
    "shirts": "tops",
    "bottoms": "pants",
    "pants": "pants",
    "dresses": "dresses",
    "shoes": "shoes",
    "accessories": "accessories",
    "outerwear": "outerwear",
    "jackets": "jackets",
    "sweaters": "sweaters",
    "skirts": "skirts",
    "other": "other",
}

# Ordered: the first matching row wins.
_FILENAME_HINTS: tuple[tuple[str, tuple[str, ...], str, float], ...] = (
    ("tops", ("shirt", "blouse", "top", "tank", "tee", "cami", "sweater", "hoodie"), "shirt", 0.7),
    ("bottoms", ("pants", "jeans", "trouser", "short", "legging"), "pants", 0.7),
    ("dresses", ("dress",), "dress", 0.75),
    ("skirts", ("skirt",), "skirt", 0.7),
    ("shoes", ("shoe", "sneaker", "boot", "heel", "sandal"), "footwear", 0.7),
    ("jackets", ("jacket", "coat", "blazer"), "jacket", 0.7),
    ("accessories", ("accessory", "bag", "hat", "scarf", "belt"), "accessory", 0.6),
)

_SCENE_ALIASES: dict[str, SceneType] = {
    "person wearing": SceneType.PERSON_WEARING,
    "person": SceneType.PERSON_WEARING,
    "model": SceneType.PERSON_WEARING,
    "multi item": SceneType.MULTI_ITEM,
    "multiple items": SceneType.MULTI_ITEM,
    "multi": SceneType.MULTI_ITEM,
    "single item": SceneType.SINGLE_ITEM,
    "single": SceneType.SINGLE_ITEM,
}

_GARMENT_ALIASES: dict[str, str] = {
    "top": "tops",
    "bottom": "bottoms",
    "one piece": "one-pieces",
    "one pieces": "one-pieces",
    "dress": "one-pieces",
    "dresses": "one-pieces",
    "jumpsuit": "one-pieces",
}


def _norm(s: str) -> str:
    cleaned = s.strip().lower().replace("-", " ").replace("_", " ").replace("/", " ")
    return " ".join(cleaned.split())


def to_closet_category(raw: str | None) -> str:
    """Map a provider category onto the closet vocabulary; unknowns become "other"."""
    if not raw:
        return DEFAULT_CATEGORY
    key = _norm(raw).replace(" ", "")
    if key not in AI_CATEGORIES:
        return DEFAULT_CATEGORY
    return _CLOSET_CATEGORY_MAP[key]


def normalize_garment_category(raw: str | None) -> str | None:
    """Map a raw garment category to one of `GARMENT_CATEGORIES`, or None to drop it."""
    if not raw:
        return None
    n = _norm(raw)
    for c in GARMENT_CATEGORIES:
        if n == _norm(c):
            return c
    return _GARMENT_ALIASES.get(n)


def parse_scene_type(raw: str | None) -> SceneType:
    """Parse a provider scene label; anything unrecognized is a single item."""
    if not raw:
        return SceneType.SINGLE_ITEM
    n = _norm(raw)
    for t in SceneType:
        if n == _norm(t.value):
            return t
    return _SCENE_ALIASES.get(n, SceneType.SINGLE_ITEM)


def filename_hint(filename: str | None) -> tuple[str, str, float] | None:
    """Return (category, subcategory, confidence) suggested by a filename, if any."""
    if not filename:
        return None
    name = filename.lower()
    for category, keywords, subcategory, confidence in _FILENAME_HINTS:
        if any(k in name for k in keywords):
            return category, subcategory, confidence
    return None
