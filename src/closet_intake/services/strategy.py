"""Try-on strategy selection for a detected outfit."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from closet_intake.vision.types import DetectedGarment, GarmentInventory

SECONDS_PER_GARMENT = 10


class TryOnStrategy(str, Enum):
    """How garments are applied to an avatar.

    SEQUENTIAL_FORMAL applies one piece at a time with an explicit category,
    feeding each result into the next call. AUTO_BATCH applies the whole
    outfit in a single auto-detected call.
    """

    SEQUENTIAL_FORMAL = "sequential-formal"
    AUTO_BATCH = "auto-batch"


@dataclass(frozen=True, slots=True)
class TryOnPlan:
    strategy: TryOnStrategy
    application_order: list[DetectedGarment]
    garment_photo_type: str
    estimated_seconds: int
    reasoning: str


def select_strategy(is_suit: bool, is_formal_wear: bool, item_count: int) -> TryOnStrategy:
    if is_suit or (is_formal_wear and item_count == 2):
        return TryOnStrategy.SEQUENTIAL_FORMAL
    return TryOnStrategy.AUTO_BATCH


def _by_suggested_order(garments: list[DetectedGarment], order: list[str]) -> list[DetectedGarment]:
    rank = {c: i for i, c in enumerate(order)}
    return sorted(garments, key=lambda g: rank.get(g.category, len(rank)))


def plan_try_on(inventory: GarmentInventory, selected: list[DetectedGarment] | None = None) -> TryOnPlan:
    """Build a try-on plan for `selected` garments (all detected garments by default).

    Sequential plans follow the inventory's suggested order (tops before
    bottoms); the sort is stable, so garments of the same category keep their
    detection order.
    """
    garments = list(inventory.garments if selected is None else selected)
    is_formal = any(g.is_formal_wear for g in garments)
    strategy = select_strategy(inventory.is_suit, is_formal, len(garments))
    names = " + ".join(g.name for g in garments) or "no garments"

    if strategy is TryOnStrategy.SEQUENTIAL_FORMAL:
        ordered = _by_suggested_order(garments, inventory.suggested_order)
        kind = "Suit" if inventory.is_suit else "Formal outfit"
        return TryOnPlan(
            strategy=strategy,
            application_order=ordered,
            garment_photo_type="flat-lay",
            estimated_seconds=SECONDS_PER_GARMENT * max(1, len(ordered)),
            reasoning=f"{kind} detected ({names}) - applying pieces one at a time",
        )

    return TryOnPlan(
        strategy=strategy,
        application_order=garments,
        garment_photo_type="auto",
        estimated_seconds=SECONDS_PER_GARMENT * max(1, len(garments)),
        reasoning=f"Casual outfit ({names}) - single auto-detected try-on",
    )
