"""Geometry helpers (padding, clamping, IoU, NMS) for normalized garment boxes."""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from typing import TypeVar

from .types import BoundingBox, PixelRegion

T = TypeVar("T")


def pad_and_clamp(box: BoundingBox, w: int, h: int, padding: float) -> PixelRegion:
    """Convert a normalized box to a padded pixel region inside a `w` x `h` image.

    Padding is a fraction of the box width/height added on each side, applied
    before clamping. The returned region always satisfies ``0 <= x``,
    ``x + width <= w`` (and likewise vertically); it may be empty when the box
    lies entirely outside the image.
    """
    padded = box.pad(padding)
    x1 = padded.x * w
    y1 = padded.y * h
    x2 = (padded.x + padded.width) * w
    y2 = (padded.y + padded.height) * h

    left = min(max(math.floor(x1), 0), w)
    top = min(max(math.floor(y1), 0), h)
    right = min(max(math.ceil(x2), left), w)
    bottom = min(max(math.ceil(y2), top), h)
    return PixelRegion(x=left, y=top, width=right - left, height=bottom - top)


def iou(a: BoundingBox, b: BoundingBox) -> float:
    """Compute intersection-over-union (IoU) between two normalized boxes."""
    ix1 = max(a.x, b.x)
    iy1 = max(a.y, b.y)
    ix2 = min(a.x + a.width, b.x + b.width)
    iy2 = min(a.y + a.height, b.y + b.height)
    iw = max(0.0, ix2 - ix1)
    ih = max(0.0, iy2 - iy1)
    inter = iw * ih
    if inter <= 0.0:
        return 0.0
    union = a.area() + b.area() - inter
    return float(inter / union) if union > 0 else 0.0


def nms(
    items: Sequence[T],
    *,
    box: Callable[[T], BoundingBox],
    score: Callable[[T], float],
    iou_thr: float = 0.8,
) -> list[T]:
    """Non-maximum suppression by IoU, keeping highest-score items.

    The survivors keep their original relative order.
    """
    order = sorted(range(len(items)), key=lambda i: score(items[i]), reverse=True)
    kept: list[int] = []
    for i in order:
        if all(iou(box(items[i]), box(items[k])) < iou_thr for k in kept):
            kept.append(i)
    return [items[i] for i in sorted(kept)]
