"""Debug overlays for detected garments."""

from __future__ import annotations

from pathlib import Path

from PIL import Image, ImageDraw

from .types import DetectedItem

_PALETTE = (
    (66, 135, 245),
    (60, 179, 113),
    (220, 20, 60),
    (255, 165, 0),
    (148, 0, 211),
)


def _label(item: DetectedItem) -> str:
    return f"{item.name} [{item.category}] {item.confidence:.2f}"


def draw_boxes(img: Image.Image, items: list[DetectedItem], out_path: Path) -> int:
    """Outline the source boxes of separated items on a copy of `img` and save it.

    Items without an `original_bounding_box` are skipped. Returns the number of
    boxes drawn.
    """
    canvas = img.convert("RGB")
    draw = ImageDraw.Draw(canvas)
    w, h = canvas.size
    line = max(2, min(w, h) // 200)

    drawn = 0
    for i, item in enumerate(items):
        box = item.original_bounding_box
        if box is None:
            continue
        color = _PALETTE[i % len(_PALETTE)]
        left, top = int(box.x * w), int(box.y * h)
        right, bottom = int((box.x + box.width) * w), int((box.y + box.height) * h)
        draw.rectangle((left, top, right, bottom), outline=color, width=line)

        text = _label(item)
        tl, tt, tr, tb = draw.textbbox((0, 0), text)
        label_top = max(0, top - (tb - tt) - 2 * line)
        draw.rectangle((left, label_top, left + (tr - tl) + 2 * line, label_top + (tb - tt) + 2 * line), fill=color)
        draw.text((left + line, label_top + line), text, fill=(0, 0, 0))
        drawn += 1

    canvas.save(out_path)
    return drawn
