from __future__ import annotations

from typing import Any

import pytest
from _fakes import FakeCategorizer, FakeRemover, FakeVision, data_url_size, png_upload
from PIL import Image

from closet_intake.detectors.background_removal import GENERAL_PARAMS
from closet_intake.result import Err, ErrorKind, ExtractionError
from closet_intake.services.multi_garment import MultiGarmentSeparator
from closet_intake.vision.image import img_to_png_data_url
from closet_intake.vision.types import BoundingBox, UploadedImage

SHIRT = {"name": "White Shirt", "type": "shirt", "boundingBox": {"x": 0.1, "y": 0.1, "width": 0.3, "height": 0.4}}
PANTS = {"name": "Black Pants", "type": "pants", "boundingBox": {"x": 0.4, "y": 0.5, "width": 0.5, "height": 0.4}}


def _separator(reply: Any, *, remover: FakeRemover | None = None, **kw: Any) -> MultiGarmentSeparator:
    return MultiGarmentSeparator(
        FakeVision({"garment-detect-multi": reply}),
        remover or FakeRemover(),
        FakeCategorizer(),
        **kw,
    )


def test_two_items_are_cropped_with_padding_cleaned_and_categorized() -> None:
    remover = FakeRemover()
    sep = _separator({"hasMultipleItems": True, "items": [SHIRT, PANTS]}, remover=remover)
    res = sep.separate(png_upload(100, 100))

    assert res.success and res.has_multiple_items
    assert res.item_count == 2
    assert [it.name for it in res.items] == ["White Shirt", "Black Pants"]
    assert all(params == GENERAL_PARAMS for _, params in remover.calls)

    shirt = res.items[0]
    w, h = data_url_size(shirt.cropped_image_url)
    assert abs(w - 36) <= 2
    assert abs(h - 48) <= 2
    assert shirt.cleaned_image_url == shirt.cropped_image_url
    assert shirt.original_bounding_box == BoundingBox(x=0.1, y=0.1, width=0.3, height=0.4)
    assert shirt.categorization.method == "ai"


def test_crop_padding_is_clamped_at_image_edges() -> None:
    corner = {"name": "Hat", "type": "hat", "boundingBox": {"x": 0.0, "y": 0.0, "width": 0.5, "height": 0.5}}
    other = {"name": "Scarf", "type": "scarf", "boundingBox": {"x": 0.5, "y": 0.5, "width": 0.5, "height": 0.5}}
    res = _separator({"hasMultipleItems": True, "items": [corner, other]}, padding=0.25).separate(
        png_upload(80, 80)
    )
    assert [data_url_size(it.cropped_image_url) for it in res.items] == [(50, 50), (50, 50)]


def test_failed_item_is_dropped_without_affecting_others() -> None:
    remover = FakeRemover(fail=lambda url: data_url_size(url)[0] > 40)
    res = _separator({"hasMultipleItems": True, "items": [SHIRT, PANTS]}, remover=remover).separate(
        png_upload(100, 100)
    )
    assert res.success
    assert res.has_multiple_items
    assert [it.name for it in res.items] == ["White Shirt"]


def test_near_duplicate_detections_are_collapsed() -> None:
    dup = dict(SHIRT, name="Shirt again", confidence=0.5)
    best = dict(SHIRT, confidence=0.9)
    res = _separator({"hasMultipleItems": True, "items": [dup, PANTS, best]}).separate(png_upload(100, 100))
    assert [it.name for it in res.items] == ["Black Pants", "White Shirt"]


def test_item_without_box_is_dropped_alone() -> None:
    remover = FakeRemover()
    res = _separator(
        {"hasMultipleItems": True, "items": [SHIRT, PANTS, {"name": "Scarf"}]}, remover=remover
    ).separate(png_upload(100, 100))
    assert res.success
    assert [it.name for it in res.items] == ["White Shirt", "Black Pants"]
    assert len(remover.calls) == 2


def test_missing_name_falls_back_to_categorization() -> None:
    unnamed = dict(PANTS, name="")
    res = _separator({"hasMultipleItems": True, "items": [SHIRT, unnamed]}).separate(png_upload(100, 100))
    names = [it.name for it in res.items]
    assert names[0] == "White Shirt"
    assert names[1].startswith("Item ")


@pytest.mark.parametrize(
    "reply",
    [
        {"hasMultipleItems": False, "items": [SHIRT, PANTS]},
        {"hasMultipleItems": True, "items": [SHIRT]},
        {"hasMultipleItems": True, "items": []},
        {
            "hasMultipleItems": True,
            "items": [SHIRT, {"name": "Ghost", "boundingBox": {"x": 0.5, "y": 0.5, "width": 0.0, "height": 0.2}}],
        },
    ],
)
def test_single_or_no_item_is_not_separated(reply: dict[str, Any]) -> None:
    remover = FakeRemover()
    res = _separator(reply, remover=remover).separate(png_upload(100, 100))
    assert res.success
    assert res.has_multiple_items is False
    assert res.items == []
    assert remover.calls == []


def test_detection_error_is_reported() -> None:
    res = _separator(Err(ErrorKind.TRANSPORT, "timeout")).separate(png_upload())
    assert res.success is False
    assert res.has_multiple_items is False
    assert res.error is not None and res.error.startswith("transport")


def test_undecodable_image_raises_extraction_error() -> None:
    with pytest.raises(ExtractionError) as exc:
        _separator({"hasMultipleItems": True, "items": [SHIRT, PANTS]}).separate(UploadedImage(data=b"junk"))
    assert exc.value.kind is ErrorKind.DECODE


def test_separate_accepts_image_urls() -> None:
    url = img_to_png_data_url(Image.new("RGB", (100, 100), color=(10, 200, 10)))
    res = _separator({"hasMultipleItems": True, "items": [SHIRT, PANTS]}).separate(url)
    assert res.item_count == 2


def test_clean_region_rejects_empty_crop() -> None:
    sep = _separator({})
    out = sep.clean_region(Image.new("RGB", (10, 10)), BoundingBox(x=1.0, y=1.0, width=0.0, height=0.0), padding=0.0)
    assert isinstance(out, Err)
    assert out.kind is ErrorKind.EXTRACTION


# ----------------------------------------------------------------------
# Garment inventory
# ----------------------------------------------------------------------


def _inventory(reply: Any) -> MultiGarmentSeparator:
    return MultiGarmentSeparator(FakeVision({"garment-inventory": reply}), FakeRemover(), FakeCategorizer())


def test_detect_garments_filters_categories_and_normalizes_order() -> None:
    inv = _inventory(
        {
            "garments": [
                {"category": "Bottoms", "name": "grey trousers", "confidence": 0.9},
                {"category": "shoes", "name": "loafers", "confidence": 0.9},
                {"category": "tops", "name": "white shirt", "confidence": 0.8, "isFormalWear": True},
                {"category": "dress", "name": "slip dress", "confidence": 0.7},
            ],
            "suggestedOrder": ["bottoms", "tops", "bottoms", "hats"],
            "isCompleteOutfit": True,
            "isSuit": None,
        }
    ).detect_garments(png_upload())

    assert inv.success
    assert [g.category for g in inv.garments] == ["bottoms", "tops", "one-pieces"]
    assert [g.is_formal_wear for g in inv.garments] == [False, True, False]
    assert inv.suggested_order == ["bottoms", "tops"]
    assert inv.is_complete_outfit is True
    assert inv.is_suit is False


def test_detect_garments_defaults_order_to_present_categories() -> None:
    inv = _inventory(
        {
            "garments": [
                {"category": "outerwear", "name": "trench coat"},
                {"category": "tops", "name": "tee"},
            ]
        }
    ).detect_garments(png_upload())
    assert inv.suggested_order == ["tops", "outerwear"]


def test_detect_garments_reports_provider_failure() -> None:
    inv = _inventory(Err(ErrorKind.CLASSIFICATION, "bad json")).detect_garments(png_upload())
    assert inv.success is False
    assert inv.garments == []
    assert inv.error is not None and "bad json" in inv.error
