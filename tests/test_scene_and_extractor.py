from __future__ import annotations

import logging
from typing import Any

import pytest
from _fakes import FakeRemover, FakeVision, data_url_size, png_upload

from closet_intake.detectors.background_removal import GENERAL_PARAMS, PORTRAIT_PARAMS
from closet_intake.result import Err, ErrorKind
from closet_intake.services.garment_extractor import PersonGarmentExtractor
from closet_intake.services.scene_classifier import DEFAULT_SCENE, SceneClassifier
from closet_intake.vision.types import BoundingBox, SceneType, UploadedImage


def _scene(**reply: Any) -> SceneClassifier:
    return SceneClassifier(FakeVision({"scene-classify": reply}))


@pytest.mark.parametrize(
    ("reply", "expected"),
    [
        ({"type": "person-wearing", "hasPerson": True, "itemCount": 2, "confidence": 0.9}, SceneType.PERSON_WEARING),
        ({"type": "multi-item", "itemCount": 3, "confidence": 0.8}, SceneType.MULTI_ITEM),
        ({"type": "multi-item", "itemCount": 3, "confidence": 0.6}, SceneType.MULTI_ITEM),
        ({"type": "multi-item", "itemCount": 1, "confidence": 0.95}, SceneType.SINGLE_ITEM),
        ({"type": "multi-item", "itemCount": 4, "confidence": 0.59}, SceneType.SINGLE_ITEM),
        ({"type": "multi-item", "itemCount": 4}, SceneType.SINGLE_ITEM),
        ({"type": "single-item", "itemCount": 1, "confidence": 0.7}, SceneType.SINGLE_ITEM),
        ({"type": "collage", "itemCount": 5, "confidence": 0.9}, SceneType.SINGLE_ITEM),
    ],
)
def test_scene_classifier_rules(reply: dict[str, Any], expected: SceneType) -> None:
    assert _scene(**reply).classify(png_upload()).type is expected


def test_scene_classifier_fills_missing_fields() -> None:
    scene = _scene(type="person-wearing", hasPerson=None).classify(png_upload())
    assert scene.type is SceneType.PERSON_WEARING
    assert scene.has_person is False
    assert scene.item_count == 1
    assert scene.confidence == pytest.approx(0.5)


def test_scene_classifier_defaults_when_provider_fails() -> None:
    vision = FakeVision({"scene-classify": Err(ErrorKind.TRANSPORT, "timeout")})
    scene = SceneClassifier(vision).classify(png_upload())
    assert scene == DEFAULT_SCENE
    assert scene.type is SceneType.SINGLE_ITEM
    assert scene.confidence == pytest.approx(0.3)


def test_scene_classifier_uses_configured_threshold() -> None:
    vision = FakeVision({"scene-classify": {"type": "multi-item", "itemCount": 2, "confidence": 0.5}})
    assert SceneClassifier(vision, multi_item_min_confidence=0.4).classify(png_upload()).type is SceneType.MULTI_ITEM


# ----------------------------------------------------------------------
# Person garment extraction
# ----------------------------------------------------------------------


def _detect(**reply: Any) -> FakeVision:
    return FakeVision({"garment-detect": reply})


def test_person_photo_is_cropped_with_padding_then_portrait_removal() -> None:
    vision = _detect(
        hasHuman=True,
        garmentType="jacket",
        boundingBox={"x": 0.25, "y": 0.25, "width": 0.5, "height": 0.5},
        photoType="person-wearing",
        confidence=0.9,
    )
    remover = FakeRemover()
    res = PersonGarmentExtractor(vision, remover, padding=0.25).extract(png_upload(80, 80))

    assert res.success and res.was_extracted
    assert res.detection is not None and res.detection.garment_type == "jacket"
    (url, params), = remover.calls
    assert params == PORTRAIT_PARAMS
    assert data_url_size(url) == (60, 60)
    assert res.extracted_image_url == url


def test_large_crops_are_downscaled_before_removal() -> None:
    vision = _detect(hasHuman=True, boundingBox={"x": 0.0, "y": 0.0, "width": 1.0, "height": 0.5})
    remover = FakeRemover()
    PersonGarmentExtractor(vision, remover, padding=0.0, max_side=256).extract(png_upload(1024, 512))
    assert data_url_size(remover.calls[0][0]) == (256, 64)


def test_flat_lay_goes_to_general_removal_on_full_image() -> None:
    upload = png_upload(40, 40)
    remover = FakeRemover()
    res = PersonGarmentExtractor(_detect(hasHuman=False, photoType="flat-lay"), remover).extract(upload)

    assert res.success
    assert res.was_extracted is False
    (url, params), = remover.calls
    assert params == GENERAL_PARAMS
    assert data_url_size(url) == (40, 40)


def test_person_without_box_falls_back_to_full_image(caplog: pytest.LogCaptureFixture) -> None:
    remover = FakeRemover()
    with caplog.at_level(logging.WARNING):
        res = PersonGarmentExtractor(_detect(hasHuman=True, boundingBox=None), remover).extract(png_upload())
    assert res.success
    assert res.was_extracted is False
    assert remover.calls[0][1] == GENERAL_PARAMS
    assert "without a garment box" in caplog.text


def test_detection_failure_reads_as_no_person() -> None:
    vision = FakeVision({"garment-detect": Err(ErrorKind.CLASSIFICATION, "bad json")})
    extractor = PersonGarmentExtractor(vision, FakeRemover())
    detection = extractor.detect(png_upload())
    assert detection.has_human is False
    assert detection.photo_type == "flat-lay"


def test_removal_failure_is_reported_not_raised() -> None:
    vision = _detect(hasHuman=True, boundingBox={"x": 0.1, "y": 0.1, "width": 0.5, "height": 0.5})
    res = PersonGarmentExtractor(vision, FakeRemover(fail=lambda url: True)).extract(png_upload())
    assert res.success is False
    assert res.extracted_image_url is None
    assert res.error is not None and "background_removal" in res.error


def test_undecodable_image_with_box_is_reported_not_raised() -> None:
    vision = _detect(hasHuman=True, boundingBox={"x": 0.1, "y": 0.1, "width": 0.5, "height": 0.5})
    remover = FakeRemover()
    res = PersonGarmentExtractor(vision, remover).extract(UploadedImage(data=b"broken"))
    assert res.success is False
    assert res.error is not None and res.error.startswith("decode")
    assert remover.calls == []


def test_degenerate_box_is_an_extraction_error() -> None:
    vision = _detect(hasHuman=True, boundingBox={"x": 1.0, "y": 1.0, "width": 0.0, "height": 0.0})
    res = PersonGarmentExtractor(vision, FakeRemover(), padding=0.0).extract(png_upload())
    assert res.success is False
    assert res.error is not None and res.error.startswith("extraction")


def test_detected_box_is_clamped() -> None:
    vision = _detect(hasHuman=True, boundingBox={"x": 0.8, "y": 0.8, "width": 0.5, "height": 0.5})
    det = PersonGarmentExtractor(vision, FakeRemover()).detect(png_upload())
    assert det.bounding_box is not None
    b: BoundingBox = det.bounding_box
    assert b.x + b.width <= 1.0
    assert b.y + b.height <= 1.0
