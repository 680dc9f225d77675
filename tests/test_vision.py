from __future__ import annotations

import base64
import io
from pathlib import Path

import pytest
from _fakes import png_bytes
from PIL import Image

from closet_intake.vision.geometry import iou, nms, pad_and_clamp
from closet_intake.vision.image import (
    ImageDecodeError,
    crop_to_region,
    decode_data_url,
    detect_media_type,
    load_upload,
    open_image,
    prepare_for_classification,
    resize_to_bound,
    to_data_url,
)
from closet_intake.vision.labels import (
    filename_hint,
    normalize_garment_category,
    parse_scene_type,
    to_closet_category,
)
from closet_intake.vision.types import BoundingBox, DetectedItem, PixelRegion, SceneType, UploadedImage
from closet_intake.vision.vis import draw_boxes


def test_bounding_box_clamp_and_pad() -> None:
    b = BoundingBox(x=0.9, y=-0.2, width=0.5, height=0.5).clamp()
    assert b.x == pytest.approx(0.9)
    assert b.y == 0.0
    assert b.x + b.width <= 1.0
    assert b.y + b.height <= 1.0

    p = BoundingBox(x=0.2, y=0.2, width=0.4, height=0.2).pad(0.1)
    assert p.x == pytest.approx(0.16)
    assert p.width == pytest.approx(0.48)
    assert p.height == pytest.approx(0.24)


@pytest.mark.parametrize(
    "box",
    [
        BoundingBox(x=0.0, y=0.0, width=1.0, height=1.0),
        BoundingBox(x=0.95, y=0.95, width=0.2, height=0.2),
        BoundingBox(x=-0.3, y=-0.3, width=0.5, height=0.5),
        BoundingBox(x=1.5, y=1.5, width=0.2, height=0.2),
        BoundingBox(x=-2.0, y=0.4, width=0.1, height=0.1),
        BoundingBox(x=0.33, y=0.71, width=0.01, height=0.29),
    ],
)
@pytest.mark.parametrize("dims", [(1, 1), (640, 480), (333, 1001)])
@pytest.mark.parametrize("padding", [0.0, 0.05, 0.1, 0.5])
def test_pad_and_clamp_stays_inside_image(box: BoundingBox, dims: tuple[int, int], padding: float) -> None:
    w, h = dims
    r = pad_and_clamp(box, w, h, padding)
    assert 0 <= r.x
    assert 0 <= r.y
    assert r.width >= 0 and r.height >= 0
    assert r.x + r.width <= w
    assert r.y + r.height <= h


def test_pad_and_clamp_applies_padding_before_clamping() -> None:
    r = pad_and_clamp(BoundingBox(x=0.25, y=0.25, width=0.5, height=0.5), 80, 80, 0.25)
    assert (r.x, r.y, r.width, r.height) == (10, 10, 60, 60)

    edge = pad_and_clamp(BoundingBox(x=0.0, y=0.0, width=0.5, height=0.5), 80, 80, 0.25)
    assert (edge.x, edge.y) == (0, 0)
    assert (edge.width, edge.height) == (50, 50)


def test_iou_and_nms_keep_order_of_survivors() -> None:
    a = BoundingBox(x=0.0, y=0.0, width=0.5, height=0.5)
    b = BoundingBox(x=0.0, y=0.0, width=0.5, height=0.45)
    c = BoundingBox(x=0.6, y=0.6, width=0.3, height=0.3)
    assert iou(a, a) == pytest.approx(1.0)
    assert iou(a, c) == 0.0

    items = [("low", a, 0.5), ("other", c, 0.4), ("high", b, 0.9)]
    kept = nms(items, box=lambda t: t[1], score=lambda t: t[2], iou_thr=0.8)
    assert [k[0] for k in kept] == ["other", "high"]


def test_resize_to_bound_and_crop() -> None:
    img = Image.new("RGB", (3000, 1500))
    small = resize_to_bound(img, 1024)
    assert small.size == (1024, 512)
    assert resize_to_bound(small, 1024) is small

    crop = crop_to_region(img, PixelRegion(x=10, y=20, width=30, height=40))
    assert crop.size == (30, 40)
    with pytest.raises(ValueError):
        crop_to_region(img, PixelRegion(x=10, y=20, width=0, height=40))


def test_load_upload_accepts_bytes_paths_and_data_urls(tmp_path: Path) -> None:
    raw = png_bytes(8, 4)
    assert load_upload(raw).mime_type == "image/png"

    p = tmp_path / "red_shirt.png"
    p.write_bytes(raw)
    from_path = load_upload(p)
    assert from_path.filename == "red_shirt.png"
    assert from_path.identity == load_upload(raw).identity

    from_url = load_upload(to_data_url(raw, "image/png"))
    assert from_url.data == raw
    assert load_upload(base64.b64encode(raw).decode("ascii")).data == raw

    with pytest.raises(ImageDecodeError):
        load_upload("not base64 at all!!")
    with pytest.raises(ImageDecodeError):
        load_upload(b"definitely not an image")


def test_load_upload_fetches_http_urls_with_injected_client() -> None:
    import httpx

    raw = png_bytes(5, 5)
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=raw))
    up = load_upload(
        "https://cdn.example/items/jacket.png?sig=1",
        client_factory=lambda **kw: httpx.Client(transport=transport, **kw),
    )
    assert up.data == raw
    assert up.filename == "jacket.png"


def test_data_url_helpers() -> None:
    data, mime = decode_data_url("data:image/webp;base64," + base64.b64encode(b"abc").decode())
    assert (data, mime) == (b"abc", "image/webp")
    assert detect_media_type("data:image/jpeg;base64,AAAA") == "image/jpeg"
    assert detect_media_type("data:application/pdf;base64,AAAA") == "image/png"
    assert detect_media_type("https://x/y.jpg") == "image/png"
    with pytest.raises(ImageDecodeError):
        decode_data_url("data:image/png,plain-text")


def test_open_image_keeps_alpha_and_prepare_downscales() -> None:
    buf = io.BytesIO()
    Image.new("RGBA", (2048, 1024), color=(0, 0, 0, 0)).save(buf, format="PNG")
    up = UploadedImage(data=buf.getvalue())
    assert open_image(up).mode == "RGBA"

    b64 = prepare_for_classification(up, max_side=1024, quality=85)
    with Image.open(io.BytesIO(base64.b64decode(b64))) as img:
        assert img.format == "JPEG"
        assert img.size == (1024, 512)


def test_labels_normalization() -> None:
    assert to_closet_category("Bottoms") == "pants"
    assert to_closet_category("shirts") == "tops"
    assert to_closet_category("capes") == "other"
    assert to_closet_category(None) == "other"

    assert normalize_garment_category("One-Pieces") == "one-pieces"
    assert normalize_garment_category("dress") == "one-pieces"
    assert normalize_garment_category("shoes") is None

    assert parse_scene_type("person-wearing") is SceneType.PERSON_WEARING
    assert parse_scene_type("Multi Item") is SceneType.MULTI_ITEM
    assert parse_scene_type("collage") is SceneType.SINGLE_ITEM
    assert parse_scene_type(None) is SceneType.SINGLE_ITEM


def test_filename_hint_first_match_wins() -> None:
    assert filename_hint("IMG_blue_jeans.jpg") == ("bottoms", "pants", 0.7)
    assert filename_hint("summer-dress.png") == ("dresses", "dress", 0.75)
    assert filename_hint("leather_boots.jpg") == ("shoes", "footwear", 0.7)
    assert filename_hint("IMG_0001.jpg") is None
    assert filename_hint(None) is None


def test_draw_boxes_skips_items_without_box(tmp_path: Path) -> None:
    img = Image.new("RGB", (100, 80), color=(255, 255, 255))
    items = [
        DetectedItem(
            image_url="u1",
            name="Shirt",
            category="tops",
            confidence=0.9,
            original_bounding_box=BoundingBox(x=0.1, y=0.1, width=0.3, height=0.3),
        ),
        DetectedItem(image_url="u2", name="Pants", category="pants", confidence=0.8),
    ]
    out = tmp_path / "boxes.jpg"
    assert draw_boxes(img, items, out) == 1
    assert out.is_file()
