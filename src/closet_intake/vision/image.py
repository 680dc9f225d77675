"""Image I/O and transforms: decoding uploads, cropping, resizing, base64/data URLs."""

from __future__ import annotations

import base64
import binascii
import io
import re
from collections.abc import Callable
from pathlib import Path

import httpx
from PIL import Image, UnidentifiedImageError

from .types import PixelRegion, UploadedImage

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+)?(?P<b64>;base64)?,(?P<payload>.*)$", re.DOTALL)
SUPPORTED_MEDIA_TYPES = frozenset({"image/jpeg", "image/png", "image/webp", "image/gif"})


class ImageDecodeError(ValueError):
    """Raised when bytes or a URL cannot be turned into a raster image."""


def decode_data_url(url: str) -> tuple[bytes, str]:
    """Split a ``data:`` URL into raw bytes and its MIME type."""
    m = _DATA_URL_RE.match(url.strip())
    if m is None:
        raise ImageDecodeError("Not a data URL.")
    mime = m.group("mime") or "application/octet-stream"
    payload = m.group("payload")
    if not m.group("b64"):
        raise ImageDecodeError("Only base64 data URLs are supported.")
    try:
        return base64.b64decode(payload, validate=True), mime
    except binascii.Error as e:
        raise ImageDecodeError("Invalid base64 payload in data URL.") from e


def detect_media_type(url: str) -> str:
    """Return the declared media type of a data URL, defaulting to PNG."""
    m = _DATA_URL_RE.match(url.strip()) if url.startswith("data:") else None
    if m is not None and m.group("mime") in SUPPORTED_MEDIA_TYPES:
        return str(m.group("mime"))
    return "image/png"


def sniff_mime_type(data: bytes) -> str:
    """Detect the MIME type from the encoded bytes using Pillow."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
    except (UnidentifiedImageError, OSError) as e:
        raise ImageDecodeError("Unrecognized image data.") from e
    return Image.MIME.get(fmt or "", "application/octet-stream")


def load_upload(
    source: bytes | str | Path,
    *,
    filename: str | None = None,
    client_factory: Callable[..., httpx.Client] = httpx.Client,
) -> UploadedImage:
    """Ingest raw bytes, a file path, a data URL, an http(s) URL or bare base64."""
    if isinstance(source, Path):
        data = source.read_bytes()
        return UploadedImage(data=data, mime_type=sniff_mime_type(data), filename=filename or source.name)
    if isinstance(source, bytes):
        return UploadedImage(data=source, mime_type=sniff_mime_type(source), filename=filename)
    if source.startswith("data:"):
        data, mime = decode_data_url(source)
        if mime not in SUPPORTED_MEDIA_TYPES:
            mime = sniff_mime_type(data)
        return UploadedImage(data=data, mime_type=mime, filename=filename)
    if source.startswith(("http://", "https://")):
        data = fetch_bytes(source, client_factory=client_factory)
        return UploadedImage(
            data=data,
            mime_type=sniff_mime_type(data),
            filename=filename or source.rsplit("/", 1)[-1].split("?", 1)[0],
        )
    try:
        data = base64.b64decode(source, validate=True)
    except binascii.Error as e:
        raise ImageDecodeError("Source is neither a URL nor base64 image data.") from e
    return UploadedImage(data=data, mime_type=sniff_mime_type(data), filename=filename)


def fetch_bytes(url: str, *, client_factory: Callable[..., httpx.Client] = httpx.Client) -> bytes:
    """Download an image over HTTP(S)."""
    with client_factory(timeout=60.0, follow_redirects=True) as client:
        resp = client.get(url)
        resp.raise_for_status()
        return resp.content


def open_image(upload: UploadedImage) -> Image.Image:
    """Decode an upload into a Pillow image (RGB, or RGBA when it has alpha)."""
    try:
        img = Image.open(io.BytesIO(upload.data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageDecodeError("Could not decode uploaded image.") from e
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        return img.convert("RGBA")
    return img.convert("RGB")


def img_to_jpeg_bytes(img: Image.Image, quality: int = 90) -> bytes:
    """Encode an image as JPEG bytes."""
    buf = io.BytesIO()
    img.convert("RGB").save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def img_to_png_bytes(img: Image.Image) -> bytes:
    """Encode an image as PNG bytes (alpha preserved)."""
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def img_to_b64_jpeg(img: Image.Image, quality: int = 90) -> str:
    """Encode an image as base64 JPEG."""
    return base64.b64encode(img_to_jpeg_bytes(img, quality=quality)).decode("ascii")


def to_data_url(data: bytes, mime_type: str) -> str:
    """Wrap encoded bytes in a base64 ``data:`` URL."""
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def img_to_png_data_url(img: Image.Image) -> str:
    return to_data_url(img_to_png_bytes(img), "image/png")


def resize_to_bound(img: Image.Image, max_side: int = 1024) -> Image.Image:
    """Downscale so that max(w, h) <= max_side, keeping aspect ratio.

    Images already within the bound are returned unchanged.
    """
    w, h = img.size
    if max_side <= 0 or max(w, h) <= max_side:
        return img
    if w >= h:
        new_w = max_side
        new_h = max(1, round(h * (max_side / w)))
    else:
        new_h = max_side
        new_w = max(1, round(w * (max_side / h)))
    return img.resize((new_w, new_h), Image.Resampling.LANCZOS)


def crop_to_region(img: Image.Image, region: PixelRegion) -> Image.Image:
    """Crop an image to a pixel region."""
    if region.width <= 0 or region.height <= 0:
        raise ValueError(f"Empty crop region: {region}")
    return img.crop(region.as_box())


def prepare_for_classification(upload: UploadedImage, *, max_side: int = 1024, quality: int = 85) -> str:
    """Downscale and re-encode an upload as base64 JPEG for a vision request."""
    img = resize_to_bound(open_image(upload), max_side=max_side)
    return img_to_b64_jpeg(img, quality=quality)
