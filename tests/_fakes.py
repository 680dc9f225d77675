"""In-memory stand-ins for the vision and background removal providers."""

from __future__ import annotations

import io
import threading
from collections.abc import Callable
from typing import Any

from PIL import Image
from pydantic import BaseModel

from closet_intake.detectors.background_removal import GENERAL_PARAMS, RemovalParams
from closet_intake.result import Err, ErrorKind, Ok, Result
from closet_intake.vision.image import to_data_url
from closet_intake.vision.types import CategorizationAttributes, CategorizationResult, UploadedImage

# A dict (validated into the schema), an Err, or a callable of the image returning either.
Reply = Any


def png_bytes(w: int = 64, h: int = 64, color: tuple[int, int, int] = (200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (w, h), color=color).save(buf, format="PNG")
    return buf.getvalue()


def png_upload(
    w: int = 64,
    h: int = 64,
    color: tuple[int, int, int] = (200, 30, 30),
    filename: str | None = None,
) -> UploadedImage:
    return UploadedImage(data=png_bytes(w, h, color), mime_type="image/png", filename=filename)


def data_url_size(url: str) -> tuple[int, int]:
    from closet_intake.vision.image import decode_data_url

    data, _ = decode_data_url(url)
    with Image.open(io.BytesIO(data)) as img:
        return img.size


class FakeVision:
    """Answer each prompt kind from a canned reply (dict, Err or callable)."""

    def __init__(self, replies: dict[str, Reply] | None = None) -> None:
        self.replies: dict[str, Reply] = dict(replies or {})
        self.calls: list[str] = []
        self.prompts: list[str] = []
        self._lock = threading.Lock()

    def ask(
        self,
        image: UploadedImage,
        prompt_kind: str,
        prompt: str,
        schema: type[BaseModel],
        *,
        max_tokens: int = 500,
    ) -> Result[Any]:
        with self._lock:
            self.calls.append(prompt_kind)
            self.prompts.append(prompt)
        reply = self.replies.get(prompt_kind)
        if reply is None:
            return Err(ErrorKind.TRANSPORT, f"{prompt_kind}: no reply configured")
        if callable(reply):
            reply = reply(image)
        if isinstance(reply, Err):
            return reply
        return Ok(schema.model_validate(reply))


class FakeRemover:
    """Echo the input back as the "cleaned" image, or fail on demand."""

    def __init__(self, fail: Callable[[str], bool] | None = None) -> None:
        self.fail = fail
        self.calls: list[tuple[str, RemovalParams]] = []
        self._lock = threading.Lock()

    def remove_background(self, image: UploadedImage | str, params: RemovalParams = GENERAL_PARAMS) -> Result[str]:
        url = image if isinstance(image, str) else to_data_url(image.data, image.mime_type)
        with self._lock:
            self.calls.append((url, params))
        if self.fail is not None and self.fail(url):
            return Err(ErrorKind.BACKGROUND_REMOVAL, "Background removal API error: 500 - boom")
        return Ok(url)


class FakeCategorizer:
    def __init__(self, names: list[str] | None = None) -> None:
        self.names = list(names or [])
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def categorize(self, image: UploadedImage | str) -> CategorizationResult:
        with self._lock:
            n = len(self.calls)
            self.calls.append(image if isinstance(image, str) else image.identity)
        name = self.names[n] if n < len(self.names) else f"Item {n + 1}"
        return CategorizationResult(
            item_name=name,
            category="tops",
            attributes=CategorizationAttributes(color="red"),
            confidence=0.9,
            method="ai",
        )
