"""Background removal adapter for a hosted BiRefNet-style segmentation endpoint."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Final, Literal

import httpx
from pydantic import BaseModel, ConfigDict

from closet_intake.result import Err, ErrorKind, Ok, Result
from closet_intake.vision.image import to_data_url
from closet_intake.vision.types import UploadedImage

LOG = logging.getLogger(__name__)
DEFAULT_ENDPOINT: Final[str] = "https://fal.run/fal-ai/birefnet/v2"
DEFAULT_API_KEY_ENV: Final[str] = "FAL_KEY"

BiRefNetModel = Literal[
    "General Use (Light)",
    "General Use (Light 2K)",
    "General Use (Heavy)",
    "Matting",
    "Portrait",
    "General Use (Dynamic)",
]
OperatingResolution = Literal["1024x1024", "2048x2048", "2304x2304"]
OutputFormat = Literal["png", "webp", "jpeg"]


class RemovalParams(BaseModel):
    """Provider options for one background removal request."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    model: BiRefNetModel = "General Use (Light)"
    operating_resolution: OperatingResolution = "2048x2048"
    refine_foreground: bool = True
    output_format: OutputFormat = "png"


GENERAL_PARAMS: Final[RemovalParams] = RemovalParams()
PORTRAIT_PARAMS: Final[RemovalParams] = RemovalParams(model="Portrait")


@dataclass(frozen=True, slots=True)
class BackgroundRemovalResult:
    """Caller-facing view of a removal outcome."""

    success: bool
    image_url: str | None = None
    error: str | None = None

    @classmethod
    def from_result(cls, res: Result[str]) -> BackgroundRemovalResult:
        if isinstance(res, Ok):
            return cls(success=True, image_url=res.value)
        return cls(success=False, error=str(res))


# ----------------------------------------------------------------------
# Response shapes
# ----------------------------------------------------------------------


def _image_dot_url(payload: Any) -> str | None:
    image = payload.get("image") if isinstance(payload, dict) else None
    return image.get("url") if isinstance(image, dict) else None


def _image_as_string(payload: Any) -> str | None:
    image = payload.get("image") if isinstance(payload, dict) else None
    return image if isinstance(image, str) else None


def _data_image_dot_url(payload: Any) -> str | None:
    data = payload.get("data") if isinstance(payload, dict) else None
    return _image_dot_url(data)


def _data_output_dot_url(payload: Any) -> str | None:
    data = payload.get("data") if isinstance(payload, dict) else None
    output = data.get("output") if isinstance(data, dict) else None
    return output.get("url") if isinstance(output, dict) else None


def _images_first_url(payload: Any) -> str | None:
    images = payload.get("images") if isinstance(payload, dict) else None
    if isinstance(images, list) and images and isinstance(images[0], dict):
        return images[0].get("url")
    return None


def _bare_string(payload: Any) -> str | None:
    return payload if isinstance(payload, str) else None


# Ordered: the first shape that yields a non-empty string wins.
RESPONSE_SHAPES: Final[tuple[tuple[str, Callable[[Any], str | None]], ...]] = (
    ("image.url", _image_dot_url),
    ("image", _image_as_string),
    ("data.image.url", _data_image_dot_url),
    ("data.output.url", _data_output_dot_url),
    ("images[0].url", _images_first_url),
    ("string", _bare_string),
)


def parse_image_url(payload: Any) -> Result[str]:
    """Find the output image URL in a provider payload.

    Known shapes are tried in order (see `RESPONSE_SHAPES`); a payload matching
    none of them yields an ``UNRECOGNIZED_SHAPE`` error.
    """
    for name, probe in RESPONSE_SHAPES:
        url = probe(payload)
        if isinstance(url, str) and url.strip():
            LOG.debug("Background removal response matched shape %s", name)
            return Ok(url)
    keys = sorted(payload) if isinstance(payload, dict) else type(payload).__name__
    return Err(ErrorKind.UNRECOGNIZED_SHAPE, f"No image URL in background removal response: {keys}")


@dataclass(slots=True)
class BackgroundRemover:
    """Call the removal endpoint synchronously; no retries are attempted.

    Attributes:
        endpoint: Fully qualified URL of the removal model.
        api_key_env: Environment variable holding the provider key. When it
            is unset the request is sent without an Authorization header
            (useful behind an authenticating proxy).
        timeout_s: HTTP timeout for one request.
        client_factory: Factory for the underlying ``httpx.Client``.
    """

    endpoint: str = DEFAULT_ENDPOINT
    api_key_env: str = DEFAULT_API_KEY_ENV
    timeout_s: float = 120.0
    client_factory: Callable[..., httpx.Client] = httpx.Client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        api_key = os.getenv(self.api_key_env)
        if api_key:
            headers["Authorization"] = f"Key {api_key}"
        return headers

    def remove_background(
        self,
        image: UploadedImage | str,
        params: RemovalParams = GENERAL_PARAMS,
    ) -> Result[str]:
        """Return the URL of the cleaned image, or an error.

        Args:
            image: The upload, or an image URL / data URL the provider can read.
            params: Model options for the provider.
        """
        image_url = image if isinstance(image, str) else to_data_url(image.data, image.mime_type)
        body = {"image_url": image_url, **params.model_dump()}
        t0 = perf_counter()
        try:
            with self.client_factory(timeout=self.timeout_s) as client:
                resp = client.post(self.endpoint, json=body, headers=self._headers())
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPStatusError as e:
            return Err(
                ErrorKind.BACKGROUND_REMOVAL,
                f"Background removal API error: {e.response.status_code} - {e.response.text[:200]}",
            )
        except httpx.HTTPError as e:
            return Err(ErrorKind.TRANSPORT, f"Background removal request failed: {e}")
        except ValueError as e:
            return Err(ErrorKind.UNRECOGNIZED_SHAPE, f"Background removal response is not JSON: {e}")

        LOG.debug(
            "Background removal done: model=%s took=%.2fs",
            params.model,
            perf_counter() - t0,
        )
        return parse_image_url(payload)
