"""Vision classification adapter: structured-JSON prompts to a VLM via LiteLLM."""

from __future__ import annotations

import json
import logging
import re
from time import perf_counter
from typing import Any, Literal, TypeVar

import litellm
from pydantic import BaseModel, ValidationError

from closet_intake.result import Err, ErrorKind, Ok, Result
from closet_intake.vision.image import ImageDecodeError, prepare_for_classification
from closet_intake.vision.types import UploadedImage

LOG = logging.getLogger(__name__)

PromptKind = Literal[
    "scene-classify",
    "garment-detect",
    "garment-detect-multi",
    "garment-inventory",
    "crop-validate",
    "categorize",
]
M = TypeVar("M", bound=BaseModel)

_FENCED = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


def _is_json(candidate: str) -> bool:
    try:
        json.loads(candidate)
    except json.JSONDecodeError:
        return False
    return True


def _extract_json(text: str) -> str:
    """Pull the JSON object out of a reply that may wrap it in fences or prose.

    The text is returned unchanged when no object can be found, so that schema
    validation reports the failure.
    """
    if not text:
        return text
    for m in _FENCED.finditer(text):
        if _is_json(m.group(1)):
            return m.group(1)
    if _is_json(text):
        return text
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end and _is_json(text[start : end + 1]):
        return text[start : end + 1]
    return text


def _as_text(content: Any) -> str:
    """Flatten a message content (string or list of text blocks) to one string."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, dict):
        content = [content]
    if isinstance(content, list):
        texts = [b if isinstance(b, str) else b.get("text") for b in content if isinstance(b, (str, dict))]
        return "\n".join(t for t in texts if isinstance(t, str)).strip()
    return str(content)


def _reply(raw: Any) -> tuple[str, str, Any]:
    """Return (text, stop reason, usage) from a LiteLLM completion response.

    Handles Chat Completions payloads as well as Messages-style payloads that
    carry their content blocks at the top level.
    """
    resp = raw.model_dump() if isinstance(raw, BaseModel) else raw
    if not isinstance(resp, dict):
        raise TypeError(f"Unexpected completion response: {type(raw)!r}")
    usage = resp.get("usage")
    choices = resp.get("choices")
    if not choices or not isinstance(choices, list):
        return _as_text(resp.get("content")), str(resp.get("stop_reason") or ""), usage
    first = choices[0] if isinstance(choices[0], dict) else {}
    stop = str(first.get("finish_reason") or "")
    message = first.get("message")
    if isinstance(message, dict) and "content" in message:
        return _as_text(message["content"]), stop, usage
    return _as_text(first.get("text")), stop, usage


class VisionClassifier:
    """Send one image plus a JSON-only prompt to a VLM and validate the answer.

    Images are downscaled to `max_side` and re-encoded as JPEG at
    `jpeg_quality` before being sent, to stay under provider request-size
    limits. Every failure comes back as an :class:`Err`; nothing is raised.
    """

    def __init__(
        self,
        model: str,
        *,
        temperature: float = 0.0,
        timeout_s: float = 60.0,
        max_side: int = 1024,
        jpeg_quality: int = 85,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.timeout_s = timeout_s
        self.max_side = max_side
        self.jpeg_quality = jpeg_quality

    def ask(
        self,
        image: UploadedImage,
        prompt_kind: PromptKind,
        prompt: str,
        schema: type[M],
        *,
        max_tokens: int = 500,
    ) -> Result[M]:
        """Run a `prompt_kind` request and parse the reply into `schema`."""
        try:
            b64 = prepare_for_classification(image, max_side=self.max_side, quality=self.jpeg_quality)
        except ImageDecodeError as e:
            return Err(ErrorKind.DECODE, str(e))

        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{b64}"}},
                    {"type": "text", "text": prompt},
                ],
            }
        ]
        t0 = perf_counter()
        LOG.debug("VLM request: kind=%s model=%s", prompt_kind, self.model)
        try:
            raw = litellm.completion(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=max_tokens,
                timeout=self.timeout_s,
            )
            text, finish_reason, usage = _reply(raw)
        except Exception as e:
            LOG.debug("VLM call failed: kind=%s error=%s", prompt_kind, e)
            return Err(ErrorKind.TRANSPORT, f"{prompt_kind}: {type(e).__name__}: {e}")

        LOG.debug(
            "VLM response: kind=%s finish_reason=%s usage=%s took=%.2fs",
            prompt_kind,
            finish_reason,
            usage,
            perf_counter() - t0,
        )
        if not text:
            return Err(
                ErrorKind.CLASSIFICATION,
                f"{prompt_kind}: VLM returned empty content (finish_reason={finish_reason!r}).",
            )
        try:
            return Ok(schema.model_validate_json(_extract_json(text)))
        except ValidationError as e:
            return Err(
                ErrorKind.CLASSIFICATION,
                f"{prompt_kind}: VLM output does not match expected JSON schema: "
                f"{e.error_count()} error(s).",
            )
