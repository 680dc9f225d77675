"""Backend protocols the services depend on (real adapters or test fakes)."""

from __future__ import annotations

from typing import Protocol, TypeVar

from pydantic import BaseModel

from closet_intake.detectors.background_removal import RemovalParams
from closet_intake.detectors.vlm_litellm import PromptKind
from closet_intake.result import Result
from closet_intake.vision.types import CategorizationResult, UploadedImage

M = TypeVar("M", bound=BaseModel)


class VisionBackend(Protocol):
    def ask(
        self,
        image: UploadedImage,
        prompt_kind: PromptKind,
        prompt: str,
        schema: type[M],
        *,
        max_tokens: int = 500,
    ) -> Result[M]: ...


class BackgroundBackend(Protocol):
    def remove_background(self, image: UploadedImage | str, params: RemovalParams = ...) -> Result[str]: ...


class CategorizerBackend(Protocol):
    def categorize(self, image: UploadedImage | str) -> CategorizationResult: ...
