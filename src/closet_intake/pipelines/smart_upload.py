"""Orchestrator for the smart closet upload pipeline.

Classify the scene, route to the person / multi-item / single-item branch,
clean and categorize every garment, and fall back to the single-item branch
on the original image whenever the person or multi-item branch fails.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from enum import Enum
from pathlib import Path
from time import perf_counter

import httpx

from closet_intake.cache import LruCache
from closet_intake.concurrency import run_keyed
from closet_intake.config import IntakeConfig
from closet_intake.detectors.background_removal import GENERAL_PARAMS, BackgroundRemover
from closet_intake.detectors.vlm_litellm import VisionClassifier
from closet_intake.result import Err, ErrorKind, ExtractionError, IntakeError, Ok, Result
from closet_intake.services.categorizer import Categorizer
from closet_intake.services.crop_validator import CropValidator
from closet_intake.services.garment_extractor import PersonGarmentExtractor
from closet_intake.services.multi_garment import MultiGarmentSeparator
from closet_intake.services.protocols import BackgroundBackend, CategorizerBackend, VisionBackend
from closet_intake.services.scene_classifier import SceneClassifier
from closet_intake.vision.image import ImageDecodeError, load_upload, open_image
from closet_intake.vision.types import (
    CategorizationResult,
    DetectedItem,
    ManualCrop,
    Scenario,
    SceneType,
    SeparatedItem,
    UploadedImage,
    UploadResult,
)

LOG = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]
ImageSource = UploadedImage | bytes | str | Path


class PipelineState(str, Enum):
    CLASSIFYING = "classifying"
    PERSON_BRANCH = "person-branch"
    MULTI_ITEM_BRANCH = "multi-item-branch"
    SINGLE_ITEM_BRANCH = "single-item-branch"
    CATEGORIZING = "categorizing"
    FALLBACK = "fallback"
    DONE = "done"


_BRANCH_FOR_SCENE: dict[SceneType, PipelineState] = {
    SceneType.PERSON_WEARING: PipelineState.PERSON_BRANCH,
    SceneType.MULTI_ITEM: PipelineState.MULTI_ITEM_BRANCH,
    SceneType.SINGLE_ITEM: PipelineState.SINGLE_ITEM_BRANCH,
}


def _item_from_categorization(image_url: str, cat: CategorizationResult) -> DetectedItem:
    return DetectedItem(
        image_url=image_url,
        name=cat.item_name,
        category=cat.category,
        confidence=cat.confidence,
        categorization=cat,
    )


def _item_from_separated(sep: SeparatedItem, *, from_person: bool) -> DetectedItem:
    item = _item_from_categorization(sep.cleaned_image_url, sep.categorization)
    if sep.categorization.method == "default" and sep.name:
        item.name = sep.name
    item.was_separated = True
    item.original_bounding_box = sep.original_bounding_box
    if from_person:
        item.was_extracted_from_person = True
    return item


def _manual_failure(error: str) -> UploadResult:
    return UploadResult(success=False, items_added=0, items=[], scenario="manual-crop", error=error)


class SmartUploadPipeline:
    """Turn one uploaded photo into cleaned, categorized closet items.

    Every entry point returns an :class:`UploadResult`; `success` is False
    only when the single-item fallback fails too.
    """

    def __init__(
        self,
        *,
        scene_classifier: SceneClassifier,
        extractor: PersonGarmentExtractor,
        separator: MultiGarmentSeparator,
        categorizer: CategorizerBackend,
        remover: BackgroundBackend,
        validator: CropValidator | None = None,
        max_workers: int = 3,
        image_loader: Callable[..., UploadedImage] = load_upload,
    ) -> None:
        self.scene_classifier = scene_classifier
        self.extractor = extractor
        self.separator = separator
        self.categorizer = categorizer
        self.remover = remover
        self.validator = validator
        self.max_workers = max_workers
        self.image_loader = image_loader

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _as_upload(self, image: ImageSource) -> Result[UploadedImage]:
        if isinstance(image, UploadedImage):
            return Ok(image)
        try:
            return Ok(self.image_loader(image))
        except (ImageDecodeError, httpx.HTTPError, OSError) as e:
            return Err(ErrorKind.DECODE, f"Could not read upload: {e}")

    @staticmethod
    def _enter(state: PipelineState, on_progress: ProgressCallback | None, message: str | None = None) -> None:
        LOG.debug("Pipeline state -> %s", state.value)
        if message and on_progress is not None:
            on_progress(message)

    # ------------------------------------------------------------------
    # Branches (raise IntakeError on failure)
    # ------------------------------------------------------------------

    def _single_item_branch(
        self,
        upload: UploadedImage,
        on_progress: ProgressCallback | None,
    ) -> list[DetectedItem]:
        self._enter(PipelineState.SINGLE_ITEM_BRANCH, on_progress, "Removing background...")
        cleaned = self.remover.remove_background(upload, GENERAL_PARAMS)
        if isinstance(cleaned, Err):
            raise IntakeError.from_err(cleaned)

        self._enter(PipelineState.CATEGORIZING, on_progress, "Categorizing item...")
        cat = self.categorizer.categorize(cleaned.value)
        return [_item_from_categorization(cleaned.value, cat)]

    def _person_branch(self, upload: UploadedImage, on_progress: ProgressCallback | None) -> list[DetectedItem]:
        self._enter(PipelineState.PERSON_BRANCH, on_progress, "Extracting clothing from photo...")
        extraction = self.extractor.extract(upload)
        if not extraction.success or not extraction.extracted_image_url:
            raise ExtractionError(ErrorKind.EXTRACTION, extraction.error or "Garment extraction failed")
        extracted_url = extraction.extracted_image_url

        if on_progress is not None:
            on_progress("Checking for multiple items...")
        separation = self.separator.separate(extracted_url)
        if separation.success and separation.has_multiple_items and separation.item_count > 1:
            if on_progress is not None:
                on_progress(f"Found {separation.item_count} items! Separating...")
            return self._annotate([_item_from_separated(s, from_person=True) for s in separation.items])

        self._enter(PipelineState.CATEGORIZING, on_progress, "Categorizing item...")
        cat = self.categorizer.categorize(extracted_url)
        item = _item_from_categorization(extracted_url, cat)
        item.was_extracted_from_person = True
        return [item]

    def _multi_item_branch(
        self,
        upload: UploadedImage,
        on_progress: ProgressCallback | None,
    ) -> tuple[Scenario, list[DetectedItem]]:
        self._enter(PipelineState.MULTI_ITEM_BRANCH, on_progress, "Detecting and separating items...")
        separation = self.separator.separate(upload)
        if not separation.success or separation.item_count == 0:
            LOG.warning(
                "Multi-item separation produced no items (%s); processing as a single item",
                separation.error or "nothing detected",
            )
            return "single-item", self._single_item_branch(upload, on_progress)

        if on_progress is not None:
            on_progress(f"Found {separation.item_count} items!")
        return "multi-item", self._annotate([_item_from_separated(s, from_person=False) for s in separation.items])

    def _annotate(self, items: list[DetectedItem]) -> list[DetectedItem]:
        """Attach crop validation verdicts to separated items (never filters)."""
        if self.validator is None or not items:
            return items
        validator = self.validator

        def check(_i: int, item: DetectedItem) -> None:
            try:
                crop = load_upload(item.image_url)
            except (ImageDecodeError, httpx.HTTPError, OSError) as e:
                LOG.debug("Skipping validation of %r: %s", item.name, e)
                return
            item.validation = validator.validate(crop, item.name, item.category)

        run_keyed(check, dict(enumerate(items)), max_workers=self.max_workers)
        invalid = [it.name for it in items if it.validation is not None and not it.validation.is_valid]
        if invalid:
            LOG.warning("Crop validation flagged %s/%s items: %s", len(invalid), len(items), invalid)
        return items

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def process_upload(self, image: ImageSource, on_progress: ProgressCallback | None = None) -> UploadResult:
        """Run the full pipeline on one photo."""
        t0 = perf_counter()
        loaded = self._as_upload(image)
        if isinstance(loaded, Err):
            LOG.error("Upload rejected: %s", loaded)
            return UploadResult(success=False, items_added=0, items=[], error=str(loaded))
        upload = loaded.value

        self._enter(PipelineState.CLASSIFYING, on_progress, "Analyzing photo...")
        scene = self.scene_classifier.classify(upload)
        LOG.info(
            "Step 1/3 scene: type=%s person=%s items=%s confidence=%.2f took=%.2fs",
            scene.type.value,
            scene.has_person,
            scene.item_count,
            scene.confidence,
            perf_counter() - t0,
        )

        t1 = perf_counter()
        branch = _BRANCH_FOR_SCENE[scene.type]
        scenario: Scenario = scene.type.value  # type: ignore[assignment]
        try:
            if branch is PipelineState.PERSON_BRANCH:
                items = self._person_branch(upload, on_progress)
            elif branch is PipelineState.MULTI_ITEM_BRANCH:
                scenario, items = self._multi_item_branch(upload, on_progress)
            else:
                items = self._single_item_branch(upload, on_progress)
        except Exception as primary:
            return self._fallback(upload, branch, primary, on_progress, t0)

        LOG.info(
            "Step 2/3 %s: items=%s took=%.2fs",
            branch.value,
            len(items),
            perf_counter() - t1,
        )
        return self._done(scenario, items, t0, on_progress)

    def _fallback(
        self,
        upload: UploadedImage,
        branch: PipelineState,
        primary: Exception,
        on_progress: ProgressCallback | None,
        t0: float,
    ) -> UploadResult:
        if branch is PipelineState.SINGLE_ITEM_BRANCH:
            LOG.error("Single-item processing failed: %s", primary)
            return UploadResult(success=False, items_added=0, items=[], scenario="single-item", error=str(primary))

        LOG.warning("%s failed (%s); falling back to single-item processing", branch.value, primary)
        self._enter(PipelineState.FALLBACK, on_progress, "Falling back to single item...")
        try:
            items = self._single_item_branch(upload, on_progress)
        except Exception as e:
            LOG.error("Fallback failed too: %s", e)
            return UploadResult(success=False, items_added=0, items=[], error=str(primary))
        return self._done("single-item", items, t0, on_progress)

    def _done(
        self,
        scenario: Scenario,
        items: list[DetectedItem],
        t0: float,
        on_progress: ProgressCallback | None,
    ) -> UploadResult:
        self._enter(PipelineState.DONE, on_progress, f"Done! Added {len(items)} item(s).")
        LOG.info(
            "Step 3/3 done: scenario=%s items=%s total=%.2fs",
            scenario,
            [f"{it.name} ({it.category})" for it in items],
            perf_counter() - t0,
        )
        return UploadResult(success=True, items_added=len(items), items=items, scenario=scenario)

    def upload_with_manual_cropping(
        self,
        image: ImageSource,
        crops: Sequence[ManualCrop],
        on_progress: ProgressCallback | None = None,
    ) -> UploadResult:
        """Crop, clean and categorize user-drawn regions, skipping scene classification.

        User-supplied names and categories take precedence over the categorizer's.
        Regions that fail are dropped; the result fails only if none succeed.
        """
        t0 = perf_counter()
        if not crops:
            return _manual_failure("No crop regions given.")
        loaded = self._as_upload(image)
        if isinstance(loaded, Err):
            return _manual_failure(str(loaded))
        try:
            img = open_image(loaded.value)
        except ImageDecodeError as e:
            return _manual_failure(str(e))

        if on_progress is not None:
            on_progress(f"Processing {len(crops)} selected region(s)...")

        def process(i: int, crop: ManualCrop) -> Result[DetectedItem]:
            try:
                cleaned = self.separator.clean_region(img, crop.box, padding=0.0)
                if isinstance(cleaned, Err):
                    return cleaned
                _, cleaned_url = cleaned.value
                cat = self.categorizer.categorize(cleaned_url)
            except Exception as e:
                return Err(ErrorKind.EXTRACTION, f"Region {i + 1} failed: {e}")
            item = _item_from_categorization(cleaned_url, cat)
            item.name = crop.name or cat.item_name
            item.category = crop.category or cat.category
            item.was_separated = True
            item.original_bounding_box = crop.box
            return Ok(item)

        outcomes = run_keyed(process, dict(enumerate(crops)), max_workers=self.max_workers)
        items: list[DetectedItem] = []
        errors: list[str] = []
        for i, outcome in outcomes.items():
            if isinstance(outcome, Err):
                LOG.warning("Manual crop %s/%s dropped: %s", i + 1, len(crops), outcome)
                errors.append(str(outcome))
            else:
                items.append(outcome.value)

        if not items:
            return _manual_failure(errors[0] if errors else "No crop could be processed.")
        return self._done("manual-crop", items, t0, on_progress)


def build_pipeline(
    cfg: IntakeConfig | None = None,
    *,
    vision: VisionBackend | None = None,
    remover: BackgroundBackend | None = None,
) -> SmartUploadPipeline:
    """Wire the services into a pipeline; shared state (the cache) lives on the instances."""
    cfg = cfg or IntakeConfig()
    if cfg.verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")

    if vision is None:
        vision = VisionClassifier(
            cfg.vlm_model,
            temperature=cfg.vlm_temperature,
            timeout_s=cfg.vlm_timeout_s,
            max_side=cfg.classify_max_side,
            jpeg_quality=cfg.classify_jpeg_quality,
        )
    if remover is None:
        remover = BackgroundRemover(
            endpoint=cfg.bg_endpoint,
            api_key_env=cfg.bg_api_key_env,
            timeout_s=cfg.bg_timeout_s,
        )
    tokens = cfg.vlm_max_tokens
    categorizer = Categorizer(
        vision,
        cache=LruCache(maxsize=cfg.categorization_cache_size),
        max_workers=cfg.max_workers,
        max_tokens=tokens.get("categorize", 1500),
    )
    return SmartUploadPipeline(
        scene_classifier=SceneClassifier(
            vision,
            multi_item_min_confidence=cfg.multi_item_min_confidence,
            max_tokens=tokens.get("scene-classify", 300),
        ),
        extractor=PersonGarmentExtractor(
            vision,
            remover,
            padding=cfg.person_crop_padding,
            max_side=cfg.classify_max_side,
            max_tokens=tokens.get("garment-detect", 500),
        ),
        separator=MultiGarmentSeparator(
            vision,
            remover,
            categorizer,
            padding=cfg.separation_crop_padding,
            max_workers=cfg.max_workers,
            max_tokens=tokens.get("garment-detect-multi", 1500),
        ),
        categorizer=categorizer,
        remover=remover,
        validator=(
            CropValidator(vision, max_tokens=tokens.get("crop-validate", 500)) if cfg.validate_crops else None
        ),
        max_workers=cfg.max_workers,
    )
