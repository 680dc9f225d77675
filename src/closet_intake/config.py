"""Runtime configuration for the intake pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


class ConfigError(ValueError):
    """Raised when an environment variable holds an unusable value."""


def _env_bool(name: str) -> bool | None:
    """Parse an optional bool env var.

    Returns:
        True/False if present, else None.
    """
    raw = os.environ.get(name)
    if raw is None:
        return None
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    raise ConfigError(f"Invalid {name}={raw!r}; expected 0/1/true/false.")


def _env_float(name: str) -> float | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid {name}={raw!r}; expected a number.") from e


def _env_int(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid {name}={raw!r}; expected an integer.") from e


def _default_max_tokens() -> dict[str, int]:
    return {
        "scene-classify": 300,
        "garment-detect": 500,
        "garment-detect-multi": 1500,
        "garment-inventory": 1500,
        "crop-validate": 500,
        "categorize": 1500,
    }


@dataclass
class IntakeConfig:
    """Configuration for the smart upload pipeline.

    Provider keys are never stored here: the VLM key is read by LiteLLM from
    its usual variables, the background removal key from `bg_api_key_env`.
    """

    vlm_model: str = "anthropic/claude-3-haiku-20240307"
    vlm_temperature: float = 0.0
    vlm_timeout_s: float = 60.0
    vlm_max_tokens: dict[str, int] = field(default_factory=_default_max_tokens)
    classify_max_side: int = 1024
    classify_jpeg_quality: int = 85

    bg_endpoint: str = "https://fal.run/fal-ai/birefnet/v2"
    bg_api_key_env: str = "FAL_KEY"
    bg_timeout_s: float = 120.0

    multi_item_min_confidence: float = 0.6
    person_crop_padding: float = 0.05
    separation_crop_padding: float = 0.10
    max_workers: int = 3
    categorization_cache_size: int = 256
    validate_crops: bool = False
    verbose: bool = False

    @classmethod
    def from_env(cls) -> IntakeConfig:
        """Build a config from defaults overridden by environment variables.

        Reads `VLM_MODEL`, `VLM_TIMEOUT_S`, `BG_ENDPOINT`, `BG_API_KEY_ENV`,
        `BG_TIMEOUT_S`, `CATEGORIZATION_CACHE_SIZE` and `VALIDATE_CROPS`.

        Raises:
            ConfigError: If a variable is set to an unparsable value.
        """
        cfg = cls()
        cfg.vlm_model = os.environ.get("VLM_MODEL", cfg.vlm_model)
        cfg.bg_endpoint = os.environ.get("BG_ENDPOINT", cfg.bg_endpoint)
        cfg.bg_api_key_env = os.environ.get("BG_API_KEY_ENV", cfg.bg_api_key_env)

        vlm_timeout = _env_float("VLM_TIMEOUT_S")
        if vlm_timeout is not None:
            cfg.vlm_timeout_s = vlm_timeout
        bg_timeout = _env_float("BG_TIMEOUT_S")
        if bg_timeout is not None:
            cfg.bg_timeout_s = bg_timeout
        cache_size = _env_int("CATEGORIZATION_CACHE_SIZE")
        if cache_size is not None:
            if cache_size < 0:
                raise ConfigError(f"Invalid CATEGORIZATION_CACHE_SIZE={cache_size}; expected >= 0.")
            cfg.categorization_cache_size = cache_size
        validate = _env_bool("VALIDATE_CROPS")
        if validate is not None:
            cfg.validate_crops = validate
        return cfg
