"""Normalized request options for image generation.

Normalization never rejects a request: malformed values fall back to the
configured defaults and numeric values are clamped to the provider's range.
Limits that do reject (image budget, custom size) live in validation.py.
"""

from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, Optional, Union

from pydantic import BaseModel, ValidationInfo, field_validator

if TYPE_CHECKING:
    from imagestudio.core.config import Settings

MIN_IMAGES = 1
MAX_IMAGES = 6
MAX_SEED = 2147483647


class ImageSizePreset(str, Enum):
    SQUARE_HD = "square_hd"
    SQUARE = "square"
    PORTRAIT_4_3 = "portrait_4_3"
    PORTRAIT_16_9 = "portrait_16_9"
    LANDSCAPE_4_3 = "landscape_4_3"
    LANDSCAPE_16_9 = "landscape_16_9"
    AUTO_2K = "auto_2K"
    AUTO_4K = "auto_4K"


class CustomImageSize(BaseModel):
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height


ImageSize = Union[ImageSizePreset, CustomImageSize]

FALLBACKS: dict[str, Any] = {
    "image_size": ImageSizePreset.LANDSCAPE_16_9,
    "num_images": 1,
    "max_images": 1,
    "seed": 42,
    "sync_mode": False,
    "enable_safety_checker": True,
    "enhance_prompt_mode": "standard",
}


def _clamp_int(value: Any, fallback: int, low: int, high: int) -> int:
    if isinstance(value, bool):
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if number != number or number in (float("inf"), float("-inf")):
        return fallback
    return min(high, max(low, round(number)))


def _normalize_image_size(value: Any) -> ImageSize:
    if isinstance(value, (ImageSizePreset, CustomImageSize)):
        return value
    if isinstance(value, str):
        try:
            return ImageSizePreset(value)
        except ValueError:
            return FALLBACKS["image_size"]
    if isinstance(value, dict):
        width = _clamp_int(value.get("width"), 0, 0, 1 << 30)
        height = _clamp_int(value.get("height"), 0, 0, 1 << 30)
        if width > 0 and height > 0:
            return CustomImageSize(width=width, height=height)
    return FALLBACKS["image_size"]


class GenerationOptions(BaseModel):
    """Request options sent to the provider with each submission."""

    image_size: ImageSize = ImageSizePreset.LANDSCAPE_16_9
    num_images: int = 1
    max_images: int = 1
    seed: int = 42
    sync_mode: bool = False
    enable_safety_checker: bool = True
    enhance_prompt_mode: Literal["standard", "fast"] = "standard"

    @field_validator("image_size", mode="before")
    @classmethod
    def normalize_image_size(cls, v: Any) -> ImageSize:
        return _normalize_image_size(v)

    @field_validator("num_images", "max_images", mode="before")
    @classmethod
    def clamp_image_counts(cls, v: Any, info: ValidationInfo) -> int:
        return _clamp_int(v, FALLBACKS[info.field_name], MIN_IMAGES, MAX_IMAGES)

    @field_validator("seed", mode="before")
    @classmethod
    def clamp_seed(cls, v: Any) -> int:
        return _clamp_int(v, FALLBACKS["seed"], 0, MAX_SEED)

    @field_validator("sync_mode", "enable_safety_checker", mode="before")
    @classmethod
    def strict_bool(cls, v: Any, info: ValidationInfo) -> bool:
        return v if isinstance(v, bool) else FALLBACKS[info.field_name]

    @field_validator("enhance_prompt_mode", mode="before")
    @classmethod
    def known_enhance_mode(cls, v: Any) -> str:
        return v if v in ("standard", "fast") else FALLBACKS["enhance_prompt_mode"]

    @property
    def custom_size(self) -> Optional[CustomImageSize]:
        return self.image_size if isinstance(self.image_size, CustomImageSize) else None


def merge_options(
    defaults: GenerationOptions, overrides: Optional[Union[GenerationOptions, dict]] = None
) -> GenerationOptions:
    """Overlay caller-supplied options on the configured defaults.

    Args:
        defaults: Options configured for the application
        overrides: Caller options; only keys actually supplied take effect

    Returns:
        Normalized options
    """
    if overrides is None:
        supplied: dict = {}
    elif isinstance(overrides, GenerationOptions):
        supplied = overrides.model_dump(exclude_unset=True)
    else:
        supplied = {key: value for key, value in overrides.items() if value is not None}
    return GenerationOptions.model_validate({**defaults.model_dump(), **supplied})


def default_options(settings: "Settings") -> GenerationOptions:
    """Build the default request options configured for the application."""
    return GenerationOptions.model_validate(
        {
            "image_size": settings.default_image_size,
            "num_images": settings.default_num_images,
            "max_images": settings.default_max_images,
            "seed": settings.default_seed,
            "sync_mode": settings.default_sync_mode,
            "enable_safety_checker": settings.default_enable_safety_checker,
            "enhance_prompt_mode": settings.default_enhance_prompt_mode,
        }
    )
