"""Submit request validation.

Each check raises GenerationValidationError with a message suitable for the
caller. Checks run in a fixed order so the first problem is reported.
"""

from dataclasses import dataclass

from imagestudio.services.exceptions import GenerationValidationError
from imagestudio.services.image_studio.options import GenerationOptions


@dataclass(frozen=True)
class GenerationLimits:
    """Image count and custom size bounds enforced before submission."""

    input_image_limit: int = 10
    total_image_limit: int = 15
    edge_min: int = 1920
    edge_max: int = 4096
    pixels_min: int = 2560 * 1440
    pixels_max: int = 4096 * 4096

    @classmethod
    def from_settings(cls, settings) -> "GenerationLimits":
        return cls(
            input_image_limit=settings.input_image_limit,
            total_image_limit=settings.total_image_limit,
            edge_min=settings.custom_size_edge_min,
            edge_max=settings.custom_size_edge_max,
            pixels_min=settings.custom_size_pixels_min,
            pixels_max=settings.custom_size_pixels_max,
        )


def validate_prompt(prompt: str) -> str:
    """Return the trimmed prompt.

    Raises:
        GenerationValidationError: If the prompt is empty after trimming
    """
    trimmed = (prompt or "").strip()
    if not trimmed:
        raise GenerationValidationError("Prompt cannot be empty.")
    return trimmed


def validate_input_count(count: int, limits: GenerationLimits) -> None:
    if count == 0:
        raise GenerationValidationError("Provide at least 1 input image.")
    if count > limits.input_image_limit:
        raise GenerationValidationError(
            f"At most {limits.input_image_limit} input images are allowed (got {count})."
        )


def suggested_max_images(input_count: int, num_images: int, limits: GenerationLimits) -> int:
    """Largest max_images that keeps the worst case within the total image limit."""
    output_budget = max(0, limits.total_image_limit - input_count)
    return max(1, output_budget // max(1, num_images))


def validate_image_budget(
    input_count: int, options: GenerationOptions, limits: GenerationLimits
) -> None:
    """Reject requests whose worst-case input + output count exceeds the limit.

    A single provider generation may return 1..max_images images and num_images
    generations are run, so the worst case is num_images * max_images outputs.
    """
    max_possible_outputs = options.num_images * options.max_images
    max_possible_total = input_count + max_possible_outputs

    if max_possible_total > limits.total_image_limit:
        allowed = suggested_max_images(input_count, options.num_images, limits)
        raise GenerationValidationError(
            f"Total image limit is {limits.total_image_limit} (inputs + outputs). "
            f"Got {input_count} input images; with num_images={options.num_images} and "
            f"max_images={options.max_images} up to {max_possible_outputs} images may be "
            f"generated, {max_possible_total}/{limits.total_image_limit} in total. "
            f"Lower max_images to <= {allowed}, or use fewer input images or a smaller "
            f"num_images; set max_images to 1 to get exactly {options.num_images} outputs."
        )


def validate_custom_image_size(options: GenerationOptions, limits: GenerationLimits) -> None:
    """Accept a custom size when either both edges or the pixel area are in range.

    Preset sizes are always accepted.
    """
    size = options.custom_size
    if size is None:
        return

    if size.width <= 0 or size.height <= 0:
        raise GenerationValidationError("Custom image size must be positive integers.")

    edge_range_valid = (
        limits.edge_min <= size.width <= limits.edge_max
        and limits.edge_min <= size.height <= limits.edge_max
    )
    pixel_range_valid = limits.pixels_min <= size.area <= limits.pixels_max

    if not edge_range_valid and not pixel_range_valid:
        raise GenerationValidationError(
            f"Custom image size {size.width}x{size.height} is out of range: both edges must be "
            f"within {limits.edge_min}-{limits.edge_max}, or the total pixel count within "
            f"{limits.pixels_min}-{limits.pixels_max}."
        )
