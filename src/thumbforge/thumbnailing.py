"""Two-phase downscaling shared by preview and face thumbnail generation."""

from __future__ import annotations

from PIL import Image
from PIL.Image import Resampling


def _get_rough_filter() -> Resampling:
    return Resampling.NEAREST


def _get_resample_filter() -> Resampling:
    """Return the long-support filter used for the final downscale."""

    return Resampling.LANCZOS


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def target_dimensions(width: int, height: int, dimension: int) -> tuple[int, int]:
    """Return the size that fits ``width`` x ``height`` into ``dimension`` on its longest edge.

    Aspect ratio is preserved and the result is never larger than the input.
    """

    if width <= 0 or height <= 0:
        raise ValueError(f"Image has no pixels: {width}x{height}")

    scale = min(1.0, float(dimension) / float(max(width, height)))
    if scale >= 1.0:
        return width, height

    return max(1, _round_half_up(width * scale)), max(1, _round_half_up(height * scale))


def rough_resize(image: Image.Image, width: int, height: int) -> Image.Image:
    """Cheaply shrink ``image`` to twice the final ``width`` x ``height``.

    Images already at or below twice the final size are returned unchanged.
    """

    rough_size = (width * 2, height * 2)
    if image.width <= rough_size[0] or image.height <= rough_size[1]:
        return image

    return image.resize(rough_size, resample=_get_rough_filter())


def quality_resize(image: Image.Image, width: int, height: int) -> Image.Image:
    """Resize ``image`` to exactly ``width`` x ``height`` with the high-quality filter."""

    if image.size == (width, height):
        return image.copy()

    return image.resize((width, height), resample=_get_resample_filter())


def build_thumbnail_image(image: Image.Image, max_side: int) -> Image.Image:
    """Produce a copy of ``image`` constrained to ``max_side`` pixels on its longest edge.

    A nearest-neighbour pass to twice the target size absorbs most of the cost
    for very large inputs, then a Lanczos pass produces the final pixels.
    """

    safe_side = max(1, int(max_side))
    width, height = target_dimensions(image.width, image.height, safe_side)
    rough = rough_resize(image, width, height)
    return quality_resize(rough, width, height)


def to_rgba(image: Image.Image) -> Image.Image:
    """Return ``image`` as 8-bit RGBA, converting only when needed."""

    if image.mode == "RGBA":
        return image
    return image.convert("RGBA")


__all__ = [
    "build_thumbnail_image",
    "quality_resize",
    "rough_resize",
    "target_dimensions",
    "to_rgba",
]
