"""Tests for the two-phase preview resize."""

from __future__ import annotations

import pytest
from PIL import Image

from thumbforge.thumbnailing import build_thumbnail_image, quality_resize, rough_resize, target_dimensions


def test_target_dimensions_preserve_aspect_ratio() -> None:
    """Large images are scaled to the bucket with the aspect ratio kept."""

    assert target_dimensions(4000, 3000, 256) == (256, 192)
    assert target_dimensions(3000, 4000, 256) == (192, 256)
    assert target_dimensions(2000, 1500, 1024) == (1024, 768)


def test_target_dimensions_never_upscale() -> None:
    """Images smaller than the bucket keep their size."""

    assert target_dimensions(100, 80, 256) == (100, 80)
    assert target_dimensions(256, 10, 256) == (256, 10)


def test_target_dimensions_keep_at_least_one_pixel() -> None:
    """Extreme aspect ratios never produce a zero dimension."""

    assert target_dimensions(10000, 1, 256) == (256, 1)


def test_target_dimensions_reject_empty_images() -> None:
    """Zero-sized images raise ValueError."""

    with pytest.raises(ValueError):
        target_dimensions(0, 10, 256)


def test_build_thumbnail_image_fits_bucket() -> None:
    """The thumbnail's longest edge equals the bucket size."""

    image = Image.new("RGB", (4000, 3000), color="white")

    thumbnail = build_thumbnail_image(image, 256)

    assert thumbnail.size == (256, 192)
    assert image.size == (4000, 3000)


def test_build_thumbnail_image_keeps_small_sources() -> None:
    """Small sources come back at their own size."""

    image = Image.new("RGBA", (100, 80), color=(10, 20, 30, 255))

    thumbnail = build_thumbnail_image(image, 256)

    assert thumbnail.size == (100, 80)
    assert thumbnail is not image
    assert thumbnail.getpixel((5, 5)) == (10, 20, 30, 255)


def test_rough_resize_targets_twice_the_final_size() -> None:
    """The rough pass stops at twice the final size."""

    image = Image.new("RGB", (1000, 800))

    rough = rough_resize(image, 100, 80)

    assert rough.size == (200, 160)


def test_rough_resize_skips_images_already_small_enough() -> None:
    """Images already within twice the final size skip the rough pass."""

    image = Image.new("RGB", (150, 120))

    assert rough_resize(image, 100, 80) is image


def test_quality_resize_hits_exact_size() -> None:
    """The quality pass produces exactly the requested size."""

    image = Image.new("RGB", (200, 160))

    assert quality_resize(image, 100, 80).size == (100, 80)
