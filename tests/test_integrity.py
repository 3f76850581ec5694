import numpy as np

from brand_scrub.config import Config
from brand_scrub.integrity import check_structure


def product(height=160, width=200):
    image = np.full((height, width, 3), 230, dtype=np.uint8)
    image[40:120, 50:150] = (130, 130, 130)
    return image


def test_small_local_edit_is_valid():
    original = product()
    edited = original.copy()
    edited[60:80, 70:100] = (230, 230, 230)

    check = check_structure(original, edited, Config())

    assert check.is_valid
    assert check.reason is None
    assert check.changed_fraction < 0.2


def test_product_removed_is_rejected():
    original = product()
    edited = np.full_like(original, 230)

    check = check_structure(original, edited, Config())

    assert not check.is_valid
    assert check.changed_fraction >= 0.2
    assert "pixels changed" in check.reason


def test_global_shift_is_rejected_on_mean_difference():
    original = product()
    edited = np.clip(original.astype(np.int16) - 40, 0, 255).astype(np.uint8)

    check = check_structure(original, edited, Config())

    assert not check.is_valid
    assert check.mean_diff >= 30
    assert "mean difference" in check.reason


def test_edit_at_another_resolution_is_compared_after_resampling():
    original = product()
    edited = product()[::2, ::2].copy()
    assert check_structure(original, edited, Config()).is_valid


def test_large_images_are_compared_as_thumbnails():
    original = product(1200, 1600)
    check = check_structure(original, original.copy(), Config(structural_compare_size=256))
    assert check.is_valid
    assert check.mean_diff == 0


def test_thresholds_come_from_config():
    original = product()
    edited = original.copy()
    edited[60:80, 70:100] = (230, 230, 230)
    strict = Config(structural_max_changed_fraction=0.01)
    assert not check_structure(original, edited, strict).is_valid
