"""Shared synthetic fixtures for the screenfind tests"""
import numpy as np
import pytest

from screenfind import samples
from screenfind.geometry import Rectangle
from screenfind.images import ImageData

WIDGET_RECT = Rectangle(600, 400, 200, 150)
SMALL_PATTERN_RECT = Rectangle(40, 60, 30, 20)


@pytest.fixture(scope="session")
def reference_screen() -> ImageData:
    """1920x1080 screen the patterns were cut from"""
    return samples.make_reference_screen()


@pytest.fixture(scope="session")
def scaled_capture(reference_screen) -> ImageData:
    """The same screen captured under 125% display scaling (1536x864)"""
    return samples.make_scaled_capture(reference_screen, 0.8)


@pytest.fixture(scope="session")
def widget_pattern(reference_screen):
    return samples.crop_pattern(reference_screen, WIDGET_RECT, name="widget")


@pytest.fixture(scope="session")
def small_screen() -> ImageData:
    """320x240 screen for the fast unit tests"""
    return samples.make_reference_screen((320, 240), seed=1)


@pytest.fixture
def small_pattern(small_screen):
    # function scope: each test gets a fresh per-pattern scale cache
    return samples.crop_pattern(small_screen, SMALL_PATTERN_RECT, name="small")


@pytest.fixture(scope="session")
def foreign_pattern():
    """Pattern cut from an unrelated screen"""
    other = samples.make_reference_screen((320, 240), seed=99)
    return samples.crop_pattern(other, SMALL_PATTERN_RECT, name="foreign")


def paste(screen: ImageData, patch: np.ndarray, x: int, y: int) -> ImageData:
    px = np.array(screen.pixels)
    px[y : y + patch.shape[0], x : x + patch.shape[1]] = patch
    return ImageData(px, screen.mode)
