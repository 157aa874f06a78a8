"""
Synthetic screens, captures and patterns.

The reference screen is a grid of flat-colored cells on the dark UI
background. Cell edges fall on multiples of ``cell`` pixels, so a 0.8
downscale of a screen with 5 px cells maps every cell onto exactly 4 capture
pixels and a pattern cut on the grid can be located again without
interpolation error.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from .geometry import Rectangle
from .images import DEFAULT_BACKGROUND, ImageData, from_array, normalize
from .matcher import Pattern

PALETTE = (
    (230, 60, 60),
    (60, 230, 60),
    (60, 60, 230),
    (230, 230, 60),
    (230, 60, 230),
    (60, 230, 230),
    (240, 240, 240),
)
BACKGROUND_SHARE = 0.4


def make_reference_screen(
    size: Tuple[int, int] = (1920, 1080),
    cell: int = 5,
    seed: int = 0,
    background: Tuple[int, int, int] = DEFAULT_BACKGROUND,
    palette: Sequence[Tuple[int, int, int]] = PALETTE,
) -> ImageData:
    """High-contrast random cell texture; about 40% of cells show the background."""
    width, height = size
    rng = np.random.default_rng(seed)
    rows = -(-height // cell)
    cols = -(-width // cell)
    colors = np.array([background] + list(palette), dtype=np.uint8)
    weights = [BACKGROUND_SHARE] + [(1.0 - BACKGROUND_SHARE) / len(palette)] * len(
        palette
    )
    grid = rng.choice(len(colors), size=(rows, cols), p=weights)
    pixels = colors[grid]
    pixels = np.repeat(np.repeat(pixels, cell, axis=0), cell, axis=1)
    return ImageData(np.ascontiguousarray(pixels[:height, :width]), "RGB")


def make_scaled_capture(reference: ImageData, factor: float) -> ImageData:
    """What the same screen looks like under display scaling ``factor``."""
    px = normalize(reference).pixels
    w = int(round(reference.width * factor))
    h = int(round(reference.height * factor))
    interpolation = cv2.INTER_AREA if factor < 1.0 else cv2.INTER_LINEAR
    return ImageData(cv2.resize(px, (w, h), interpolation=interpolation), "RGB")


def crop_pattern(
    image: ImageData,
    region: Rectangle,
    name: str = "pattern",
    min_similarity: Optional[float] = None,
) -> Pattern:
    """Cut a pattern out of ``image``; its native size is the image size."""
    px = image.pixels[region.y : region.bottom, region.x : region.right]
    return Pattern(
        name=name,
        image=from_array(np.ascontiguousarray(px), image.mode),
        min_similarity=min_similarity,
        native_size=image.size,
    )


def with_transparent_background(
    image: ImageData,
    background: Tuple[int, int, int] = DEFAULT_BACKGROUND,
    stored: Tuple[int, int, int] = (255, 255, 255),
) -> ImageData:
    """
    32-bit version of an RGB screen whose background pixels are transparent.

    Transparent pixels keep ``stored`` as their color values, the way some
    capture paths leave them, so the image only looks like the original once
    it is composited over ``background``.
    """
    px = normalize(image).pixels
    is_bg = np.all(px == np.array(background, dtype=np.uint8), axis=-1)
    rgba = np.empty(px.shape[:2] + (4,), dtype=np.uint8)
    rgba[..., :3] = px
    rgba[is_bg, :3] = stored
    rgba[..., 3] = np.where(is_bg, 0, 255)
    return ImageData(rgba, "RGBA")
