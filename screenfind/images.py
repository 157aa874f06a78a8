"""
Image container and format normalization.

Stored patterns and live captures routinely disagree on alpha, bit depth and
palette layout (a 24-bit PNG pattern against a 32-bit screen grab is the usual
case). Everything is brought to 8-bit, 3-channel RGB before matching so the
similarity score reflects content rather than encoding.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image

from .errors import UnsupportedPixelFormat

logger = logging.getLogger(__name__)

# ---------- configuration ----------
# Transparent areas are composited over the dark UI theme the patterns were cut from.
DEFAULT_BACKGROUND = (30, 30, 30)
RECOGNIZED_MODES = ("RGB", "RGBA", "L", "LA", "1", "I;16", "P")

_MODE_CHANNELS = {"RGB": 3, "RGBA": 4, "L": 1, "LA": 2, "1": 1, "I;16": 1, "P": 1}
_MODE_BITS = {"RGB": 24, "RGBA": 32, "L": 8, "LA": 16, "1": 1, "I;16": 16, "P": 8}


@dataclass(frozen=True, eq=False)
class ImageData:
    """
    Immutable pixel grid in PIL mode terms.

    Attributes:
        pixels: ``H x W`` or ``H x W x C`` array, ``uint8`` (``uint16`` for
            16-bit grayscale). Stored read-only.
        mode: PIL-style mode string (``RGB``, ``RGBA``, ``L``, ``LA``, ``1``,
            ``I;16``, ``P``). Other modes may be held but cannot be normalized.
        palette: ``N x 4`` RGBA lookup table for indexed (``P``) images.
    """

    pixels: np.ndarray
    mode: str
    palette: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        arr = np.asarray(self.pixels)
        if arr.ndim not in (2, 3):
            raise ValueError(f"Image must be 2-D or 3-D, got shape {arr.shape}")
        expected = _MODE_CHANNELS.get(self.mode)
        if expected is not None:
            found = 1 if arr.ndim == 2 else int(arr.shape[2])
            if found != expected or (expected == 1 and arr.ndim != 2):
                raise UnsupportedPixelFormat(
                    f"{self.mode} with {found} channel(s), shape {arr.shape}"
                )
        if arr.flags.writeable:
            arr = arr.copy()
            arr.setflags(write=False)
        object.__setattr__(self, "pixels", arr)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    @property
    def channels(self) -> int:
        if self.mode in _MODE_CHANNELS:
            return _MODE_CHANNELS[self.mode]
        return 1 if self.pixels.ndim == 2 else int(self.pixels.shape[2])

    @property
    def bits_per_pixel(self) -> int:
        if self.mode in _MODE_BITS:
            bits = _MODE_BITS[self.mode]
            if self.mode in ("RGB", "RGBA", "LA") and self.pixels.dtype == np.uint16:
                bits *= 2
            return bits
        return self.channels * self.pixels.dtype.itemsize * 8

    @property
    def has_alpha(self) -> bool:
        if self.mode == "P":
            return self.palette is not None and bool((self.palette[:, 3] < 255).any())
        return self.mode in ("RGBA", "LA")


# ---------- construction ----------
def from_array(pixels: np.ndarray, mode: Optional[str] = None) -> ImageData:
    arr = np.asarray(pixels)
    if mode is not None:
        return ImageData(arr, mode)
    if arr.ndim == 2:
        return ImageData(arr, "I;16" if arr.dtype == np.uint16 else "L")
    if arr.ndim == 3:
        inferred = {1: "L", 2: "LA", 3: "RGB", 4: "RGBA"}.get(arr.shape[2])
        if inferred == "L":
            return ImageData(arr[:, :, 0], "L")
        if inferred is not None:
            return ImageData(arr, inferred)
        raise UnsupportedPixelFormat(f"{arr.shape[2]}-channel")
    raise ValueError(f"Image must be 2-D or 3-D, got shape {arr.shape}")


def from_pil(img: Image.Image) -> ImageData:
    mode = img.mode
    if mode == "1":
        return ImageData(np.array(img.convert("L"), dtype=np.uint8), "1")
    if mode in ("I;16", "I;16B", "I;16L", "I"):
        arr = np.clip(np.array(img), 0, 65535).astype(np.uint16)
        return ImageData(arr, "I;16")
    if mode == "P":
        return ImageData(np.array(img, dtype=np.uint8), "P", palette=_rgba_palette(img))
    return ImageData(np.array(img), mode)


def _rgba_palette(img: Image.Image) -> np.ndarray:
    raw = img.getpalette() or []
    rgb = np.array(raw, dtype=np.uint8).reshape(-1, 3)
    if rgb.shape[0] < 256:
        rgb = np.vstack([rgb, np.zeros((256 - rgb.shape[0], 3), dtype=np.uint8)])
    alpha = np.full((rgb.shape[0], 1), 255, dtype=np.uint8)
    transparency = img.info.get("transparency")
    if isinstance(transparency, int):
        alpha[transparency, 0] = 0
    elif isinstance(transparency, (bytes, bytearray)):
        values = np.frombuffer(bytes(transparency), dtype=np.uint8)
        alpha[: len(values), 0] = values
    return np.hstack([rgb, alpha])


def load_image(path: str) -> ImageData:
    if not os.path.exists(path):
        raise RuntimeError(f"Failed to load image: {path}")
    with Image.open(path) as img:
        img.load()
        return from_pil(img)


def to_pil(image: ImageData) -> Image.Image:
    if image.mode == "P":
        out = Image.fromarray(np.ascontiguousarray(image.pixels))
        out.putpalette(image.palette[:, :3].astype(np.uint8).ravel().tolist())
        return out
    if image.mode == "1":
        return Image.fromarray(np.ascontiguousarray(image.pixels)).convert("1")
    if image.mode not in RECOGNIZED_MODES:
        raise UnsupportedPixelFormat(image.mode)
    return Image.fromarray(np.ascontiguousarray(image.pixels))


# ---------- normalization ----------
def _to_uint8(arr: np.ndarray) -> np.ndarray:
    if arr.dtype == np.uint8:
        return arr
    if arr.dtype == np.uint16:
        return np.round(arr.astype(np.float32) / 257.0).astype(np.uint8)
    if arr.dtype == np.bool_:
        return arr.astype(np.uint8) * 255
    return np.clip(arr, 0, 255).astype(np.uint8)


def _gray_to_rgb(gray: np.ndarray) -> np.ndarray:
    return cv2.cvtColor(np.ascontiguousarray(gray), cv2.COLOR_GRAY2RGB)


def _composite(
    color: np.ndarray, alpha: np.ndarray, background: Tuple[int, int, int]
) -> np.ndarray:
    a = alpha.astype(np.float32)[..., np.newaxis] / 255.0
    bg = np.array(background, dtype=np.float32).reshape(1, 1, 3)
    out = color.astype(np.float32) * a + bg * (1.0 - a)
    return np.clip(np.round(out), 0, 255).astype(np.uint8)


def normalize(
    image: ImageData, background: Tuple[int, int, int] = DEFAULT_BACKGROUND
) -> ImageData:
    """
    Convert any recognized image to 8-bit RGB.

    Alpha is composited over ``background``; grayscale and indexed images are
    expanded to full color; 16-bit samples are reduced to 8 bits.

    Raises:
        UnsupportedPixelFormat: If the mode is outside the recognized set.
    """
    mode = image.mode
    px = image.pixels
    if mode == "RGB":
        if px.dtype == np.uint8:
            return image
        return ImageData(_to_uint8(px), "RGB")
    if mode == "RGBA":
        px8 = _to_uint8(px)
        return ImageData(_composite(px8[..., :3], px8[..., 3], background), "RGB")
    if mode in ("L", "1", "I;16"):
        return ImageData(_gray_to_rgb(_to_uint8(px)), "RGB")
    if mode == "LA":
        px8 = _to_uint8(px)
        return ImageData(
            _composite(_gray_to_rgb(px8[..., 0]), px8[..., 1], background), "RGB"
        )
    if mode == "P":
        if image.palette is None:
            raise UnsupportedPixelFormat("P (no palette)")
        rgba = image.palette[px]
        if image.has_alpha:
            return ImageData(_composite(rgba[..., :3], rgba[..., 3], background), "RGB")
        return ImageData(np.ascontiguousarray(rgba[..., :3]), "RGB")
    raise UnsupportedPixelFormat(mode)


def raw_rgb(image: ImageData) -> np.ndarray:
    """
    Stored color values as an ``H x W x 3`` array, without compositing.

    Alpha is dropped, grayscale is broadcast and palettes are looked up while
    ignoring transparency. Only meant for diagnosing format mismatches.
    """
    mode = image.mode
    px = image.pixels
    if mode in ("RGB", "RGBA"):
        return _to_uint8(px)[..., :3]
    if mode in ("L", "1", "I;16"):
        return _gray_to_rgb(_to_uint8(px))
    if mode == "LA":
        return _gray_to_rgb(_to_uint8(px)[..., 0])
    if mode == "P" and image.palette is not None:
        return np.ascontiguousarray(image.palette[px][..., :3])
    raise UnsupportedPixelFormat(mode)


def formats_compatible(a: ImageData, b: ImageData) -> bool:
    """True when the two images can be compared without normalization."""
    compatible = (
        a.channels == b.channels
        and a.bits_per_pixel == b.bits_per_pixel
        and a.mode != "P"
        and b.mode != "P"
    )
    if not compatible:
        logger.debug(
            "Image format mismatch - %s (%d-bit, alpha: %s) vs %s (%d-bit, alpha: %s)",
            a.mode,
            a.bits_per_pixel,
            a.has_alpha,
            b.mode,
            b.bits_per_pixel,
            b.has_alpha,
        )
    return compatible


def describe_image(image: ImageData, label: str = "image") -> str:
    summary = (
        f"[{label}] {image.width}x{image.height} mode={image.mode} "
        f"channels={image.channels} bpp={image.bits_per_pixel} "
        f"alpha={image.has_alpha}"
    )
    logger.debug(summary)
    return summary
