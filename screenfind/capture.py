"""Interchangeable capture backends producing ImageData frames."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

import mss
from PIL import Image

from .geometry import Rectangle
from .images import ImageData, from_pil, load_image

logger = logging.getLogger(__name__)


class CaptureSource(ABC):
    """Something that can produce a screen image on demand."""

    name = "capture"

    @abstractmethod
    def capture(self) -> ImageData:
        ...

    def close(self) -> None:
        pass

    def __enter__(self) -> "CaptureSource":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class StaticCaptureSource(CaptureSource):
    """Returns the same in-memory frame every time; used by tests and replays."""

    name = "static"

    def __init__(self, image: ImageData) -> None:
        self.image = image

    def capture(self) -> ImageData:
        return self.image


class FileCaptureSource(CaptureSource):
    """Reads a saved screenshot from disk on each capture."""

    name = "file"

    def __init__(self, path: str) -> None:
        self.path = path

    def capture(self) -> ImageData:
        image = load_image(self.path)
        logger.debug("Captured %dx%d from %s", image.width, image.height, self.path)
        return image


class ScreenCaptureSource(CaptureSource):
    """
    Live screen grab through ``mss``.

    Args:
        monitor: ``mss`` monitor index; 0 is all monitors combined, 1 the primary.
        region: Optional absolute rectangle to grab instead of the whole monitor.
    """

    name = "screen"

    def __init__(self, monitor: int = 1, region: Optional[Rectangle] = None) -> None:
        self._sct = mss.mss()
        self.monitor = monitor
        self.region = region

    def _bounds(self) -> Dict[str, int]:
        if self.region is not None:
            return {
                "left": self.region.x,
                "top": self.region.y,
                "width": self.region.width,
                "height": self.region.height,
            }
        return self._sct.monitors[self.monitor]

    def capture(self) -> ImageData:
        shot = self._sct.grab(self._bounds())
        img = Image.frombytes("RGB", shot.size, shot.bgra, "raw", "BGRX")
        logger.debug("Captured %dx%d from monitor %d", img.width, img.height, self.monitor)
        return from_pil(img)

    def close(self) -> None:
        self._sct.close()


_BACKENDS: Dict[str, Callable[..., CaptureSource]] = {
    StaticCaptureSource.name: StaticCaptureSource,
    FileCaptureSource.name: FileCaptureSource,
    ScreenCaptureSource.name: ScreenCaptureSource,
}


def create_capture_source(kind: str, **kwargs) -> CaptureSource:
    """Instantiate a backend by configuration name (``screen``, ``file``, ``static``)."""
    try:
        factory = _BACKENDS[kind]
    except KeyError:
        raise ValueError(
            f"Unknown capture backend {kind!r}; expected one of {sorted(_BACKENDS)}"
        ) from None
    return factory(**kwargs)
