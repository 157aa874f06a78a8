"""
Pattern files on disk.

PatternStore loads PNG patterns by name from a directory and keeps them in
memory until the file changes. ``scale_patterns`` writes pre-scaled copies
of a pattern directory for displays running at a fixed scaling.
"""

from __future__ import annotations

import argparse
import logging
import os
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .images import DEFAULT_BACKGROUND, from_array, load_image, normalize, to_pil
from .matcher import Pattern, preload_pattern_cache

logger = logging.getLogger(__name__)

PATTERN_EXT = ".png"
DEFAULT_PRESCALE_FACTOR = 0.8
DEFAULT_PRESCALE_SUFFIX = "-80"


@dataclass
class PatternCacheEntry:
    mtime: float
    pattern: Pattern


class PatternStore:
    """
    Named patterns backed by ``<directory>/<name>.png``.

    Args:
        directory: Folder holding the pattern images.
        native_size: Screen resolution the patterns were cut at, if known.
        min_similarity: Default per-pattern threshold.
    """

    def __init__(
        self,
        directory: str,
        native_size: Optional[Tuple[int, int]] = None,
        min_similarity: Optional[float] = None,
    ) -> None:
        self.directory = directory
        self.native_size = native_size
        self.min_similarity = min_similarity
        self._cache: Dict[str, PatternCacheEntry] = {}
        self._lock = threading.Lock()

    def path_for(self, name: str) -> str:
        return os.path.join(self.directory, name + PATTERN_EXT)

    def names(self) -> List[str]:
        if not os.path.isdir(self.directory):
            return []
        return sorted(
            entry[: -len(PATTERN_EXT)]
            for entry in os.listdir(self.directory)
            if entry.endswith(PATTERN_EXT)
        )

    def get(self, name: str) -> Pattern:
        """
        Load a pattern, reusing the cached copy while the file is unchanged.

        A changed modification time reloads the image and drops the scaled
        variants cached on the previous Pattern object.

        Raises:
            RuntimeError: If the file does not exist or cannot be loaded.
        """
        path = self.path_for(name)
        if not os.path.exists(path):
            raise RuntimeError(f"Failed to load image: {path}")
        mtime = os.path.getmtime(path)
        with self._lock:
            entry = self._cache.get(name)
        if entry and entry.mtime == mtime:
            return entry.pattern
        pattern = Pattern(
            name=name,
            image=load_image(path),
            min_similarity=self.min_similarity,
            native_size=self.native_size,
        )
        with self._lock:
            self._cache[name] = PatternCacheEntry(mtime=mtime, pattern=pattern)
        logger.debug("Loaded pattern %r from %s", name, path)
        return pattern

    def get_many(self, names: Sequence[str]) -> List[Pattern]:
        return [self.get(name) for name in names]

    def preload(
        self,
        names: Optional[Sequence[str]] = None,
        scales: Sequence[float] = (1.0,),
        background: Tuple[int, int, int] = DEFAULT_BACKGROUND,
    ) -> List[Pattern]:
        """Load patterns and precompute their scaled pixels for the given factors."""
        patterns = self.get_many(list(names) if names is not None else self.names())
        for pattern in patterns:
            preload_pattern_cache(pattern, scales, background)
        return patterns

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and os.path.exists(self.path_for(name))


def _scaled_copy(pixels: np.ndarray, factor: float) -> np.ndarray:
    h, w = pixels.shape[:2]
    size = (max(1, int(round(w * factor))), max(1, int(round(h * factor))))
    interpolation = cv2.INTER_AREA if factor < 1.0 else cv2.INTER_CUBIC
    return cv2.resize(pixels, size, interpolation=interpolation)


def scale_patterns(
    directory: str,
    factor: float = DEFAULT_PRESCALE_FACTOR,
    suffix: str = DEFAULT_PRESCALE_SUFFIX,
    overwrite: bool = False,
) -> List[str]:
    """
    Write ``<name><suffix>.png`` next to every pattern, resized by ``factor``.

    Files that already carry the suffix are skipped, as are existing outputs
    unless ``overwrite`` is set. Alpha is kept; other modes are normalized to
    RGB first.

    Returns:
        Paths of the files written.
    """
    if factor <= 0:
        raise ValueError(f"Scale factor must be positive, got {factor}")
    store = PatternStore(directory)
    written: List[str] = []
    for name in store.names():
        if name.endswith(suffix):
            continue
        out_path = store.path_for(name + suffix)
        if os.path.exists(out_path) and not overwrite:
            logger.debug("Skipping %s, already present", out_path)
            continue
        image = load_image(store.path_for(name))
        if image.mode not in ("RGB", "RGBA"):
            image = normalize(image)
        scaled = from_array(_scaled_copy(np.asarray(image.pixels), factor), image.mode)
        to_pil(scaled).save(out_path)
        logger.info(
            "Scaled %s %dx%d -> %dx%d",
            name,
            image.width,
            image.height,
            scaled.width,
            scaled.height,
        )
        written.append(out_path)
    return written


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Write pre-scaled copies of every pattern in a directory."
    )
    parser.add_argument("directory", help="Pattern directory")
    parser.add_argument("--factor", type=float, default=DEFAULT_PRESCALE_FACTOR)
    parser.add_argument("--suffix", default=DEFAULT_PRESCALE_SUFFIX)
    parser.add_argument("--overwrite", action="store_true")
    args = parser.parse_args()

    written = scale_patterns(args.directory, args.factor, args.suffix, args.overwrite)
    print(f"Wrote {len(written)} scaled pattern(s)")


if __name__ == "__main__":
    main()
