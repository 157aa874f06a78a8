"""
Scale-aware pattern matcher.

Patterns and captures are normalized to 8-bit RGB, the pattern is resized by
an explicit scale factor, and the search region is scanned band by band with
OpenCV's squared-difference correlation. Candidate positions are then scored
exactly with the mean-absolute-difference similarity

    similarity = 1 - mean(|pattern - capture|) / 255

so that 1.0 means pixel-identical.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .errors import InvalidRegion, MatchCancelled, MatchTimeout
from .geometry import Rectangle
from .images import DEFAULT_BACKGROUND, ImageData, normalize, raw_rgb

logger = logging.getLogger(__name__)

# ---------- configuration ----------
DEFAULT_MIN_SIMILARITY = 0.70
MAX_MATCHES = 20
TOP_MATCH_SCAN_MULTIPLIER = 50
BAND_ROWS = 64
SCORE_CHECK_EVERY = 16
PROXIMITY_MIN_PX = 12.0
PROXIMITY_FRAC = 0.25
# squared-difference units; absorbs FFT round-off in the pruning bound
PRUNE_SLACK = 1.0
PROFILE_ENV = "SCREENFIND_PROFILE"

_MAX_SQ = 255.0 * 255.0


# ---------- helper dataclasses ----------
@dataclass(eq=False)
class Pattern:
    """
    Named reference image.

    Attributes:
        name: Identifier used in logs and on every Match produced.
        image: Reference pixels in any recognized format.
        min_similarity: Per-pattern threshold; falls back to the caller's or
            the module default when None.
        region: Optional fixed region hint in capture coordinates.
        native_size: Screen resolution ``(width, height)`` the pattern was cut
            from, used for scale estimation.
    """

    name: str
    image: ImageData
    min_similarity: Optional[float] = None
    region: Optional[Rectangle] = None
    native_size: Optional[Tuple[int, int]] = None
    _scale_cache: Dict[Tuple, np.ndarray] = field(
        default_factory=dict, init=False, repr=False
    )
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False
    )

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size


@dataclass(frozen=True)
class Match:
    region: Rectangle
    score: float
    pattern_name: str
    target_id: Optional[str] = None
    scale: float = 1.0

    @property
    def x(self) -> int:
        return self.region.x

    @property
    def y(self) -> int:
        return self.region.y

    @property
    def width(self) -> int:
        return self.region.width

    @property
    def height(self) -> int:
        return self.region.height

    @property
    def center(self) -> Tuple[float, float]:
        return self.region.center

    def with_target(self, target_id: str) -> "Match":
        return replace(self, target_id=target_id)


# ---------- helpers ----------
def _prepare_pixels(
    image: ImageData, normalize_formats: bool, background: Tuple[int, int, int]
) -> np.ndarray:
    if normalize_formats:
        px = normalize(image, background).pixels
    else:
        px = raw_rgb(image)
    return np.ascontiguousarray(px)


def _crop(image: ImageData, region: Rectangle) -> ImageData:
    if region == Rectangle.covering(image.size):
        return image
    px = image.pixels[region.y : region.bottom, region.x : region.right]
    return ImageData(px, image.mode, image.palette)


def _resize(pixels: np.ndarray, scale: float) -> np.ndarray:
    if scale == 1.0:
        return pixels
    h, w = pixels.shape[:2]
    ws = int(round(w * scale))
    hs = int(round(h * scale))
    if ws <= 0 or hs <= 0:
        return np.zeros((max(hs, 0), max(ws, 0), 3), dtype=np.uint8)
    # INTER_NEAREST mangles small glyphs, so area/linear only
    interpolation = cv2.INTER_AREA if scale < 1.0 else cv2.INTER_LINEAR
    return cv2.resize(pixels, (ws, hs), interpolation=interpolation)


def _get_scaled_pattern(
    pattern: Pattern,
    scale: float,
    normalize_formats: bool,
    background: Tuple[int, int, int],
) -> np.ndarray:
    """
    Get the prepared, resized pattern pixels with caching.

    Results are cached on the pattern per (scale, normalization, background)
    so repeated searches and calibration sweeps skip the conversion and the
    resize. The returned array is read-only.
    """
    key = (round(float(scale), 6), normalize_formats, tuple(background))
    with pattern._lock:
        cached = pattern._scale_cache.get(key)
    if cached is not None:
        return cached
    base = _prepare_pixels(pattern.image, normalize_formats, background)
    scaled = np.ascontiguousarray(_resize(base, scale))
    scaled.setflags(write=False)
    with pattern._lock:
        return pattern._scale_cache.setdefault(key, scaled)


def preload_pattern_cache(
    pattern: Pattern,
    scales: Sequence[float] = (1.0,),
    background: Tuple[int, int, int] = DEFAULT_BACKGROUND,
) -> None:
    """
    Precompute the normalized, resized pixels of a pattern.

    Callers that know the scale factors they will search at (for example the
    calibration candidate set) can pay the conversion cost at startup rather
    than on the first search.
    """
    for scale in scales:
        _get_scaled_pattern(pattern, scale, True, background)


def similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Mean-absolute-difference similarity of two equally shaped uint8 arrays."""
    if a.shape != b.shape:
        raise ValueError(f"Shape mismatch: {a.shape} vs {b.shape}")
    if a.size == 0:
        raise InvalidRegion("Cannot score zero-area images")
    diff = cv2.absdiff(np.ascontiguousarray(a), np.ascontiguousarray(b))
    return 1.0 - float(np.mean(diff, dtype=np.float64)) / 255.0


def _check_interrupt(
    deadline: Optional[float], cancel: Optional[threading.Event]
) -> None:
    if cancel is not None and cancel.is_set():
        raise MatchCancelled("Search cancelled by caller")
    if deadline is not None and time.monotonic() >= deadline:
        raise MatchTimeout("Search exceeded its deadline")


def _scan_mean_sq(
    roi: np.ndarray,
    patt: np.ndarray,
    deadline: Optional[float],
    cancel: Optional[threading.Event],
) -> np.ndarray:
    """Per-position mean squared difference, computed in bands of result rows."""
    rh, rw = roi.shape[:2]
    ph, pw = patt.shape[:2]
    res_h = rh - ph + 1
    res_w = rw - pw + 1
    out = np.empty((res_h, res_w), dtype=np.float32)
    band = max(1, int(BAND_ROWS))
    for r0 in range(0, res_h, band):
        _check_interrupt(deadline, cancel)
        r1 = min(res_h, r0 + band)
        strip = roi[r0 : r1 + ph - 1]
        out[r0:r1] = cv2.matchTemplate(strip, patt, cv2.TM_SQDIFF)
    out /= float(patt.size)
    np.maximum(out, 0.0, out=out)
    return out


def _candidate_order(flat: np.ndarray, max_len: int) -> np.ndarray:
    # ascending difference; ties resolve in row-major order
    if flat.size <= max_len:
        return np.argsort(flat, kind="stable")
    scan_count = min(flat.size, max(max_len * TOP_MATCH_SCAN_MULTIPLIER, max_len))
    order = np.argpartition(flat, scan_count - 1)[:scan_count]
    return order[np.lexsort((order, flat[order]))]


def _candidate_is_close(candidate: Dict, existing: Dict) -> bool:
    cand_center = candidate["center"]
    cand_w = candidate["br"][0] - candidate["tl"][0]
    cand_h = candidate["br"][1] - candidate["tl"][1]
    ex_center = existing["center"]
    ex_w = existing["br"][0] - existing["tl"][0]
    ex_h = existing["br"][1] - existing["tl"][1]
    dx = cand_center[0] - ex_center[0]
    dy = cand_center[1] - ex_center[1]
    proximity_thresh = max(
        PROXIMITY_MIN_PX,
        min(cand_w, ex_w) * PROXIMITY_FRAC,
        min(cand_h, ex_h) * PROXIMITY_FRAC,
    )
    return (dx * dx + dy * dy) <= (proximity_thresh * proximity_thresh)


def _collect_matches(
    roi: np.ndarray,
    patt: np.ndarray,
    mean_sq: np.ndarray,
    threshold: float,
    max_matches: int,
    deadline: Optional[float],
    cancel: Optional[threading.Event],
) -> List[Dict]:
    ph, pw = patt.shape[:2]
    res_w = mean_sq.shape[1]
    flat = mean_sq.ravel().copy()
    # mean|d| >= mean(d^2) / 255, so these positions cannot reach the threshold
    flat[flat > (1.0 - threshold) * _MAX_SQ + PRUNE_SLACK] = np.inf
    viable = int(np.count_nonzero(np.isfinite(flat)))
    if viable == 0 or max_matches <= 0:
        return []

    scored = 0

    def _scan(order: np.ndarray) -> List[Dict]:
        nonlocal scored
        accepted: List[Dict] = []
        for idx in order:
            if len(accepted) >= max_matches:
                break
            if not np.isfinite(flat[idx]):
                break
            y, x = divmod(int(idx), res_w)
            candidate = {
                "tl": (x, y),
                "br": (x + pw, y + ph),
                "center": (x + pw / 2.0, y + ph / 2.0),
            }
            if any(_candidate_is_close(candidate, existing) for existing in accepted):
                continue
            scored += 1
            if scored % SCORE_CHECK_EVERY == 0:
                _check_interrupt(deadline, cancel)
            score = similarity(patt, roi[y : y + ph, x : x + pw])
            if score < threshold:
                continue
            candidate["score"] = score
            accepted.append(candidate)
        return accepted

    order = _candidate_order(flat, max_matches)
    accepted = _scan(order)
    if len(accepted) < max_matches and order.size < viable:
        accepted = _scan(np.argsort(flat, kind="stable"))
    return accepted


def _resolve_threshold(pattern: Pattern, min_similarity: Optional[float]) -> float:
    if min_similarity is not None:
        threshold = float(min_similarity)
    elif pattern.min_similarity is not None:
        threshold = float(pattern.min_similarity)
    else:
        threshold = DEFAULT_MIN_SIMILARITY
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"min_similarity must be within [0, 1], got {threshold}")
    return threshold


def match(
    pattern: Pattern,
    capture: ImageData,
    search_region: Optional[Rectangle] = None,
    min_similarity: Optional[float] = None,
    scale: float = 1.0,
    *,
    normalize_formats: bool = True,
    background: Tuple[int, int, int] = DEFAULT_BACKGROUND,
    max_matches: int = MAX_MATCHES,
    timeout: Optional[float] = None,
    deadline: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
    target_id: Optional[str] = None,
) -> List[Match]:
    """
    Locate ``pattern`` in ``capture``.

    Args:
        pattern: Pattern to search for.
        capture: Captured screen image.
        search_region: Absolute rectangle to restrict the scan to; the full
            capture when None. Must lie inside the capture.
        min_similarity: Threshold in [0, 1]; defaults to the pattern's own
            threshold, then DEFAULT_MIN_SIMILARITY.
        scale: Factor applied to the pattern before matching (capture pixels
            per pattern pixel).
        normalize_formats: Normalize both images to 8-bit RGB first. Passing
            False compares stored channel values as-is (diagnostics only).
        background: Compositing background for transparent pixels.
        max_matches: Upper bound on the number of matches returned.
        timeout: Seconds allowed for the search.
        deadline: Absolute ``time.monotonic()`` deadline; combined with
            ``timeout`` when both are given.
        cancel: Event checked between scan bands and candidate scorings.
        target_id: Attached to every Match produced.

    Returns:
        Matches with score >= threshold in absolute capture coordinates,
        sorted by score descending, then by position. Empty when nothing
        qualifies.

    Raises:
        InvalidRegion: The region is empty or outside the capture, or the
            scaled pattern is empty or larger than the region.
        MatchTimeout: The deadline passed.
        MatchCancelled: The cancellation event was set.
    """
    profile_value = os.getenv(PROFILE_ENV, "").strip().lower()
    profile = profile_value not in ("", "0", "false", "no")
    if profile:
        t0 = time.perf_counter()
        marks: List[Tuple[str, float]] = []

    if scale <= 0:
        raise ValueError(f"Scale factor must be positive, got {scale}")
    threshold = _resolve_threshold(pattern, min_similarity)
    if timeout is not None:
        limit = time.monotonic() + timeout
        deadline = limit if deadline is None else min(deadline, limit)
    _check_interrupt(deadline, cancel)

    bounds = Rectangle.covering(capture.size)
    region = search_region if search_region is not None else bounds
    if region.is_empty:
        raise InvalidRegion(f"Search region {region.as_tuple()} has zero area")
    if not bounds.contains(region):
        raise InvalidRegion(
            f"Search region {region.as_tuple()} lies outside the "
            f"{capture.width}x{capture.height} capture"
        )

    patt = _get_scaled_pattern(pattern, scale, normalize_formats, background)
    ph, pw = patt.shape[:2]
    if pw == 0 or ph == 0:
        raise InvalidRegion(
            f"Pattern {pattern.name!r} has zero area at scale {scale:.4f}"
        )
    if pw > region.width or ph > region.height:
        raise InvalidRegion(
            f"Pattern {pattern.name!r} ({pw}x{ph} at scale {scale:.4f}) does not "
            f"fit in search region {region.width}x{region.height}"
        )
    if profile:
        marks.append(("pattern", time.perf_counter()))

    # only the searched rectangle is converted
    roi = _prepare_pixels(_crop(capture, region), normalize_formats, background)
    if profile:
        marks.append(("capture", time.perf_counter()))

    mean_sq = _scan_mean_sq(roi, patt, deadline, cancel)
    if profile:
        marks.append(("scan", time.perf_counter()))

    accepted = _collect_matches(
        roi, patt, mean_sq, threshold, max_matches, deadline, cancel
    )
    if profile:
        marks.append(("score", time.perf_counter()))

    accepted.sort(key=lambda c: (-c["score"], c["tl"][1], c["tl"][0]))
    matches = [
        Match(
            region=Rectangle(c["tl"][0] + region.x, c["tl"][1] + region.y, pw, ph),
            score=c["score"],
            pattern_name=pattern.name,
            target_id=target_id,
            scale=float(scale),
        )
        for c in accepted
    ]

    if profile:
        t_end = time.perf_counter()
        prev = t0
        parts = []
        for label, ts in marks:
            parts.append(f"{label}={((ts - prev) * 1000.0):.2f}ms")
            prev = ts
        parts.append(f"total={((t_end - t0) * 1000.0):.2f}ms")
        logger.info("matcher profile: %s", " ".join(parts))

    logger.debug(
        "Pattern %r: %d match(es) >= %.2f in %s at scale %.3f (best %s)",
        pattern.name,
        len(matches),
        threshold,
        region.as_tuple(),
        scale,
        f"{matches[0].score:.3f}" if matches else "n/a",
    )
    return matches


def merge_matches(matches: Sequence[Match], max_matches: int = MAX_MATCHES) -> List[Match]:
    """
    Rank matches from several patterns of one target into a single list.

    Matches are ordered by score, then position, then pattern name; a match
    whose center lies within the proximity threshold of a better one is
    dropped, so a pattern and its rescaled variant do not both report the
    same on-screen element.
    """
    ranked = sorted(matches, key=lambda m: (-m.score, m.y, m.x, m.pattern_name))
    kept: List[Match] = []
    kept_boxes: List[Dict] = []
    for m in ranked:
        if len(kept) >= max_matches:
            break
        box = {
            "tl": (m.x, m.y),
            "br": (m.region.right, m.region.bottom),
            "center": m.center,
        }
        if any(_candidate_is_close(box, existing) for existing in kept_boxes):
            continue
        kept.append(m)
        kept_boxes.append(box)
    return kept
