"""
Scale estimation between a pattern's native resolution and a capture.

Display scaling (125%, 150%, ...) shrinks or grows every UI element in the
capture relative to patterns cut at another DPI. The estimator picks the
factor the pattern has to be resized by before matching, preferring exact
display metrics and falling back to a small calibration sweep.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple

from .errors import InvalidRegion, MatchTimeout
from .geometry import Rectangle
from .images import DEFAULT_BACKGROUND, ImageData
from .matcher import Pattern, match

logger = logging.getLogger(__name__)

# ---------- configuration ----------
SCALE_CANDIDATES = (1.0, 0.8, 0.75, 0.667, 0.5, 1.25, 1.5)
DEFAULT_SCALE = 1.0
CALIBRATION_MARGIN = 0.02
CALIBRATION_MIN_SCORE = 0.70
CALIBRATION_MAX_MATCHES = 5
SIZE_TOLERANCE_PX = 2

Size = Tuple[int, int]


@dataclass(frozen=True)
class DisplayMetrics:
    """Logical (DPI-scaled) and physical pixel dimensions of a display."""

    logical_size: Size
    physical_size: Size

    @property
    def ratio(self) -> float:
        return self.physical_size[0] / float(self.logical_size[0])


@dataclass(frozen=True)
class ScaleEstimate:
    """
    Outcome of scale estimation.

    ``factor`` is None when the scale is unknown (blank capture); ``value``
    then falls back to DEFAULT_SCALE so callers that do not care can proceed.
    """

    factor: Optional[float]
    strategy: str

    @property
    def known(self) -> bool:
        return self.factor is not None

    @property
    def value(self) -> float:
        return self.factor if self.factor is not None else DEFAULT_SCALE


ScaleEstimate.UNKNOWN = ScaleEstimate(None, "unknown")


@dataclass
class CalibrationResult:
    best: Optional[float]
    scores: Dict[float, float] = field(default_factory=dict)
    decisive: bool = False

    @property
    def lead(self) -> Optional[float]:
        """Score difference between the best candidate and the runner-up."""
        ranked = sorted(self.scores.values(), reverse=True)
        if len(ranked) < 2:
            return None
        return ranked[0] - ranked[1]


def _size_in(size: Size, target: Size) -> bool:
    return (
        abs(size[0] - target[0]) <= SIZE_TOLERANCE_PX
        and abs(size[1] - target[1]) <= SIZE_TOLERANCE_PX
    )


def _space_of(size: Size, metrics: DisplayMetrics) -> Optional[str]:
    if _size_in(size, metrics.logical_size):
        return "logical"
    if _size_in(size, metrics.physical_size):
        return "physical"
    return None


def scale_from_metrics(
    metrics: DisplayMetrics, reference_size: Size, capture_size: Size
) -> Optional[float]:
    """
    Factor implied by display metrics, or None if they do not describe the pair.

    A pattern cut in physical pixels searched in a logical capture is scaled
    by logical/physical; the reverse pairing by physical/logical.
    """
    if min(metrics.logical_size) <= 0 or min(metrics.physical_size) <= 0:
        return None
    ref_space = _space_of(reference_size, metrics)
    cap_space = _space_of(capture_size, metrics)
    if ref_space is None or cap_space is None:
        return None
    if ref_space == cap_space:
        return 1.0
    if cap_space == "logical":
        return metrics.logical_size[0] / float(metrics.physical_size[0])
    return metrics.physical_size[0] / float(metrics.logical_size[0])


def calibrate_scale(
    pattern: Pattern,
    calibration_capture: ImageData,
    candidates: Sequence[float] = SCALE_CANDIDATES,
    margin: float = CALIBRATION_MARGIN,
    min_score: float = CALIBRATION_MIN_SCORE,
    search_region: Optional[Rectangle] = None,
    background: Tuple[int, int, int] = DEFAULT_BACKGROUND,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
    deadline: Optional[float] = None,
) -> CalibrationResult:
    """
    Try each candidate factor against a known calibration capture.

    The best-scoring candidate wins only if it reaches ``min_score`` and beats
    the runner-up by at least ``margin``; otherwise the result is marked not
    decisive. Candidates whose resized pattern does not fit are skipped.
    Equal scores prefer the factor closest to 1.0. ``deadline`` and
    ``cancel`` bound the whole sweep, not each candidate.
    """
    if timeout is not None:
        limit = time.monotonic() + timeout
        deadline = limit if deadline is None else min(deadline, limit)
    scores: Dict[float, float] = {}
    for candidate in candidates:
        try:
            found = match(
                pattern,
                calibration_capture,
                search_region,
                min_similarity=0.0,
                scale=candidate,
                background=background,
                max_matches=CALIBRATION_MAX_MATCHES,
                deadline=deadline,
                cancel=cancel,
            )
        except InvalidRegion as exc:
            logger.debug("Scale %.3f skipped: %s", candidate, exc)
            continue
        if found:
            scores[float(candidate)] = found[0].score
        logger.debug(
            "Scale %.3f: best score %s",
            candidate,
            f"{found[0].score:.3f}" if found else "n/a",
        )

    if not scores:
        return CalibrationResult(best=None, scores=scores, decisive=False)
    ranked = sorted(scores.items(), key=lambda kv: (-kv[1], abs(kv[0] - 1.0), kv[0]))
    best, best_score = ranked[0]
    decisive = best_score >= min_score
    if len(ranked) > 1 and best_score - ranked[1][1] < margin:
        decisive = False
    return CalibrationResult(best=best, scores=scores, decisive=decisive)


def estimate_scale(
    reference_size: Optional[Size],
    capture_size: Size,
    prior_hint: Optional[float] = None,
    *,
    display_metrics: Optional[DisplayMetrics] = None,
    calibration: Optional[Tuple[Pattern, ImageData]] = None,
    candidates: Sequence[float] = SCALE_CANDIDATES,
    margin: float = CALIBRATION_MARGIN,
    min_score: float = CALIBRATION_MIN_SCORE,
    timeout: Optional[float] = None,
    deadline: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
) -> ScaleEstimate:
    """
    Determine the factor to resize a pattern by before searching a capture.

    Strategies, in order: display metrics, identical resolutions, calibration
    sweep, the caller's prior hint, then DEFAULT_SCALE. A zero-sized capture
    yields ``ScaleEstimate.UNKNOWN`` so the caller can retry the capture.
    Never raises for an undecidable scale; a calibration sweep that runs past
    ``deadline`` falls back, and a set ``cancel`` event raises MatchCancelled.
    """
    if capture_size[0] <= 0 or capture_size[1] <= 0:
        logger.warning(
            "Blank capture (%dx%d); scale unknown", capture_size[0], capture_size[1]
        )
        return ScaleEstimate.UNKNOWN

    has_reference = reference_size is not None and min(reference_size) > 0

    if display_metrics is not None and has_reference:
        factor = scale_from_metrics(display_metrics, reference_size, capture_size)
        if factor is not None:
            return ScaleEstimate(factor, "display-metrics")
        logger.debug(
            "Display metrics %s do not describe %s -> %s",
            display_metrics,
            reference_size,
            capture_size,
        )

    if has_reference and tuple(reference_size) == tuple(capture_size):
        return ScaleEstimate(1.0, "identity")

    if calibration is not None:
        pattern, calibration_capture = calibration
        try:
            result = calibrate_scale(
                pattern,
                calibration_capture,
                candidates=candidates,
                margin=margin,
                min_score=min_score,
                timeout=timeout,
                cancel=cancel,
                deadline=deadline,
            )
        except MatchTimeout:
            logger.warning("Scale calibration timed out; falling back")
        else:
            if result.decisive:
                return ScaleEstimate(result.best, "calibration")
            logger.warning(
                "Scale calibration not decisive (best=%s, lead=%s)",
                result.best,
                f"{result.lead:.3f}" if result.lead is not None else "n/a",
            )

    if prior_hint is not None and prior_hint > 0:
        return ScaleEstimate(float(prior_hint), "prior")

    logger.warning(
        "Scale unknown for %s -> %s; defaulting to %.2f",
        reference_size,
        capture_size,
        DEFAULT_SCALE,
    )
    return ScaleEstimate(DEFAULT_SCALE, "default")
