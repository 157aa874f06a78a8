"""Heuristics that explain a disappointing search result."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from .matcher import Match

logger = logging.getLogger(__name__)

# ---------- configuration ----------
GOOD_MATCH_THRESHOLD = 0.8
ACCEPTABLE_MATCH_THRESHOLD = 0.7
SUSPICIOUS_MATCH_THRESHOLD = 0.5
MAX_EXPECTED_MATCHES = 5
BLACK_SCREEN_MATCH_COUNT = 20
TOP_REPORTED = 5


class MatchQuality(Enum):
    NONE = "none"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    SUSPICIOUS = "suspicious"
    POOR = "poor"


@dataclass
class QualityReport:
    pattern_name: str
    count: int
    quality: MatchQuality
    best: Optional[float] = None
    average: Optional[float] = None
    worst: Optional[float] = None
    too_many: bool = False
    hints: List[str] = field(default_factory=list)
    top: List[Match] = field(default_factory=list)


def classify_score(score: float) -> MatchQuality:
    if score >= GOOD_MATCH_THRESHOLD:
        return MatchQuality.GOOD
    if score >= ACCEPTABLE_MATCH_THRESHOLD:
        return MatchQuality.ACCEPTABLE
    if score >= SUSPICIOUS_MATCH_THRESHOLD:
        return MatchQuality.SUSPICIOUS
    return MatchQuality.POOR


def assess_matches(pattern_name: str, matches: Sequence[Match]) -> QualityReport:
    """
    Grade a match list by its best score and its size, and log the verdict.

    More than MAX_EXPECTED_MATCHES results usually means the threshold is too
    low for the pattern.
    """
    if not matches:
        report = QualityReport(
            pattern_name,
            0,
            MatchQuality.NONE,
            hints=[
                "pattern not on screen",
                "similarity threshold too high",
                "capture is black or corrupted",
                "pattern cut at a different resolution or DPI",
            ],
        )
        logger.warning("No matches for %r: %s", pattern_name, "; ".join(report.hints))
        return report

    scores = [m.score for m in matches]
    best = max(scores)
    report = QualityReport(
        pattern_name=pattern_name,
        count=len(matches),
        quality=classify_score(best),
        best=best,
        average=sum(scores) / len(scores),
        worst=min(scores),
        too_many=len(matches) > MAX_EXPECTED_MATCHES,
        top=sorted(matches, key=lambda m: (-m.score, m.y, m.x))[:TOP_REPORTED],
    )
    if report.quality is MatchQuality.SUSPICIOUS:
        report.hints += [
            "resolution or display scaling differs from the pattern",
            "color depth or alpha mismatch",
            "UI changed since the pattern was cut",
        ]
    elif report.quality is MatchQuality.POOR:
        report.hints += [
            "capture is black or corrupted",
            "wrong pattern image",
            "major resolution or DPI mismatch",
        ]
    if report.too_many:
        report.hints += [
            "raise the similarity threshold",
            "restrict the search region",
        ]

    if report.quality in (MatchQuality.GOOD, MatchQuality.ACCEPTABLE):
        log = logger.info
    else:
        log = logger.warning
    log(
        "Match quality for %r: %s (%d match(es), best %.3f, avg %.3f, worst %.3f)",
        pattern_name,
        report.quality.value,
        report.count,
        report.best,
        report.average,
        report.worst,
    )
    for hint in report.hints:
        logger.debug("  hint: %s", hint)
    return report


def is_probably_black_screen(matches: Sequence[Match]) -> bool:
    """A blank capture matches everywhere, weakly."""
    if not matches:
        return False
    return max(m.score for m in matches) < SUSPICIOUS_MATCH_THRESHOLD and (
        len(matches) > BLACK_SCREEN_MATCH_COUNT
    )
