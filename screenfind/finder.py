"""
Target-level search: resolve the region, estimate the scale, match, cache.

A TargetFinder owns the trackable targets, the match cache and the region
dependency graph. Each ``find_target`` call computes its own scale factor;
nothing about scaling is shared between calls.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .cache import MatchCache, TargetStatus
from .errors import InvalidRegion, ScreenFindError, UnknownTarget
from .geometry import Rectangle, RegionOffset
from .images import DEFAULT_BACKGROUND, ImageData, describe_image
from .matcher import (
    DEFAULT_MIN_SIMILARITY,
    MAX_MATCHES,
    Match,
    Pattern,
    match,
    merge_matches,
)
from .regions import RegionDependency, RegionDependencyGraph, RegionResolver
from .scaling import (
    CALIBRATION_MARGIN,
    CALIBRATION_MIN_SCORE,
    SCALE_CANDIDATES,
    DisplayMetrics,
    ScaleEstimate,
    estimate_scale,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


@dataclass
class TrackableTarget:
    """
    A visual element identified by one or more patterns.

    Attributes:
        target_id: Identity used by the cache and the dependency graph.
        patterns: Alternative appearances of the element (for example the
            same icon cut at two display scales). At least one is required.
        region: Fixed search region used when the target has no anchor.
        min_similarity: Overrides the finder's default threshold.
        scale_hint: Scale factor to fall back on when estimation is not decisive.
    """

    target_id: str
    patterns: List[Pattern]
    region: Optional[Rectangle] = None
    min_similarity: Optional[float] = None
    scale_hint: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.patterns:
            raise ValueError(f"Target {self.target_id!r} needs at least one pattern")


@dataclass
class FindResult:
    target_id: str
    matches: List[Match] = field(default_factory=list)
    error: Optional[ScreenFindError] = None

    @property
    def found(self) -> bool:
        return self.error is None and bool(self.matches)


class TargetFinder:
    def __init__(
        self,
        *,
        cache: Optional[MatchCache] = None,
        graph: Optional[RegionDependencyGraph] = None,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
        scale_candidates: Sequence[float] = SCALE_CANDIDATES,
        calibration_margin: float = CALIBRATION_MARGIN,
        calibration_min_score: float = CALIBRATION_MIN_SCORE,
        max_matches: int = MAX_MATCHES,
        background: Tuple[int, int, int] = DEFAULT_BACKGROUND,
        match_timeout: Optional[float] = None,
        display_metrics: Optional[DisplayMetrics] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.cache = cache if cache is not None else MatchCache()
        self.graph = graph if graph is not None else RegionDependencyGraph()
        self.resolver = RegionResolver(self.graph, self.cache)
        self.min_similarity = min_similarity
        self.scale_candidates = tuple(scale_candidates)
        self.calibration_margin = calibration_margin
        self.calibration_min_score = calibration_min_score
        self.max_matches = max_matches
        self.background = tuple(background)
        self.match_timeout = match_timeout
        self.display_metrics = display_metrics
        self.max_workers = max(1, int(max_workers))
        self._targets: Dict[str, TrackableTarget] = {}
        self._lock = threading.Lock()

    # ---------- registration ----------
    def add_target(self, target: TrackableTarget) -> TrackableTarget:
        with self._lock:
            self._targets[target.target_id] = target
        self.resolver.set_fixed_region(target.target_id, target.region)
        logger.debug(
            "Registered target %r with %d pattern(s)",
            target.target_id,
            len(target.patterns),
        )
        return target

    def target(self, target_id: str) -> TrackableTarget:
        try:
            return self._targets[target_id]
        except KeyError:
            raise UnknownTarget(target_id) from None

    @property
    def target_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._targets)

    def register_dependency(
        self,
        target_id: str,
        anchor_id: str,
        offset: Optional[RegionOffset] = None,
    ) -> RegionDependency:
        """
        Derive ``target_id``'s search region from ``anchor_id``'s last match.

        Raises:
            UnknownTarget: Either id is not registered.
            CyclicDependency: The edge would create a cycle.
        """
        self.target(target_id)
        self.target(anchor_id)
        return self.graph.add_dependency(target_id, anchor_id, offset)

    # ---------- queries ----------
    def resolve_search_region(
        self, target_id: str, capture_size: Optional[Tuple[int, int]] = None
    ) -> Optional[Rectangle]:
        self.target(target_id)
        return self.resolver.resolve(target_id, capture_size)

    def last_matches(self, target_id: str) -> List[Match]:
        return self.cache.get(target_id)

    def status(self, target_id: str) -> TargetStatus:
        return self.cache.status(target_id)

    def estimate_pattern_scale(
        self,
        target: TrackableTarget,
        pattern: Pattern,
        capture: ImageData,
        calibration: Optional[ImageData] = None,
        *,
        deadline: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ScaleEstimate:
        return estimate_scale(
            pattern.native_size,
            capture.size,
            target.scale_hint,
            display_metrics=self.display_metrics,
            calibration=(pattern, calibration) if calibration is not None else None,
            candidates=self.scale_candidates,
            margin=self.calibration_margin,
            min_score=self.calibration_min_score,
            deadline=deadline,
            cancel=cancel,
        )

    # ---------- search ----------
    def find_target(
        self,
        target_id: str,
        capture: ImageData,
        *,
        scale: Optional[float] = None,
        calibration: Optional[ImageData] = None,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> List[Match]:
        """
        Search the capture for a target and record the result.

        The search region comes from the resolver, so a dependent target is
        only searched near its anchor. ``scale`` forces a factor for every
        pattern; otherwise it is estimated per pattern for this call, with
        ``calibration`` as the optional calibration capture.

        Returns:
            Matches across all of the target's patterns, best first. The list
            (possibly empty) is saved to the cache before returning.

        Raises:
            UnknownTarget: ``target_id`` is not registered.
            ResolutionError: The search region cannot be derived yet.
            MatchError: Invalid region, timeout or cancellation. The cache
                is left untouched.
        """
        target = self.target(target_id)
        if capture.width == 0 or capture.height == 0:
            raise InvalidRegion(
                f"Blank {capture.width}x{capture.height} capture; retry the capture"
            )
        describe_image(capture, f"capture for {target_id}")
        region = self.resolver.resolve(target_id)

        limit = timeout if timeout is not None else self.match_timeout
        deadline = time.monotonic() + limit if limit is not None else None
        threshold = (
            target.min_similarity
            if target.min_similarity is not None
            else self.min_similarity
        )

        found: List[Match] = []
        skipped: List[InvalidRegion] = []
        for pattern in target.patterns:
            describe_image(pattern.image, f"pattern {pattern.name}")
            if scale is not None:
                factor = float(scale)
            else:
                estimate = self.estimate_pattern_scale(
                    target,
                    pattern,
                    capture,
                    calibration,
                    deadline=deadline,
                    cancel=cancel,
                )
                factor = estimate.value
                logger.debug(
                    "Pattern %r scale %.3f (%s)", pattern.name, factor, estimate.strategy
                )
            search_region = region if region is not None else pattern.region
            try:
                found.extend(
                    match(
                        pattern,
                        capture,
                        search_region,
                        min_similarity=(
                            pattern.min_similarity
                            if pattern.min_similarity is not None
                            else threshold
                        ),
                        scale=factor,
                        background=self.background,
                        max_matches=self.max_matches,
                        deadline=deadline,
                        cancel=cancel,
                        target_id=target_id,
                    )
                )
            except InvalidRegion as exc:
                logger.debug("Pattern %r not searchable: %s", pattern.name, exc)
                skipped.append(exc)

        if len(skipped) == len(target.patterns):
            raise skipped[0]

        matches = merge_matches(found, self.max_matches)
        self.cache.save(target_id, matches)
        if matches:
            logger.info(
                "Found %r: %d match(es), best %.3f at %s",
                target_id,
                len(matches),
                matches[0].score,
                matches[0].region.as_tuple(),
            )
        else:
            logger.info(
                "No match for %r in %s",
                target_id,
                region.as_tuple() if region is not None else "full capture",
            )
        return matches

    def _find_one(
        self,
        target_id: str,
        capture: ImageData,
        timeout: Optional[float],
        cancel: Optional[threading.Event],
    ) -> FindResult:
        try:
            matches = self.find_target(
                target_id, capture, timeout=timeout, cancel=cancel
            )
        except ScreenFindError as exc:
            logger.warning("Search for %r failed: %s", target_id, exc)
            return FindResult(target_id, error=exc)
        return FindResult(target_id, matches)

    def find_all(
        self,
        capture: ImageData,
        target_ids: Optional[Iterable[str]] = None,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Dict[str, FindResult]:
        """
        Search several targets, anchors before their dependents.

        Targets are grouped by dependency depth; the targets of one group run
        concurrently on a thread pool. A dependent whose anchor was not found
        reports AnchorNotYetFound in its result instead of being searched
        over the whole capture. Cancellation stops further groups.
        """
        ids = list(target_ids) if target_ids is not None else self.target_ids
        for target_id in ids:
            self.target(target_id)

        results: Dict[str, FindResult] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            for layer in self.graph.layers(ids):
                if cancel is not None and cancel.is_set():
                    break
                futures = {
                    target_id: pool.submit(
                        self._find_one, target_id, capture, timeout, cancel
                    )
                    for target_id in layer
                }
                for target_id in layer:
                    results[target_id] = futures[target_id].result()
        return results
