"""
Search regions derived from where another target was last found.

A dependency ``B -> A`` with offset ``(add_x, add_y, add_w, add_h)`` says B is
searched inside A's most recent match shifted and grown by the offset. The
graph is kept acyclic at registration time, so resolution always terminates.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .cache import MatchCache
from .errors import AnchorNotYetFound, CyclicDependency, DegenerateRegion, GraphError
from .geometry import Rectangle, RegionOffset

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegionDependency:
    target_id: str
    anchor_id: str
    offset: RegionOffset = field(default_factory=RegionOffset)


class RegionDependencyGraph:
    """Edges ``target -> anchor``; each target has at most one anchor."""

    def __init__(self) -> None:
        self._edges: Dict[str, RegionDependency] = {}
        self._lock = threading.Lock()

    def add_dependency(
        self,
        target_id: str,
        anchor_id: str,
        offset: Optional[RegionOffset] = None,
    ) -> RegionDependency:
        """
        Register ``target_id -> anchor_id``.

        Re-registering the same pair replaces the offset. The graph is left
        unchanged when the call fails.

        Raises:
            CyclicDependency: The edge is a self-loop or closes a cycle.
            GraphError: ``target_id`` already depends on a different anchor.
        """
        if target_id == anchor_id:
            raise CyclicDependency(target_id, anchor_id)
        dependency = RegionDependency(target_id, anchor_id, offset or RegionOffset())
        with self._lock:
            existing = self._edges.get(target_id)
            if existing is not None and existing.anchor_id != anchor_id:
                raise GraphError(
                    f"{target_id!r} already depends on {existing.anchor_id!r}"
                )
            node: Optional[str] = anchor_id
            while node is not None:
                if node == target_id:
                    raise CyclicDependency(target_id, anchor_id)
                edge = self._edges.get(node)
                node = edge.anchor_id if edge is not None else None
            self._edges[target_id] = dependency
        logger.debug("Registered dependency %r -> %r %s", target_id, anchor_id, offset)
        return dependency

    def remove_dependency(self, target_id: str) -> Optional[RegionDependency]:
        with self._lock:
            return self._edges.pop(target_id, None)

    def dependency_of(self, target_id: str) -> Optional[RegionDependency]:
        return self._edges.get(target_id)

    def dependents_of(self, anchor_id: str) -> List[str]:
        with self._lock:
            edges = list(self._edges.values())
        return sorted(e.target_id for e in edges if e.anchor_id == anchor_id)

    def chain(self, target_id: str) -> List[str]:
        """``[target, anchor, anchor's anchor, ...]``."""
        out = [target_id]
        edge = self._edges.get(target_id)
        while edge is not None:
            out.append(edge.anchor_id)
            edge = self._edges.get(edge.anchor_id)
        return out

    def depth(self, target_id: str) -> int:
        return len(self.chain(target_id)) - 1

    def layers(self, target_ids: Iterable[str]) -> List[List[str]]:
        """Group targets by chain depth so anchors come before their dependents."""
        grouped: Dict[int, List[str]] = {}
        for target_id in target_ids:
            grouped.setdefault(self.depth(target_id), []).append(target_id)
        return [sorted(grouped[d]) for d in sorted(grouped)]

    def edges(self) -> List[RegionDependency]:
        with self._lock:
            return list(self._edges.values())

    def __contains__(self, target_id: object) -> bool:
        return target_id in self._edges

    def __len__(self) -> int:
        return len(self._edges)


class RegionResolver:
    """Computes the effective search region of a target on demand."""

    def __init__(self, graph: RegionDependencyGraph, cache: MatchCache) -> None:
        self.graph = graph
        self.cache = cache
        self._fixed: Dict[str, Rectangle] = {}

    def set_fixed_region(self, target_id: str, region: Optional[Rectangle]) -> None:
        if region is None:
            self._fixed.pop(target_id, None)
        else:
            self._fixed[target_id] = region

    def resolve(
        self, target_id: str, capture_size: Optional[Tuple[int, int]] = None
    ) -> Optional[Rectangle]:
        """
        Effective search region of ``target_id``.

        Targets without a dependency get their fixed region, else the whole
        capture (``None`` when ``capture_size`` is not given). Dependent
        targets resolve their anchor chain first and then offset the anchor's
        best cached match.

        Raises:
            AnchorNotYetFound: An anchor in the chain has no cached match.
            DegenerateRegion: The offset leaves a non-positive width or height.
        """
        dependency = self.graph.dependency_of(target_id)
        if dependency is None:
            fixed = self._fixed.get(target_id)
            if fixed is not None:
                return fixed
            return Rectangle.covering(capture_size) if capture_size is not None else None

        if self.graph.dependency_of(dependency.anchor_id) is not None:
            self.resolve(dependency.anchor_id, capture_size)

        anchor = self.cache.best(dependency.anchor_id)
        if anchor is None:
            raise AnchorNotYetFound(target_id, dependency.anchor_id)

        x, y, w, h = anchor.region.offset(dependency.offset)
        if w <= 0 or h <= 0:
            raise DegenerateRegion(target_id, x, y, w, h)
        region = Rectangle(x, y, w, h)
        logger.debug(
            "Resolved %r from anchor %r at %s -> %s",
            target_id,
            dependency.anchor_id,
            anchor.region.as_tuple(),
            region.as_tuple(),
        )
        return region
