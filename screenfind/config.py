"""Finder configuration dataclass and loading utilities.

Values come from the defaults below, then an optional JSON file, then
``SCREENFIND_*`` environment variables. Targets and dependency edges are
declared in the JSON file::

    {
      "pattern_dir": "images",
      "targets": {
        "claude-icon": {"patterns": ["claude-icon-1", "claude-icon-1-80"]},
        "prompt": {"patterns": ["prompt"], "min_similarity": 0.8}
      },
      "dependencies": [
        {"target": "prompt", "anchor": "claude-icon", "offset": [10, -20, 0, 0]}
      ],
      "display_metrics": {"logical": [1536, 864], "physical": [1920, 1080]}
    }
"""
from __future__ import annotations

import copy
import json
import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .capture import CaptureSource, create_capture_source
from .finder import TargetFinder, TrackableTarget
from .geometry import Rectangle, RegionOffset
from .patterns import PatternStore
from .scaling import DisplayMetrics

logger = logging.getLogger(__name__)

ENV_PREFIX = "SCREENFIND_"

_DEFAULTS: Dict[str, Any] = {
    "min_similarity": 0.70,
    "scale_candidates": [1.0, 0.8, 0.75, 0.667, 0.5, 1.25, 1.5],
    "calibration_margin": 0.02,
    "calibration_min_score": 0.70,
    "max_matches": 20,
    "normalize_background": [30, 30, 30],
    "match_timeout": None,
    "capture_backend": "screen",
    "capture_path": None,
    "pattern_dir": "images",
    "pattern_native_size": None,
    "max_workers": 4,
    "display_metrics": None,
    "targets": {},
    "dependencies": [],
}

# environment values are strings; these keys are parsed before use
_ENV_PARSERS = {
    "min_similarity": float,
    "calibration_margin": float,
    "calibration_min_score": float,
    "max_matches": int,
    "max_workers": int,
    "match_timeout": lambda v: None if v.lower() in ("", "none") else float(v),
    "scale_candidates": lambda v: [float(p) for p in v.split(",") if p.strip()],
    "normalize_background": lambda v: [int(p) for p in v.split(",")],
    "capture_backend": str,
    "capture_path": str,
    "pattern_dir": str,
}


@dataclass
class FinderConfig:
    min_similarity: float = _DEFAULTS["min_similarity"]
    scale_candidates: List[float] = field(
        default_factory=lambda: list(_DEFAULTS["scale_candidates"])
    )
    calibration_margin: float = _DEFAULTS["calibration_margin"]
    calibration_min_score: float = _DEFAULTS["calibration_min_score"]
    max_matches: int = _DEFAULTS["max_matches"]
    normalize_background: List[int] = field(
        default_factory=lambda: list(_DEFAULTS["normalize_background"])
    )
    match_timeout: Optional[float] = _DEFAULTS["match_timeout"]
    capture_backend: str = _DEFAULTS["capture_backend"]
    capture_path: Optional[str] = _DEFAULTS["capture_path"]
    pattern_dir: str = _DEFAULTS["pattern_dir"]
    pattern_native_size: Optional[List[int]] = _DEFAULTS["pattern_native_size"]
    max_workers: int = _DEFAULTS["max_workers"]
    display_metrics: Optional[Dict[str, List[int]]] = _DEFAULTS["display_metrics"]
    targets: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    dependencies: List[Dict[str, Any]] = field(default_factory=list)
    # Unknown keys retained so a round-trip does not lose them
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0.0 <= self.min_similarity <= 1.0:
            raise ValueError(
                f"min_similarity must be within [0, 1], got {self.min_similarity}"
            )
        if not self.scale_candidates or min(self.scale_candidates) <= 0:
            raise ValueError("scale_candidates must be non-empty and positive")
        if self.calibration_margin < 0:
            raise ValueError("calibration_margin must be non-negative")
        if len(self.normalize_background) != 3:
            raise ValueError("normalize_background must be an RGB triple")

    @property
    def background(self) -> Tuple[int, int, int]:
        r, g, b = self.normalize_background
        return (int(r), int(g), int(b))

    def metrics(self) -> Optional[DisplayMetrics]:
        if not self.display_metrics:
            return None
        logical = self.display_metrics["logical"]
        physical = self.display_metrics["physical"]
        return DisplayMetrics(
            logical_size=(int(logical[0]), int(logical[1])),
            physical_size=(int(physical[0]), int(physical[1])),
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        extra = d.pop("extra", {})
        d.update(extra)
        return d


def _env_overrides(environ) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, parse in _ENV_PARSERS.items():
        raw = environ.get(ENV_PREFIX + key.upper())
        if raw is None:
            continue
        try:
            out[key] = parse(raw.strip())
        except ValueError as exc:
            raise ValueError(f"Invalid {ENV_PREFIX}{key.upper()}={raw!r}: {exc}") from exc
    return out


def load_config(path: Optional[str] = "screenfind.json", environ=None) -> FinderConfig:
    """
    Build a FinderConfig from defaults, an optional JSON file and the environment.

    A missing file is not an error; a malformed one is.
    """
    data: Dict[str, Any] = {}
    if path and os.path.isfile(path):
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f) or {}
        logger.debug("Loaded configuration from %s", path)
    merged = {**copy.deepcopy(_DEFAULTS), **data}
    merged.update(_env_overrides(os.environ if environ is None else environ))
    fields = [k for k in FinderConfig.__annotations__ if k != "extra"]
    extra = {k: v for k, v in merged.items() if k not in fields}
    return FinderConfig(**{k: merged[k] for k in fields if k in merged}, extra=extra)


def save_config(cfg: FinderConfig, path: str = "screenfind.json") -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(cfg.to_dict(), f, indent=2)


def _rect(values: Optional[List[int]]) -> Optional[Rectangle]:
    if values is None:
        return None
    x, y, w, h = (int(v) for v in values)
    return Rectangle(x, y, w, h)


def _offset(values) -> RegionOffset:
    if isinstance(values, dict):
        return RegionOffset(**{k: int(v) for k, v in values.items()})
    add_x, add_y, add_w, add_h = (int(v) for v in values)
    return RegionOffset(add_x, add_y, add_w, add_h)


def build_finder(
    cfg: FinderConfig, store: Optional[PatternStore] = None
) -> TargetFinder:
    """
    Create a TargetFinder with every configured target and dependency edge.

    Raises:
        RuntimeError: A referenced pattern file is missing.
        UnknownTarget: A dependency names an undeclared target.
        CyclicDependency: The declared dependencies contain a cycle.
    """
    if store is None:
        native = tuple(cfg.pattern_native_size) if cfg.pattern_native_size else None
        store = PatternStore(cfg.pattern_dir, native_size=native)
    finder = TargetFinder(
        min_similarity=cfg.min_similarity,
        scale_candidates=cfg.scale_candidates,
        calibration_margin=cfg.calibration_margin,
        calibration_min_score=cfg.calibration_min_score,
        max_matches=cfg.max_matches,
        background=cfg.background,
        match_timeout=cfg.match_timeout,
        display_metrics=cfg.metrics(),
        max_workers=cfg.max_workers,
    )
    for target_id, spec in sorted(cfg.targets.items()):
        finder.add_target(
            TrackableTarget(
                target_id=target_id,
                patterns=store.get_many(spec.get("patterns", [target_id])),
                region=_rect(spec.get("region")),
                min_similarity=spec.get("min_similarity"),
                scale_hint=spec.get("scale_hint"),
            )
        )
    for edge in cfg.dependencies:
        finder.register_dependency(
            edge["target"], edge["anchor"], _offset(edge.get("offset", [0, 0, 0, 0]))
        )
    logger.info(
        "Finder ready: %d target(s), %d dependency edge(s)",
        len(cfg.targets),
        len(cfg.dependencies),
    )
    return finder


def build_capture_source(cfg: FinderConfig) -> CaptureSource:
    if cfg.capture_backend == "file":
        return create_capture_source("file", path=cfg.capture_path)
    return create_capture_source(cfg.capture_backend)


__all__ = [
    "FinderConfig",
    "load_config",
    "save_config",
    "build_finder",
    "build_capture_source",
]
