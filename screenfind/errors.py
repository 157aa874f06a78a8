"""Exception hierarchy shared by the matcher, the cache and the region resolver."""


class ScreenFindError(Exception):
    """Base error for the package."""


class MatchError(ScreenFindError):
    """Base exception for pattern-matching failures."""


class UnsupportedPixelFormat(MatchError, ValueError):
    """The image uses a channel layout the normalizer does not recognize."""

    def __init__(self, mode: str):
        super().__init__(f"Unsupported pixel format: {mode!r}")
        self.mode = mode


class InvalidRegion(MatchError):
    """The search region or the pattern cannot be searched as given."""


class MatchTimeout(MatchError, TimeoutError):
    """The caller's deadline passed before the scan finished."""


class MatchCancelled(MatchError):
    """The caller's cancellation event was set during the scan."""


class GraphError(ScreenFindError):
    """Base exception for dependency-graph mutations."""


class ResolutionError(ScreenFindError):
    """Base exception for search-region resolution."""


class CyclicDependency(GraphError, ResolutionError):
    def __init__(self, target_id: str, anchor_id: str):
        super().__init__(
            f"Dependency {target_id!r} -> {anchor_id!r} would create a cycle"
        )
        self.target_id = target_id
        self.anchor_id = anchor_id


class UnknownTarget(ScreenFindError, KeyError):
    def __init__(self, target_id: str):
        super().__init__(target_id)
        self.target_id = target_id

    def __str__(self) -> str:
        return f"Unknown target: {self.target_id!r}"


class AnchorNotYetFound(ResolutionError):
    """The anchor has no cached match, so the dependent region cannot be derived yet."""

    def __init__(self, target_id: str, anchor_id: str):
        super().__init__(
            f"Cannot resolve {target_id!r}: anchor {anchor_id!r} has not been found"
        )
        self.target_id = target_id
        self.anchor_id = anchor_id


class DegenerateRegion(ResolutionError):
    """The anchor match plus offset produced a non-positive width or height."""

    def __init__(self, target_id: str, x: int, y: int, width: int, height: int):
        super().__init__(
            f"Region for {target_id!r} is degenerate: "
            f"x={x} y={y} w={width} h={height}"
        )
        self.target_id = target_id
        self.bounds = (x, y, width, height)
