"""Rectangle and offset value types in capture-pixel coordinates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class RegionOffset:
    """Additive adjustment applied to an anchor match to derive a search region."""

    add_x: int = 0
    add_y: int = 0
    add_w: int = 0
    add_h: int = 0


@dataclass(frozen=True)
class Rectangle:
    x: int
    y: int
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise ValueError(
                f"Rectangle dimensions must be non-negative, got "
                f"{self.width}x{self.height}"
            )

    @classmethod
    def covering(cls, size: Tuple[int, int]) -> "Rectangle":
        """Rectangle spanning a whole image of ``(width, height)``."""
        return cls(0, 0, int(size[0]), int(size[1]))

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    def contains(self, other: "Rectangle") -> bool:
        return (
            self.x <= other.x
            and self.y <= other.y
            and other.right <= self.right
            and other.bottom <= self.bottom
        )

    def offset(self, adj: RegionOffset) -> Tuple[int, int, int, int]:
        # not validated; callers check for non-positive sizes
        return (
            self.x + adj.add_x,
            self.y + adj.add_y,
            self.width + adj.add_w,
            self.height + adj.add_h,
        )

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)
