import pytest

from screenfind.geometry import Rectangle, RegionOffset


def test_rectangle_edges_and_containment():
    outer = Rectangle.covering((320, 240))
    inner = Rectangle(40, 60, 30, 20)
    assert outer == Rectangle(0, 0, 320, 240)
    assert (inner.right, inner.bottom, inner.area) == (70, 80, 600)
    assert inner.center == (55.0, 70.0)
    assert outer.contains(inner)
    assert not inner.contains(outer)
    assert not outer.contains(Rectangle(300, 230, 30, 20))


def test_zero_area_allowed_negative_rejected():
    assert Rectangle(5, 5, 0, 10).is_empty
    with pytest.raises(ValueError):
        Rectangle(0, 0, -1, 10)


def test_offset_returns_unvalidated_bounds():
    anchor = Rectangle(100, 200, 300, 400)
    assert anchor.offset(RegionOffset(10, -20, -350, 0)) == (110, 180, -50, 400)
