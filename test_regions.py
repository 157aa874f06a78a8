import pytest

from screenfind.cache import MatchCache
from screenfind.errors import (
    AnchorNotYetFound,
    CyclicDependency,
    DegenerateRegion,
    GraphError,
    ResolutionError,
)
from screenfind.geometry import Rectangle, RegionOffset
from screenfind.matcher import Match
from screenfind.regions import RegionDependencyGraph, RegionResolver


@pytest.fixture
def graph():
    return RegionDependencyGraph()


@pytest.fixture
def cache():
    return MatchCache()


@pytest.fixture
def resolver(graph, cache):
    return RegionResolver(graph, cache)


def _found(cache, target_id, x, y, w, h, score=0.9):
    cache.save(target_id, [Match(Rectangle(x, y, w, h), score, target_id, target_id)])


def test_resolves_anchor_plus_offset(graph, cache, resolver):
    _found(cache, "A", 100, 200, 300, 400)
    graph.add_dependency("B", "A", RegionOffset(add_x=10, add_y=-20, add_w=0, add_h=0))
    assert resolver.resolve("B") == Rectangle(110, 180, 300, 400)


def test_resolution_follows_latest_anchor_match(graph, cache, resolver):
    graph.add_dependency("B", "A", RegionOffset(5, 5, 10, 10))
    _found(cache, "A", 0, 0, 50, 50)
    assert resolver.resolve("B") == Rectangle(5, 5, 60, 60)
    _found(cache, "A", 100, 100, 50, 50)
    assert resolver.resolve("B") == Rectangle(105, 105, 60, 60)


def test_uses_best_anchor_match(graph, cache, resolver):
    graph.add_dependency("B", "A")
    cache.save(
        "A",
        [
            Match(Rectangle(10, 10, 5, 5), 0.99, "a"),
            Match(Rectangle(90, 90, 5, 5), 0.80, "a"),
        ],
    )
    assert resolver.resolve("B") == Rectangle(10, 10, 5, 5)


def test_cycle_is_rejected_and_graph_unchanged(graph):
    graph.add_dependency("B", "A", RegionOffset(1, 2, 3, 4))
    before = graph.edges()

    with pytest.raises(CyclicDependency) as excinfo:
        graph.add_dependency("A", "B")

    assert graph.edges() == before
    assert graph.dependency_of("A") is None
    assert excinfo.value.target_id == "A"
    assert excinfo.value.anchor_id == "B"
    assert isinstance(excinfo.value, GraphError)
    assert isinstance(excinfo.value, ResolutionError)


def test_self_dependency_is_rejected(graph):
    with pytest.raises(CyclicDependency):
        graph.add_dependency("A", "A")
    assert len(graph) == 0


def test_longer_cycle_is_rejected(graph):
    graph.add_dependency("B", "A")
    graph.add_dependency("C", "B")
    with pytest.raises(CyclicDependency):
        graph.add_dependency("A", "C")
    assert graph.chain("C") == ["C", "B", "A"]
    assert "A" not in graph


def test_second_anchor_is_rejected(graph):
    graph.add_dependency("B", "A")
    with pytest.raises(GraphError):
        graph.add_dependency("B", "C")
    assert graph.dependency_of("B").anchor_id == "A"


def test_reregistering_same_anchor_replaces_offset(graph):
    graph.add_dependency("B", "A", RegionOffset(1, 1, 1, 1))
    graph.add_dependency("B", "A", RegionOffset(2, 2, 2, 2))
    assert graph.dependency_of("B").offset == RegionOffset(2, 2, 2, 2)
    assert len(graph) == 1


def test_degenerate_region_is_reported(graph, cache, resolver):
    _found(cache, "A", 100, 200, 300, 400)
    graph.add_dependency("B", "A", RegionOffset(add_w=-350))
    with pytest.raises(DegenerateRegion) as excinfo:
        resolver.resolve("B")
    assert excinfo.value.bounds == (100, 200, -50, 400)


def test_zero_width_is_degenerate(graph, cache, resolver):
    _found(cache, "A", 0, 0, 300, 400)
    graph.add_dependency("B", "A", RegionOffset(add_w=-300))
    with pytest.raises(DegenerateRegion):
        resolver.resolve("B")


def test_unsearched_anchor(graph, resolver):
    graph.add_dependency("B", "A")
    with pytest.raises(AnchorNotYetFound) as excinfo:
        resolver.resolve("B")
    assert excinfo.value.anchor_id == "A"


def test_anchor_not_found_does_not_fall_back_to_full_capture(graph, cache, resolver):
    graph.add_dependency("B", "A")
    cache.save("A", [])
    with pytest.raises(AnchorNotYetFound):
        resolver.resolve("B", capture_size=(1920, 1080))


def test_target_without_dependency(resolver):
    assert resolver.resolve("free") is None
    assert resolver.resolve("free", capture_size=(800, 600)) == Rectangle(0, 0, 800, 600)
    resolver.set_fixed_region("free", Rectangle(10, 10, 20, 20))
    assert resolver.resolve("free", capture_size=(800, 600)) == Rectangle(10, 10, 20, 20)
    resolver.set_fixed_region("free", None)
    assert resolver.resolve("free") is None


def test_chain_resolution(graph, cache, resolver):
    graph.add_dependency("B", "A", RegionOffset(0, 50, 0, 0))
    graph.add_dependency("C", "B", RegionOffset(0, 20, 0, 0))
    _found(cache, "A", 10, 10, 100, 40)
    _found(cache, "B", 12, 62, 100, 40)
    assert resolver.resolve("C") == Rectangle(12, 82, 100, 40)

    cache.clear("A")
    with pytest.raises(AnchorNotYetFound) as excinfo:
        resolver.resolve("C")
    assert excinfo.value.anchor_id == "A"
    assert excinfo.value.target_id == "B"


def test_layers_put_anchors_first(graph):
    graph.add_dependency("B", "A")
    graph.add_dependency("C", "B")
    graph.add_dependency("D", "A")
    assert graph.layers(["D", "C", "B", "A", "E"]) == [["A", "E"], ["B", "D"], ["C"]]
    assert graph.dependents_of("A") == ["B", "D"]


def test_remove_dependency(graph):
    graph.add_dependency("B", "A")
    removed = graph.remove_dependency("B")
    assert removed.anchor_id == "A"
    assert graph.remove_dependency("B") is None
    graph.add_dependency("A", "B")
