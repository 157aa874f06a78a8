from concurrent.futures import ThreadPoolExecutor

import pytest

from screenfind.cache import MatchCache, TargetStatus
from screenfind.geometry import Rectangle
from screenfind.matcher import Match


def _match(x, y, score=0.9, target="a"):
    return Match(Rectangle(x, y, 10, 10), score, "p", target)


def test_save_then_get_returns_exactly_what_was_saved():
    cache = MatchCache()
    saved = [_match(1, 2, 0.95), _match(30, 40, 0.80)]
    cache.save("a", saved)
    assert cache.get("a") == saved
    assert cache.best("a") == saved[0]


def test_get_unknown_is_empty():
    cache = MatchCache()
    assert cache.get("missing") == []
    assert cache.best("missing") is None


def test_save_replaces_previous_entry():
    cache = MatchCache()
    cache.save("a", [_match(1, 1), _match(2, 2)])
    cache.save("a", [_match(5, 5)])
    assert cache.get("a") == [_match(5, 5)]


def test_clear():
    cache = MatchCache()
    cache.save("a", [_match(1, 1)])
    cache.save("b", [_match(2, 2)])
    cache.clear("a")
    assert cache.get("a") == []
    assert "a" not in cache
    assert cache.get("b") == [_match(2, 2)]
    cache.clear_all()
    assert len(cache) == 0


def test_returned_list_is_a_snapshot():
    cache = MatchCache()
    cache.save("a", [_match(1, 1)])
    got = cache.get("a")
    got.append(_match(9, 9))
    assert cache.get("a") == [_match(1, 1)]


def test_status_transitions():
    cache = MatchCache()
    assert cache.status("a") is TargetStatus.UNSEARCHED
    cache.save("a", [])
    assert cache.status("a") is TargetStatus.NOT_FOUND
    cache.save("a", [_match(1, 1)])
    assert cache.status("a") is TargetStatus.FOUND
    cache.clear("a")
    assert cache.status("a") is TargetStatus.UNSEARCHED


def test_best_is_highest_score_whatever_the_saved_order():
    cache = MatchCache()
    cache.save("a", [_match(50, 5, 0.80), _match(10, 5, 0.97), _match(5, 5, 0.97)])
    assert cache.best("a") == _match(5, 5, 0.97)
    assert [m.x for m in cache.get("a")] == [50, 10, 5]


def test_saves_from_one_thread_apply_in_order():
    cache = MatchCache()
    for i in range(100):
        cache.save("a", [_match(i, i)])
        assert cache.get("a") == [_match(i, i)]


@pytest.mark.parametrize("workers", [2, 8])
def test_concurrent_saves_for_different_targets(workers):
    cache = MatchCache()

    def _writer(target_id):
        for i in range(200):
            matches = [_match(i, j, target=target_id) for j in range(3)]
            cache.save(target_id, matches)
            got = cache.get(target_id)
            assert len(got) == 3
            assert {m.x for m in got} == {got[0].x}
        return target_id

    targets = [f"t{n}" for n in range(workers * 2)]
    with ThreadPoolExecutor(max_workers=workers) as pool:
        assert sorted(pool.map(_writer, targets)) == sorted(targets)

    for target_id in targets:
        assert [m.y for m in cache.get(target_id)] == [0, 1, 2]
        assert {m.x for m in cache.get(target_id)} == {199}
