import os

import numpy as np
import pytest

from screenfind import samples
from screenfind.geometry import Rectangle
from screenfind.images import ImageData, load_image, to_pil
from screenfind.matcher import match
from screenfind.patterns import PatternStore, scale_patterns


def _write(directory, name, pixels, mode="RGB"):
    path = os.path.join(str(directory), name + ".png")
    to_pil(ImageData(pixels, mode)).save(path)
    return path


@pytest.fixture
def pattern_dir(tmp_path, small_screen):
    px = np.asarray(small_screen.pixels)
    _write(tmp_path, "icon", px[60:80, 40:70])
    _write(tmp_path, "button", px[0:40, 0:50])
    (tmp_path / "notes.txt").write_text("not a pattern")
    return tmp_path


def test_names_are_sorted_pngs(pattern_dir):
    store = PatternStore(str(pattern_dir))
    assert store.names() == ["button", "icon"]
    assert "icon" in store
    assert "notes" not in store
    assert PatternStore(str(pattern_dir / "missing")).names() == []


def test_get_caches_until_file_changes(pattern_dir, small_screen):
    store = PatternStore(str(pattern_dir), native_size=(320, 240), min_similarity=0.9)
    first = store.get("icon")
    assert store.get("icon") is first
    assert first.size == (30, 20)
    assert first.native_size == (320, 240)
    assert first.min_similarity == 0.9

    path = _write(pattern_dir, "icon", np.asarray(small_screen.pixels)[0:10, 0:10])
    stamp = os.path.getmtime(path) + 10
    os.utime(path, (stamp, stamp))

    reloaded = store.get("icon")
    assert reloaded is not first
    assert reloaded.size == (10, 10)


def test_missing_pattern(pattern_dir):
    store = PatternStore(str(pattern_dir))
    with pytest.raises(RuntimeError, match="Failed to load image"):
        store.get("nope")


def test_preload_fills_scale_cache(pattern_dir):
    store = PatternStore(str(pattern_dir))
    patterns = store.preload(scales=(1.0, 0.8))
    assert [p.name for p in patterns] == ["button", "icon"]
    assert all(len(p._scale_cache) == 2 for p in patterns)


def test_stored_pattern_matches_its_source(pattern_dir, small_screen):
    pattern = PatternStore(str(pattern_dir)).get("icon")
    top = match(pattern, small_screen, min_similarity=0.95)[0]
    assert top.region == Rectangle(40, 60, 30, 20)


def test_scale_patterns_writes_scaled_copies(pattern_dir):
    written = scale_patterns(str(pattern_dir), factor=0.8)

    assert sorted(os.path.basename(p) for p in written) == ["button-80.png", "icon-80.png"]
    assert load_image(str(pattern_dir / "icon-80.png")).size == (24, 16)
    assert load_image(str(pattern_dir / "button-80.png")).size == (40, 32)

    # suffixed inputs and existing outputs are skipped
    assert scale_patterns(str(pattern_dir), factor=0.8) == []
    assert len(scale_patterns(str(pattern_dir), factor=0.8, overwrite=True)) == 2


def test_scale_patterns_keeps_alpha_and_normalizes_gray(tmp_path, small_screen):
    rgba = samples.with_transparent_background(small_screen)
    _write(tmp_path, "ghost", np.asarray(rgba.pixels)[0:50, 0:50], "RGBA")
    _write(tmp_path, "gray", np.full((20, 20), 128, dtype=np.uint8), "L")

    scale_patterns(str(tmp_path), factor=0.5, suffix="-50")

    assert load_image(str(tmp_path / "ghost-50.png")).mode == "RGBA"
    gray = load_image(str(tmp_path / "gray-50.png"))
    assert gray.mode == "RGB"
    assert gray.size == (10, 10)


def test_scale_patterns_rejects_bad_factor(tmp_path):
    with pytest.raises(ValueError):
        scale_patterns(str(tmp_path), factor=0)


def test_crop_pattern_records_native_size(small_screen):
    pattern = samples.crop_pattern(small_screen, Rectangle(0, 0, 10, 10), "corner", 0.8)
    assert pattern.native_size == (320, 240)
    assert pattern.min_similarity == 0.8
