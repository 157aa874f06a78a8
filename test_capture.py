import pytest

from screenfind.capture import (
    FileCaptureSource,
    StaticCaptureSource,
    create_capture_source,
)
from screenfind.images import to_pil


def test_static_source_returns_same_frame(small_screen):
    with create_capture_source("static", image=small_screen) as source:
        assert isinstance(source, StaticCaptureSource)
        assert source.capture() is small_screen
        assert source.capture() is small_screen


def test_file_source_rereads_disk(tmp_path, small_screen, reference_screen):
    path = tmp_path / "shot.png"
    to_pil(small_screen).save(str(path))
    source = FileCaptureSource(str(path))
    assert source.capture().size == (320, 240)

    to_pil(reference_screen).save(str(path))
    assert source.capture().size == (1920, 1080)


def test_file_source_missing(tmp_path):
    with pytest.raises(RuntimeError, match="Failed to load image"):
        FileCaptureSource(str(tmp_path / "nope.png")).capture()


def test_unknown_backend():
    with pytest.raises(ValueError, match="Unknown capture backend"):
        create_capture_source("webcam")
