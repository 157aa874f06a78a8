import numpy as np
import pytest
from PIL import Image

from screenfind.errors import UnsupportedPixelFormat
from screenfind.images import (
    DEFAULT_BACKGROUND,
    ImageData,
    describe_image,
    formats_compatible,
    from_array,
    from_pil,
    load_image,
    normalize,
    raw_rgb,
    to_pil,
)


def _rgba(color, alpha, shape=(2, 2)):
    px = np.zeros(shape + (4,), dtype=np.uint8)
    px[..., :3] = color
    px[..., 3] = alpha
    return ImageData(px, "RGBA")


def test_from_array_infers_mode():
    assert from_array(np.zeros((4, 5), dtype=np.uint8)).mode == "L"
    assert from_array(np.zeros((4, 5), dtype=np.uint16)).mode == "I;16"
    assert from_array(np.zeros((4, 5, 2), dtype=np.uint8)).mode == "LA"
    assert from_array(np.zeros((4, 5, 3), dtype=np.uint8)).mode == "RGB"
    img = from_array(np.zeros((4, 5, 4), dtype=np.uint8))
    assert img.mode == "RGBA"
    assert img.size == (5, 4)
    assert img.channels == 4
    assert img.bits_per_pixel == 32
    assert img.has_alpha


def test_from_array_rejects_unknown_channel_layout():
    with pytest.raises(UnsupportedPixelFormat):
        from_array(np.zeros((4, 4, 5), dtype=np.uint8))


def test_image_pixels_are_read_only():
    source = np.zeros((3, 3, 3), dtype=np.uint8)
    img = ImageData(source, "RGB")
    source[0, 0] = 255
    assert img.pixels[0, 0].tolist() == [0, 0, 0]
    with pytest.raises(ValueError):
        img.pixels[0, 0] = 1


def test_normalize_rgb_is_passthrough():
    img = ImageData(np.full((2, 2, 3), 7, dtype=np.uint8), "RGB")
    assert normalize(img) is img


def test_normalize_composites_alpha_over_background():
    assert normalize(_rgba((200, 100, 0), 0)).pixels[0, 0].tolist() == list(
        DEFAULT_BACKGROUND
    )
    assert normalize(_rgba((200, 100, 0), 255)).pixels[0, 0].tolist() == [200, 100, 0]
    half = normalize(_rgba((200, 100, 0), 128)).pixels[0, 0].tolist()
    expected = [round(c * 128 / 255 + 30 * 127 / 255) for c in (200, 100, 0)]
    assert half == expected


def test_normalize_uses_given_background():
    out = normalize(_rgba((0, 0, 0), 0), background=(255, 0, 0))
    assert out.pixels[1, 1].tolist() == [255, 0, 0]


def test_normalize_grayscale_and_16_bit():
    gray = ImageData(np.array([[0, 128]], dtype=np.uint8), "L")
    assert normalize(gray).pixels.tolist() == [[[0, 0, 0], [128, 128, 128]]]

    deep = ImageData(np.array([[65535, 257 * 10]], dtype=np.uint16), "I;16")
    out = normalize(deep)
    assert out.pixels.dtype == np.uint8
    assert out.pixels.tolist() == [[[255, 255, 255], [10, 10, 10]]]


def test_normalize_gray_alpha():
    px = np.array([[[100, 0], [100, 255]]], dtype=np.uint8)
    out = normalize(ImageData(px, "LA")).pixels
    assert out[0, 0].tolist() == list(DEFAULT_BACKGROUND)
    assert out[0, 1].tolist() == [100, 100, 100]


def test_normalize_indexed_with_transparency():
    palette = np.array([[0, 0, 0, 0], [10, 20, 30, 255]], dtype=np.uint8)
    img = ImageData(np.array([[0, 1]], dtype=np.uint8), "P", palette=palette)
    assert img.has_alpha
    out = normalize(img).pixels
    assert out[0, 0].tolist() == list(DEFAULT_BACKGROUND)
    assert out[0, 1].tolist() == [10, 20, 30]


def test_from_pil_reads_palette_transparency():
    pil = Image.new("P", (2, 1))
    pil.putpalette([0, 0, 0, 250, 10, 10] + [0] * (256 * 3 - 6))
    pil.putpixel((1, 0), 1)
    pil.info["transparency"] = 0
    img = from_pil(pil)
    assert img.mode == "P"
    assert img.palette.shape == (256, 4)
    assert img.palette[0, 3] == 0
    assert normalize(img).pixels[0].tolist() == [list(DEFAULT_BACKGROUND), [250, 10, 10]]


def test_unrecognized_mode_is_reported():
    img = ImageData(np.zeros((2, 2, 4), dtype=np.uint8), "CMYK")
    with pytest.raises(UnsupportedPixelFormat) as excinfo:
        normalize(img)
    assert excinfo.value.mode == "CMYK"
    assert isinstance(excinfo.value, ValueError)


@pytest.mark.parametrize(
    "shape, mode",
    [
        ((4, 5), "RGB"),
        ((4, 5, 4), "RGB"),
        ((4, 5, 3), "RGBA"),
        ((4, 5, 3), "L"),
        ((4, 5, 1), "L"),
        ((4, 5, 3), "LA"),
        ((4, 5, 3), "P"),
    ],
)
def test_mode_must_match_channel_count(shape, mode):
    with pytest.raises(UnsupportedPixelFormat) as excinfo:
        ImageData(np.zeros(shape, dtype=np.uint8), mode)
    assert mode in str(excinfo.value)


def test_raw_rgb_drops_alpha_without_compositing():
    raw = raw_rgb(_rgba((255, 255, 255), 0))
    assert raw.shape == (2, 2, 3)
    assert raw[0, 0].tolist() == [255, 255, 255]


def test_formats_compatible():
    rgb = ImageData(np.zeros((2, 2, 3), dtype=np.uint8), "RGB")
    rgba = _rgba((0, 0, 0), 255)
    gray = ImageData(np.zeros((2, 2), dtype=np.uint8), "L")
    indexed = ImageData(
        np.zeros((2, 2), dtype=np.uint8), "P", palette=np.zeros((1, 4), np.uint8)
    )
    assert formats_compatible(rgb, rgb)
    assert not formats_compatible(rgb, rgba)
    assert not formats_compatible(rgb, gray)
    assert not formats_compatible(indexed, indexed)


def test_load_image_round_trip(tmp_path):
    path = tmp_path / "pattern.png"
    to_pil(_rgba((1, 2, 3), 200, shape=(3, 4))).save(path)
    img = load_image(str(path))
    assert img.mode == "RGBA"
    assert img.size == (4, 3)
    assert img.pixels[0, 0].tolist() == [1, 2, 3, 200]


def test_load_image_missing_file(tmp_path):
    with pytest.raises(RuntimeError, match="Failed to load image"):
        load_image(str(tmp_path / "missing.png"))


def test_describe_image():
    summary = describe_image(_rgba((0, 0, 0), 255, shape=(3, 4)), "capture")
    assert summary.startswith("[capture] 4x3")
    assert "mode=RGBA" in summary
    assert "bpp=32" in summary
    assert "alpha=True" in summary
