import io

import pytest
from PIL import Image

from app.core.errors import CodecError
from app.services.imaging import load_source, resize_cover


def _png(size, color=(0, 0, 0), mode="RGB") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def test_cover_fit_crops_the_center():
    # left half red, right half blue, wide canvas
    img = Image.new("RGB", (400, 100), (255, 0, 0))
    img.paste((0, 0, 255), (200, 0, 400, 100))
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")

    out = Image.open(io.BytesIO(resize_cover(buffer.getvalue(), 100, 100, quality=95)))

    assert out.format == "JPEG"
    assert out.size == (100, 100)
    # the crop straddles the seam, so both colors survive
    left = out.getpixel((5, 50))
    right = out.getpixel((95, 50))
    assert left[0] > 200 and left[2] < 60
    assert right[2] > 200 and right[0] < 60


def test_upscales_small_sources():
    out = Image.open(io.BytesIO(resize_cover(_png((10, 10)), 64, 48)))
    assert out.size == (64, 48)


def test_alpha_sources_are_flattened_for_jpeg():
    out = Image.open(io.BytesIO(resize_cover(_png((50, 50), (0, 255, 0, 128), mode="RGBA"), 20, 20)))
    assert out.mode == "RGB"


def test_quality_changes_the_encoding():
    noisy = Image.effect_noise((200, 200), 64).convert("RGB")
    buffer = io.BytesIO()
    noisy.save(buffer, format="PNG")

    low = resize_cover(buffer.getvalue(), 200, 200, quality=10)
    high = resize_cover(buffer.getvalue(), 200, 200, quality=95)
    assert len(low) < len(high)


def test_garbage_input_is_a_codec_error():
    with pytest.raises(CodecError):
        resize_cover(b"definitely not an image", 10, 10)


def test_load_source_reads_local_files(tmp_path):
    path = tmp_path / "in.png"
    path.write_bytes(_png((4, 4)))
    assert load_source(str(path)) == path.read_bytes()


def test_load_source_missing_file(tmp_path):
    with pytest.raises(CodecError):
        load_source(str(tmp_path / "nope.png"))
