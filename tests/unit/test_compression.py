import base64
import io

import pytest
from PIL import Image

from src.core.exceptions import ProcessingError, UnsupportedFormatError
from src.engines.imaging.codec import fit_inside_size
from src.engines.imaging.compression import compress_image
from src.engines.imaging.conversion import convert_to_png
from src.engines.imaging.formats import OutputFormat
from src.engines.imaging.quality import QualityPreset
from src.engines.imaging.schemas import CompressOptions, RawImageInput

EXIF_ORIENTATION = 0x0112


def _open(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data))


def _input(data: bytes, mime: str = "image/png", filename: str = "test.png") -> RawImageInput:
    return RawImageInput(data=data, declared_mime=mime, filename=filename)


# =============================================================================
# Sizing
# =============================================================================

@pytest.mark.parametrize("size, bounds, expected", [
    ((200, 100), (50, None), (50, 25)),
    ((200, 100), (None, 50), (100, 50)),
    ((200, 100), (50, 50), (50, 25)),
    ((20, 10), (100, 100), (20, 10)),
    ((20, 10), (None, None), (20, 10)),
    ((1000, 1), (10, None), (10, 1)),
])
def test_fit_inside_size(size, bounds, expected):
    assert fit_inside_size(*size, *bounds) == expected


# =============================================================================
# Compression
# =============================================================================

def test_compress_to_webp(make_image):
    result = compress_image(_input(make_image(10, 10)), CompressOptions(format=OutputFormat.WEBP))

    assert result.mime == "image/webp"
    assert result.name == "test.webp"
    assert _open(result.data).format == "WEBP"


def test_compress_defaults_to_jpeg(make_image):
    result = compress_image(_input(make_image(10, 10)), CompressOptions())

    assert result.mime == "image/jpeg"
    assert result.name == "test.jpg"
    assert _open(result.data).format == "JPEG"


def test_compress_resizes_without_enlarging(make_image):
    data = make_image(200, 100)

    shrunk = compress_image(_input(data), CompressOptions(max_width=50, format=OutputFormat.PNG))
    untouched = compress_image(_input(data), CompressOptions(max_width=400, max_height=400))

    assert _open(shrunk.data).size == (50, 25)
    assert _open(untouched.data).size == (200, 100)


def test_compress_applies_exif_orientation(make_image):
    exif = Image.Exif()
    exif[EXIF_ORIENTATION] = 6  # rotate 90 degrees clockwise for display
    data = make_image(40, 20, fmt="JPEG", exif=exif.tobytes())

    result = compress_image(_input(data, "image/jpeg", "rotated.jpg"), CompressOptions())

    assert _open(result.data).size == (20, 40)


def test_compress_flattens_alpha_for_jpeg(make_image):
    data = make_image(8, 8, mode="RGBA", color=(0, 0, 0, 0))

    result = compress_image(_input(data), CompressOptions(preset=QualityPreset.LOW))

    decoded = _open(result.data)
    assert decoded.mode == "RGB"
    assert decoded.getpixel((4, 4)) == pytest.approx((255, 255, 255), abs=2)


def test_compress_rejects_unsupported_mime(make_image):
    with pytest.raises(UnsupportedFormatError):
        compress_image(_input(make_image(), mime="image/gif"), CompressOptions())


def test_compress_wraps_decode_errors():
    with pytest.raises(ProcessingError) as exc_info:
        compress_image(_input(b"definitely not an image"), CompressOptions())

    assert exc_info.value.code == 500
    assert "Could not decode image" in exc_info.value.message


@pytest.mark.parametrize("fmt, mime, filename", [
    ("HEIF", "image/heic", "photo.heic"),
    ("AVIF", "image/avif", "photo.avif"),
])
def test_compress_decodes_modern_formats(make_image, fmt, mime, filename):
    data = make_image(24, 16, fmt=fmt)

    result = compress_image(_input(data, mime, filename), CompressOptions(format=OutputFormat.WEBP))

    assert result.name == "photo.webp"
    decoded = _open(result.data)
    assert decoded.format == "WEBP"
    assert decoded.size == (24, 16)


def test_processed_image_invariants(make_image):
    result = compress_image(_input(make_image(12, 12)), CompressOptions(quality=50))

    assert result.size == len(result.data)
    assert base64.b64decode(result.base64) == result.data


# =============================================================================
# Conversion
# =============================================================================

def test_convert_jpeg_to_png(jpeg_bytes):
    result = convert_to_png(_input(jpeg_bytes, "image/jpeg", "photo.jpg"))

    assert result.name == "photo.png"
    assert result.mime == "image/png"
    assert _open(result.data).format == "PNG"
    assert base64.b64decode(result.base64) == result.data


def test_convert_preserves_transparency(make_image):
    data = make_image(6, 6, mode="RGBA", color=(10, 20, 30, 40))

    result = convert_to_png(_input(data, "image/png", "sticker.png"))

    decoded = _open(result.data)
    assert decoded.mode == "RGBA"
    assert decoded.getpixel((3, 3)) == (10, 20, 30, 40)


def test_convert_rejects_unsupported_mime(make_image):
    with pytest.raises(UnsupportedFormatError):
        convert_to_png(_input(make_image(), mime="image/bmp"))


def test_convert_applies_exif_orientation(make_image):
    exif = Image.Exif()
    exif[EXIF_ORIENTATION] = 6
    data = make_image(40, 20, fmt="JPEG", exif=exif.tobytes())

    result = convert_to_png(_input(data, "image/jpeg", "rotated.jpg"))

    assert _open(result.data).size == (20, 40)
