"""
Pillow decode/encode helpers shared by the engines and the background
removal pipeline. Every Pillow failure surfaces as ProcessingError with the
original diagnostic message.
"""

import io
from typing import Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError
from pillow_heif import register_heif_opener

from src.core.exceptions import ProcessingError
from src.engines.imaging.formats import OutputFormat

register_heif_opener()

# JPEG cannot carry alpha; transparent pixels are flattened onto this colour
JPEG_BACKGROUND = (255, 255, 255)

_DECODE_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, SyntaxError)
_ENCODE_ERRORS = (OSError, ValueError, KeyError, TypeError)


def decode_image(data: bytes, operation: Optional[str] = None) -> Image.Image:
    """Decode raw bytes into a fully loaded Pillow image."""
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except _DECODE_ERRORS as e:
        raise ProcessingError(f"Could not decode image: {e}", operation=operation) from e
    return image


def normalize_orientation(image: Image.Image) -> Image.Image:
    """Apply the EXIF orientation tag so pixels are display-correct."""
    return ImageOps.exif_transpose(image)


def has_alpha(image: Image.Image) -> bool:
    if image.mode in ("RGBA", "LA", "PA", "RGBa", "La"):
        return True
    return image.mode == "P" and "transparency" in image.info


def fit_inside_size(
    width: int,
    height: int,
    max_width: Optional[int] = None,
    max_height: Optional[int] = None
) -> Tuple[int, int]:
    """
    Largest size within ``max_width`` x ``max_height`` keeping the aspect ratio.

    Never enlarges; a missing bound leaves that axis unconstrained.
    """
    scale = 1.0
    if max_width:
        scale = min(scale, max_width / width)
    if max_height:
        scale = min(scale, max_height / height)
    if scale >= 1.0:
        return width, height
    return max(1, round(width * scale)), max(1, round(height * scale))


def fit_inside(
    image: Image.Image,
    max_width: Optional[int] = None,
    max_height: Optional[int] = None
) -> Image.Image:
    """Resize with Lanczos to fit the bounds; returns ``image`` when no resize is needed."""
    target = fit_inside_size(image.width, image.height, max_width, max_height)
    if target == image.size:
        return image
    return image.resize(target, Image.Resampling.LANCZOS)


def encode_image(image: Image.Image, fmt: OutputFormat, quality: int) -> bytes:
    """Encode into ``fmt`` with the format-specific encoder settings."""
    if fmt == OutputFormat.PNG:
        return encode_png(image)

    buffer = io.BytesIO()
    try:
        if fmt == OutputFormat.WEBP:
            _to_web_mode(image).save(buffer, format="WEBP", quality=quality, method=6)
        else:
            _to_jpeg_mode(image).save(
                buffer,
                format="JPEG",
                quality=quality,
                subsampling=0,  # 4:4:4
                optimize=True,
                progressive=True,
            )
    except _ENCODE_ERRORS as e:
        raise ProcessingError(f"Could not encode {fmt.value}: {e}", operation="encode") from e
    return buffer.getvalue()


def encode_png(image: Image.Image, compress_level: int = 9, optimize: bool = True) -> bytes:
    """Lossless PNG; palette images are expanded so no colour reduction happens."""
    if image.mode == "P":
        image = image.convert("RGBA" if has_alpha(image) else "RGB")
    elif image.mode not in ("1", "L", "LA", "I", "I;16", "RGB", "RGBA"):
        image = image.convert("RGBA" if has_alpha(image) else "RGB")

    buffer = io.BytesIO()
    try:
        image.save(buffer, format="PNG", optimize=optimize, compress_level=compress_level)
    except _ENCODE_ERRORS as e:
        raise ProcessingError(f"Could not encode png: {e}", operation="encode") from e
    return buffer.getvalue()


def _to_jpeg_mode(image: Image.Image) -> Image.Image:
    if has_alpha(image):
        rgba = image.convert("RGBA")
        flattened = Image.new("RGB", rgba.size, JPEG_BACKGROUND)
        flattened.paste(rgba, mask=rgba.getchannel("A"))
        return flattened
    if image.mode in ("RGB", "L", "CMYK"):
        return image
    return image.convert("RGB")


def _to_web_mode(image: Image.Image) -> Image.Image:
    if image.mode in ("RGB", "RGBA"):
        return image
    return image.convert("RGBA" if has_alpha(image) else "RGB")
