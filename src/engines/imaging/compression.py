"""
Compression Engine

Resize-and-re-encode for the compress endpoint:
validate -> resolve quality -> orient -> fit inside bounds -> encode.
"""

from src.core.logging import get_logger, with_logging
from src.core.metrics import track_latency, record_output_size
from src.engines.imaging.codec import decode_image, normalize_orientation, fit_inside, encode_image
from src.engines.imaging.formats import ensure_supported_mime, derive_filename
from src.engines.imaging.quality import resolve_quality
from src.engines.imaging.schemas import RawImageInput, CompressOptions, ProcessedImage

logger = get_logger(__name__)


@with_logging("compress")
@track_latency("compress")
def compress_image(image: RawImageInput, options: CompressOptions) -> ProcessedImage:
    """
    Compress an uploaded image.

    Args:
        image: Raw upload
        options: Quality/preset, optional bounding box and target format

    Returns:
        ProcessedImage in ``options.format`` named after the upload

    Raises:
        UnsupportedFormatError: declared mime is not accepted
        ProcessingError: Pillow could not decode or encode the image
    """
    ensure_supported_mime(image.declared_mime)
    quality = resolve_quality(options.preset, options.quality)
    target = options.format

    source = decode_image(image.data, operation="compress")
    original_size = source.size

    oriented = normalize_orientation(source)
    resized = fit_inside(oriented, options.max_width, options.max_height)
    data = encode_image(resized, target, quality)

    result = ProcessedImage.from_bytes(
        data,
        name=derive_filename(image.filename, target.mime),
        mime=target.mime,
    )
    record_output_size("compress", result.size)

    logger.info(
        "compress_completed",
        format=target.value,
        quality=quality,
        original_dimensions=original_size,
        output_dimensions=resized.size,
        input_size=image.size,
        output_size=result.size
    )
    return result
