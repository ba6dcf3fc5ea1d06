"""Conversion Engine - lossless re-encode into PNG."""

from src.core.logging import get_logger, with_logging
from src.core.metrics import track_latency, record_output_size
from src.engines.imaging.codec import decode_image, normalize_orientation, encode_png
from src.engines.imaging.formats import ensure_supported_mime, derive_filename, CANONICAL_MIME
from src.engines.imaging.schemas import RawImageInput, ProcessedImage

logger = get_logger(__name__)


@with_logging("convert")
@track_latency("convert")
def convert_to_png(image: RawImageInput) -> ProcessedImage:
    """Re-encode ``image`` as PNG, keeping transparency and orientation."""
    ensure_supported_mime(image.declared_mime)

    source = decode_image(image.data, operation="convert")
    oriented = normalize_orientation(source)
    data = encode_png(oriented)

    result = ProcessedImage.from_bytes(
        data,
        name=derive_filename(image.filename, CANONICAL_MIME),
        mime=CANONICAL_MIME,
    )
    record_output_size("convert", result.size)

    logger.info(
        "convert_completed",
        source_mode=source.mode,
        dimensions=oriented.size,
        input_size=image.size,
        output_size=result.size
    )
    return result
