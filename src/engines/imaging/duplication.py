"""
Duplication Packager

Replicates a processed image under deterministic ``-copy-<n>`` names and
optionally bundles several entries into a single ZIP.
"""

import io
import zipfile
from typing import List, Sequence

from src.core.exceptions import ValidationError
from src.core.logging import get_logger
from src.engines.imaging.formats import ARCHIVE_MIME
from src.engines.imaging.schemas import ProcessedImage

logger = get_logger(__name__)

# Hard server-side cap, independent of what the caller asks for
MAX_DUPLICATES = 20

DEFAULT_ARCHIVE_NAME = "images.zip"


def append_copy_suffix(filename: str, index: int) -> str:
    """
    ``photo.png`` -> ``photo-copy-1.png``.

    The base is everything before the first dot and the extension everything
    after the last one; a name without an extension gets no trailing dot.
    """
    parts = filename.split(".")
    base = parts[0]
    ext = parts[-1] if len(parts) > 1 else ""
    suffix = f"{base}-copy-{index}"
    return f"{suffix}.{ext}" if ext else suffix


def duplicate_image(image: ProcessedImage, count: int) -> List[ProcessedImage]:
    """Return ``min(count, MAX_DUPLICATES)`` renamed copies (none for ``count <= 0``)."""
    total = max(0, min(int(count), MAX_DUPLICATES))
    if count > MAX_DUPLICATES:
        logger.info("duplicate_count_clamped", requested=count, limit=MAX_DUPLICATES)
    return [image.with_name(append_copy_suffix(image.name, i)) for i in range(1, total + 1)]


def package_as_archive(
    images: Sequence[ProcessedImage],
    archive_name: str = DEFAULT_ARCHIVE_NAME
) -> ProcessedImage:
    """
    Bundle several images into one ZIP entry.

    A single image is returned as-is: a one-file archive gives the caller
    nothing, and they expect the raw file in that case.

    Raises:
        ValidationError: when ``images`` is empty
    """
    if not images:
        raise ValidationError("Nothing to package.")
    if len(images) == 1:
        return images[0]

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for item in images:
            archive.writestr(item.name, item.data)

    result = ProcessedImage.from_bytes(buffer.getvalue(), name=archive_name, mime=ARCHIVE_MIME)
    logger.info("archive_packaged", entries=len(images), output_size=result.size)
    return result
