"""
Media type validation and output format helpers.
"""

import re
from enum import Enum

from src.core.exceptions import UnsupportedFormatError

SUPPORTED_MIME = frozenset({
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/avif",
    "image/heic",
    "image/heif",
})

UNSUPPORTED_FORMAT_MESSAGE = "Unsupported image format. Please upload jpeg, png, webp, avif, or heic."

CANONICAL_MIME = "image/png"
ARCHIVE_MIME = "application/zip"

_EXTENSION_RE = re.compile(r"\.[^/.]+$")


class OutputFormat(str, Enum):
    """Raster formats the compression engine can encode into."""
    JPEG = "jpeg"
    WEBP = "webp"
    PNG = "png"

    @property
    def mime(self) -> str:
        return _MIME_BY_FORMAT[self]

    @property
    def extension(self) -> str:
        return mime_to_extension(self.mime)


_MIME_BY_FORMAT = {
    OutputFormat.JPEG: "image/jpeg",
    OutputFormat.WEBP: "image/webp",
    OutputFormat.PNG: "image/png",
}


def ensure_supported_mime(mime: str) -> None:
    """
    Fail unless ``mime`` is an accepted input media type.

    Raises:
        UnsupportedFormatError: for anything outside SUPPORTED_MIME
    """
    if mime not in SUPPORTED_MIME:
        raise UnsupportedFormatError(UNSUPPORTED_FORMAT_MESSAGE, mime=mime)


def mime_to_extension(mime: str) -> str:
    if mime == "image/png":
        return "png"
    if mime == "image/webp":
        return "webp"
    return "jpg"


def derive_filename(filename: str, mime: str) -> str:
    """Swap the extension of ``filename`` for the one implied by ``mime``."""
    base = _EXTENSION_RE.sub("", filename)
    return f"{base}.{mime_to_extension(mime)}"
