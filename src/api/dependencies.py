"""
FastAPI Dependencies

Provides dependency injection for:
- Upload parsing (size limit, filename sanitizing, lenient form values)
- Admission gate (process-wide singleton)
- Background removal pipeline (singleton, segmenter chosen from settings)

Tests override ``get_background_removal_pipeline`` through
``app.dependency_overrides``.
"""

import math
import re
import threading
from typing import Optional, Union

from fastapi import UploadFile

from src.core.admission import AdmissionGate
from src.core.config import settings
from src.core.exceptions import ValidationError, PayloadTooLargeError, EmptyInputError
from src.core.logging import get_logger
from src.engines.imaging.schemas import RawImageInput
from src.pipeline.background_removal import BackgroundRemovalPipeline
from src.pipeline.segmentation import SegmentationConfig, build_segmenter

logger = get_logger(__name__)

DEFAULT_FILENAME = "upload"
DEFAULT_MIME = "application/octet-stream"

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9.\-_]")
_TRUTHY = {"true", "1", "on"}


# =============================================================================
# Upload Parsing
# =============================================================================

def sanitize_filename(name: Optional[str]) -> str:
    """Replace anything outside ``[A-Za-z0-9._-]`` with an underscore."""
    return _UNSAFE_FILENAME_CHARS.sub("_", name or DEFAULT_FILENAME)


async def read_image_upload(
    file: Optional[UploadFile],
    max_size_bytes: int = settings.MAX_UPLOAD_SIZE_BYTES
) -> RawImageInput:
    """
    Read the multipart ``file`` field into a RawImageInput.

    Raises:
        ValidationError: no file was sent
        PayloadTooLargeError: the file exceeds ``max_size_bytes``
        EmptyInputError: the file has no content
    """
    if file is None:
        raise ValidationError("Image file is required.")

    # One byte past the limit is enough to know it is too large
    data = await file.read(max_size_bytes + 1)
    if len(data) > max_size_bytes:
        limit_mb = round(max_size_bytes / (1024 * 1024))
        raise PayloadTooLargeError(
            f"File is too large. Limit is {limit_mb}MB.",
            limit_bytes=max_size_bytes
        )
    if not data:
        raise EmptyInputError()

    upload = RawImageInput(
        data=data,
        declared_mime=(file.content_type or DEFAULT_MIME).lower(),
        filename=sanitize_filename(file.filename),
    )
    logger.debug("upload_received", filename=upload.filename, mime=upload.declared_mime, size=upload.size)
    return upload


def parse_number(value: Optional[str]) -> Optional[Union[int, float]]:
    """Lenient numeric form value: missing, blank or non-finite -> None."""
    if value is None or not value.strip():
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def parse_bool(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in _TRUTHY


# =============================================================================
# Global Singletons - one gate per process
# =============================================================================

_admission_gate = AdmissionGate(settings.MAX_CONCURRENT_REMOVALS)
_pipeline: Optional[BackgroundRemovalPipeline] = None
_pipeline_lock = threading.Lock()


def get_admission_gate() -> AdmissionGate:
    return _admission_gate


def get_background_removal_pipeline() -> BackgroundRemovalPipeline:
    """Build the pipeline on first use so the model backend loads lazily."""
    global _pipeline
    if _pipeline is None:
        with _pipeline_lock:
            if _pipeline is None:
                _pipeline = BackgroundRemovalPipeline(
                    gate=_admission_gate,
                    segmenter=build_segmenter(settings),
                    config=SegmentationConfig(model=settings.SEGMENTATION_MODEL),
                    retry_after=settings.BUSY_RETRY_AFTER_SECONDS,
                )
                logger.info(
                    "background_removal_pipeline_ready",
                    model=settings.SEGMENTATION_MODEL,
                    simulated=settings.SIMULATE_SEGMENTATION,
                    max_concurrent=_admission_gate.max_concurrent
                )
    return _pipeline
