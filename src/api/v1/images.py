"""
Image Endpoints

POST /api/v1/images/compress          - Resize and re-encode (jpeg/webp/png)
POST /api/v1/images/convert-to-png    - Lossless PNG conversion
POST /api/v1/images/duplicate         - N renamed copies, optionally zipped
POST /api/v1/images/remove-background - Transparent PNG cutout

All endpoints take a multipart form with a ``file`` field. CPU-bound work
runs in a worker thread so the event loop stays responsive.
"""

import asyncio
from typing import Optional, Dict, Any, List

from fastapi import APIRouter, Depends, UploadFile, File, Form, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field

from src.api.dependencies import (
    read_image_upload,
    parse_number,
    parse_bool,
    get_background_removal_pipeline,
)
from src.core.exceptions import ValidationError, UnsupportedFormatError
from src.core.logging import get_logger
from src.engines.imaging.compression import compress_image
from src.engines.imaging.conversion import convert_to_png
from src.engines.imaging.duplication import duplicate_image, package_as_archive
from src.engines.imaging.formats import OutputFormat, ensure_supported_mime, CANONICAL_MIME
from src.engines.imaging.quality import QualityPreset
from src.engines.imaging.schemas import CompressOptions, ProcessedImage
from src.pipeline.background_removal import BackgroundRemovalPipeline

logger = get_logger(__name__)
router = APIRouter()

# The segmentation model only handles these inputs
REMOVAL_MIME = frozenset({"image/png", "image/jpeg", "image/jpg", "image/webp"})

REMOVAL_DOWNLOAD_NAME = "removed-bg.png"


# =============================================================================
# Response Schemas
# =============================================================================

class ImageResult(BaseModel):
    """One produced file."""
    name: str
    mime: str
    size: int = Field(..., ge=0)
    base64: str

    @classmethod
    def from_processed(cls, image: ProcessedImage) -> "ImageResult":
        return cls(name=image.name, mime=image.mime, size=image.size, base64=image.base64)


class ImageResultsResponse(BaseModel):
    """Response shared by the JSON-returning image endpoints."""
    results: List[ImageResult]
    meta: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Form Helpers
# =============================================================================

def _parse_dimension(value: Optional[str], field: str) -> Optional[int]:
    number = parse_number(value)
    if number is None:
        return None
    if number < 1:
        raise ValidationError(f"{field} must be a positive integer.", details={"field": field})
    return int(number)


def _parse_format(value: Optional[str]) -> OutputFormat:
    if not value:
        return OutputFormat.JPEG
    try:
        return OutputFormat(value.strip().lower())
    except ValueError:
        raise ValidationError(
            "Unsupported output format. Choose jpeg, webp, or png.",
            details={"field": "format", "value": value}
        ) from None


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/compress", response_model=ImageResultsResponse)
async def compress(
    file: Optional[UploadFile] = File(None),
    preset: Optional[str] = Form(None),
    quality: Optional[str] = Form(None),
    maxWidth: Optional[str] = Form(None),
    maxHeight: Optional[str] = Form(None),
    format: Optional[str] = Form(None),
):
    """Compress an image, optionally bounding it to maxWidth x maxHeight."""
    upload = await read_image_upload(file)
    ensure_supported_mime(upload.declared_mime)

    quality_value = parse_number(quality)
    max_width = _parse_dimension(maxWidth, "maxWidth")
    max_height = _parse_dimension(maxHeight, "maxHeight")
    target_format = _parse_format(format)

    options = CompressOptions(
        quality=quality_value,
        preset=QualityPreset.parse(preset),
        max_width=max_width,
        max_height=max_height,
        format=target_format,
    )
    result = await asyncio.to_thread(compress_image, upload, options)

    return ImageResultsResponse(
        results=[ImageResult.from_processed(result)],
        meta={
            "preset": preset or "custom",
            "quality": quality_value if quality_value is not None else "auto",
            "maxWidth": max_width,
            "maxHeight": max_height,
            "format": target_format.value,
        }
    )


@router.post("/convert-to-png", response_model=ImageResultsResponse)
async def convert(file: Optional[UploadFile] = File(None)):
    """Convert an image to PNG."""
    upload = await read_image_upload(file)
    ensure_supported_mime(upload.declared_mime)

    result = await asyncio.to_thread(convert_to_png, upload)

    return ImageResultsResponse(
        results=[ImageResult.from_processed(result)],
        meta={"format": "png"}
    )


@router.post("/duplicate", response_model=ImageResultsResponse)
async def duplicate(
    file: Optional[UploadFile] = File(None),
    count: Optional[str] = Form(None),
    zip_output: Optional[str] = Query(None, alias="zip"),
):
    """
    Duplicate an image ``count`` times (capped at 20).

    With ``?zip=true`` and more than one copy, a single ZIP entry is returned.
    """
    upload = await read_image_upload(file)
    ensure_supported_mime(upload.declared_mime)

    requested = parse_number(count)
    requested = 1 if requested is None else int(requested)

    source = ProcessedImage.from_bytes(upload.data, name=upload.filename, mime=upload.declared_mime)
    copies = duplicate_image(source, requested)

    zipped = parse_bool(zip_output) and len(copies) > 1
    if zipped:
        archive = await asyncio.to_thread(package_as_archive, copies)
        results = [ImageResult.from_processed(archive)]
    else:
        results = [ImageResult.from_processed(item) for item in copies]

    logger.info("duplicate_completed", requested=requested, produced=len(copies), zipped=zipped)

    return ImageResultsResponse(
        results=results,
        meta={"count": len(copies), "zipped": zipped}
    )


@router.post(
    "/remove-background",
    response_class=Response,
    responses={200: {"content": {CANONICAL_MIME: {}}, "description": "Transparent PNG"}},
)
async def remove_background(
    file: Optional[UploadFile] = File(None),
    pipeline: BackgroundRemovalPipeline = Depends(get_background_removal_pipeline),
):
    """Remove the background and return the cutout as a PNG download."""
    upload = await read_image_upload(file)
    if upload.declared_mime not in REMOVAL_MIME:
        raise UnsupportedFormatError(
            "Unsupported file format. Please upload PNG, JPG, JPEG, or WebP.",
            mime=upload.declared_mime
        )

    logger.info("remove_background_request", filename=upload.filename, input_size=upload.size)
    output = await asyncio.to_thread(pipeline.remove_background, upload.data)

    return Response(
        content=output,
        media_type=CANONICAL_MIME,
        headers={"Content-Disposition": f"attachment; filename={REMOVAL_DOWNLOAD_NAME}"}
    )
