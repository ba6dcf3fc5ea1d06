"""
Background Removal Pipeline

admission -> validation -> preprocessing -> segmentation -> alpha refinement -> PNG

The admission slot is released on every exit path once it has been taken,
whether the run succeeds or fails in any later stage.
"""

from contextlib import ExitStack
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from PIL import Image, ImageOps

from src.core.admission import AdmissionGate
from src.core.exceptions import (
    BusyError,
    EmptyInputError,
    ImageServiceError,
    SegmentationError
)
from src.core.logging import get_logger, LogContext
from src.core.metrics import track_operation_latency, record_output_size
from src.engines.imaging.codec import decode_image, normalize_orientation, fit_inside, encode_png, has_alpha
from src.pipeline.alpha_refinement import apply_refined_alpha
from src.pipeline.segmentation import Segmenter, SegmentationConfig

logger = get_logger(__name__)


class RemovalState(str, Enum):
    """Lifecycle of a single background removal."""
    IDLE = "idle"
    ADMISSION_REQUESTED = "admission_requested"
    REJECTED = "rejected"
    ADMITTED = "admitted"
    PREPROCESSING = "preprocessing"
    SEGMENTING = "segmenting"
    POSTPROCESSING = "postprocessing"
    DONE = "done"
    FAILED = "failed"


class BackgroundRemovalPipeline:
    """
    Orchestrates one background removal per ``remove_background`` call.

    Args:
        gate: Process-wide admission gate shared by all callers
        segmenter: Segmentation backend
        config: Configuration passed to the segmenter on every call
        retry_after: Seconds advertised to rejected callers
    """

    def __init__(
        self,
        gate: AdmissionGate,
        segmenter: Segmenter,
        config: Optional[SegmentationConfig] = None,
        retry_after: Optional[int] = None
    ):
        self.gate = gate
        self.segmenter = segmenter
        self.config = config or SegmentationConfig()
        self.retry_after = retry_after

    def remove_background(self, data: bytes) -> bytes:
        """
        Remove the background from an encoded image.

        Returns:
            PNG bytes with an alpha channel

        Raises:
            BusyError: no admission slot was free
            EmptyInputError: ``data`` is empty
            SegmentationError: the segmentation backend failed
            ProcessingError: decoding or encoding failed
        """
        with LogContext(operation="remove_background"), ExitStack() as slot:
            state = self._transition(RemovalState.IDLE, RemovalState.ADMISSION_REQUESTED)
            try:
                # Released when ``slot`` closes, on success and on failure alike
                slot.enter_context(self.gate.admit(retry_after=self.retry_after))
            except BusyError:
                self._transition(state, RemovalState.REJECTED)
                raise
            state = self._transition(state, RemovalState.ADMITTED)

            start_time = datetime.now(timezone.utc)
            try:
                if not data:
                    raise EmptyInputError()

                logger.info("background_removal_started", input_size=len(data))

                state = self._transition(state, RemovalState.PREPROCESSING)
                with track_operation_latency("remove_background.preprocess"):
                    prepared, dimensions = self._preprocess(data)

                state = self._transition(state, RemovalState.SEGMENTING)
                with track_operation_latency("remove_background.segment"):
                    segmented = self._segment(prepared)

                state = self._transition(state, RemovalState.POSTPROCESSING)
                with track_operation_latency("remove_background.postprocess"):
                    output = self._postprocess(segmented)
            except Exception as e:
                self._transition(state, RemovalState.FAILED)
                logger.error(
                    "background_removal_failed",
                    failed_stage=state.value,
                    error=e.message if isinstance(e, ImageServiceError) else str(e),
                    error_type=type(e).__name__
                )
                raise
            slot.close()

            self._transition(state, RemovalState.DONE)
            duration_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
            record_output_size("remove_background", len(output))
            logger.info(
                "background_removal_completed",
                duration_ms=duration_ms,
                dimensions=dimensions,
                input_size=len(data),
                output_size=len(output)
            )
            return output

    # =========================================================================
    # Stages
    # =========================================================================

    def _preprocess(self, data: bytes) -> Tuple[bytes, Tuple[int, int]]:
        """Orient, bound and contrast-normalize the input for the model."""
        image = normalize_orientation(decode_image(data, operation="preprocess"))
        width, height = image.size

        resized = fit_inside(image, width, height)
        normalized = _normalize_contrast(resized)

        # Intermediate only; favour speed over size
        return encode_png(normalized, compress_level=1, optimize=False), (width, height)

    def _segment(self, data: bytes) -> bytes:
        try:
            return self.segmenter.segment(data, self.config)
        except Exception as e:
            raise SegmentationError(str(e) or "Unknown background removal error") from e

    def _postprocess(self, segmented: bytes) -> bytes:
        image = decode_image(segmented, operation="postprocess")
        refined = apply_refined_alpha(image)
        return encode_png(refined, compress_level=9, optimize=True)

    @staticmethod
    def _transition(current: RemovalState, target: RemovalState) -> RemovalState:
        logger.debug("background_removal_state", previous=current.value, state=target.value)
        return target


def _normalize_contrast(image: Image.Image) -> Image.Image:
    """Stretch each colour channel to the full range; alpha is left untouched."""
    if has_alpha(image):
        rgba = image.convert("RGBA")
        stretched = ImageOps.autocontrast(rgba.convert("RGB"), cutoff=1)
        stretched.putalpha(rgba.getchannel("A"))
        return stretched
    return ImageOps.autocontrast(image.convert("RGB"), cutoff=1)
