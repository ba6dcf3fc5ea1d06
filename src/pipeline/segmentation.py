"""
Segmentation backends

The pipeline only sees the ``Segmenter`` protocol: bytes in, RGBA PNG bytes
out. ``RembgSegmenter`` runs the real model; ``SimulatedSegmenter`` is a
deterministic stand-in for development and tests.
"""

import io
import threading
from dataclasses import dataclass
from typing import Dict, Protocol

from PIL import Image, ImageDraw

from src.core.config import Settings
from src.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SegmentationConfig:
    """What the pipeline asks of the segmentation model."""
    model: str = "isnet-general-use"
    output_format: str = "PNG"  # must carry alpha
    quality: float = 1.0  # maximum


class Segmenter(Protocol):
    def segment(self, data: bytes, config: SegmentationConfig) -> bytes:
        """Return ``data`` as an alpha-carrying raster with the background made transparent."""
        ...


class RembgSegmenter:
    """rembg-backed segmenter; one ONNX session is cached per model name."""

    def __init__(self):
        self._sessions: Dict[str, object] = {}
        self._lock = threading.Lock()

    def _get_session(self, model: str):
        if model not in self._sessions:
            with self._lock:
                if model not in self._sessions:
                    # Lazy import: onnxruntime is heavy and only needed here
                    from rembg import new_session

                    logger.info("segmentation_session_loading", model=model)
                    self._sessions[model] = new_session(model)
        return self._sessions[model]

    def segment(self, data: bytes, config: SegmentationConfig) -> bytes:
        from rembg import remove

        session = self._get_session(config.model)
        output = remove(data, session=session, force_return_bytes=True)

        if config.output_format.upper() != "PNG":
            image = Image.open(io.BytesIO(output))
            buffer = io.BytesIO()
            image.save(buffer, format=config.output_format)
            output = buffer.getvalue()
        return output


class SimulatedSegmenter:
    """
    Deterministic segmenter for development without the model.

    Keeps the input pixels and marks a border of ``border_ratio`` of the
    shorter side as background.
    """

    def __init__(self, border_ratio: float = 0.125):
        self.border_ratio = border_ratio
        self.calls = 0

    def segment(self, data: bytes, config: SegmentationConfig) -> bytes:
        self.calls += 1
        image = Image.open(io.BytesIO(data)).convert("RGBA")
        width, height = image.size

        border = int(min(width, height) * self.border_ratio)
        mask = Image.new("L", image.size, 0)
        if border * 2 < min(width, height):
            ImageDraw.Draw(mask).rectangle(
                (border, border, width - border - 1, height - border - 1),
                fill=255
            )
        else:
            mask.paste(255, (0, 0, width, height))
        image.putalpha(mask)

        buffer = io.BytesIO()
        image.save(buffer, format=config.output_format)
        logger.debug("segmentation_simulated", width=width, height=height, border=border)
        return buffer.getvalue()


def build_segmenter(settings: Settings) -> Segmenter:
    """Pick the backend from settings."""
    if settings.SIMULATE_SEGMENTATION:
        logger.warning("segmentation_simulated_backend", message="Using simulated segmenter")
        return SimulatedSegmenter()
    return RembgSegmenter()
