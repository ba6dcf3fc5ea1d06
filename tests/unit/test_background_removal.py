import io
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from PIL import Image

from src.core.admission import AdmissionGate
from src.core.exceptions import BusyError, EmptyInputError, ProcessingError, SegmentationError
from src.pipeline.background_removal import BackgroundRemovalPipeline
from src.pipeline.segmentation import SegmentationConfig, SimulatedSegmenter


def _open(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data))


def test_remove_background_produces_transparent_png(removal_pipeline, png_bytes):
    output = removal_pipeline.remove_background(png_bytes)

    image = _open(output)
    assert image.format == "PNG"
    assert image.mode == "RGBA"
    assert image.size == (40, 40)
    # Simulated segmenter marks a 5px border as background
    assert image.getpixel((0, 0))[3] == 0
    assert image.getpixel((20, 20))[3] == 255
    assert removal_pipeline.gate.active_count == 0


def test_segmenter_receives_preprocessed_png_and_config(png_bytes):
    segmenter = MagicMock()
    segmenter.segment.side_effect = SimulatedSegmenter().segment
    config = SegmentationConfig(model="u2net")
    pipeline = BackgroundRemovalPipeline(AdmissionGate(), segmenter, config=config)

    pipeline.remove_background(png_bytes)

    sent, sent_config = segmenter.segment.call_args.args
    assert _open(sent).format == "PNG"
    assert _open(sent).size == (40, 40)
    assert sent_config is config
    assert sent_config.output_format == "PNG"
    assert sent_config.quality == 1.0


def test_empty_input_never_reaches_segmenter():
    segmenter = MagicMock()
    gate = AdmissionGate()
    pipeline = BackgroundRemovalPipeline(gate, segmenter)

    with pytest.raises(EmptyInputError) as exc_info:
        pipeline.remove_background(b"")

    assert exc_info.value.message == "Uploaded file is empty or unreadable."
    segmenter.segment.assert_not_called()
    assert gate.active_count == 0


def test_busy_gate_rejects_without_touching_input(png_bytes):
    segmenter = MagicMock()
    gate = AdmissionGate(max_concurrent=1)
    gate.try_enter()
    pipeline = BackgroundRemovalPipeline(gate, segmenter, retry_after=4)

    with pytest.raises(BusyError) as exc_info:
        pipeline.remove_background(png_bytes)

    assert "busy" in exc_info.value.message.lower()
    assert exc_info.value.headers == {"Retry-After": "4"}
    segmenter.segment.assert_not_called()
    assert gate.active_count == 1


def test_segmentation_failure_is_wrapped_and_releases_slot(png_bytes):
    segmenter = MagicMock()
    segmenter.segment.side_effect = RuntimeError("model exploded")
    gate = AdmissionGate()
    pipeline = BackgroundRemovalPipeline(gate, segmenter)

    with pytest.raises(SegmentationError) as exc_info:
        pipeline.remove_background(png_bytes)

    assert exc_info.value.message == "model exploded"
    assert exc_info.value.code == 500
    assert gate.active_count == 0


def test_postprocessing_failure_releases_slot(png_bytes):
    segmenter = MagicMock()
    segmenter.segment.return_value = b"not an image"
    gate = AdmissionGate()
    pipeline = BackgroundRemovalPipeline(gate, segmenter)

    with pytest.raises(ProcessingError):
        pipeline.remove_background(png_bytes)

    assert gate.active_count == 0


def test_undecodable_input_releases_slot():
    gate = AdmissionGate()
    pipeline = BackgroundRemovalPipeline(gate, MagicMock())

    with pytest.raises(ProcessingError):
        pipeline.remove_background(b"garbage")

    assert gate.active_count == 0


def test_slot_is_held_while_segmenting(png_bytes):
    gate = AdmissionGate()
    observed = []
    simulated = SimulatedSegmenter()

    def segment(data, config):
        observed.append(gate.active_count)
        return simulated.segment(data, config)

    segmenter = MagicMock()
    segmenter.segment.side_effect = segment

    BackgroundRemovalPipeline(gate, segmenter).remove_background(png_bytes)

    assert observed == [1]
    assert gate.active_count == 0


def test_third_concurrent_removal_is_rejected(png_bytes):
    gate = AdmissionGate(max_concurrent=2)
    entered = threading.Semaphore(0)
    release = threading.Event()
    simulated = SimulatedSegmenter()

    def slow_segment(data, config):
        entered.release()
        release.wait(timeout=10)
        return simulated.segment(data, config)

    segmenter = MagicMock()
    segmenter.segment.side_effect = slow_segment
    pipeline = BackgroundRemovalPipeline(gate, segmenter)

    with ThreadPoolExecutor(max_workers=2) as pool:
        running = [pool.submit(pipeline.remove_background, png_bytes) for _ in range(2)]
        assert entered.acquire(timeout=10)
        assert entered.acquire(timeout=10)

        with pytest.raises(BusyError):
            pipeline.remove_background(png_bytes)

        release.set()
        outputs = [future.result(timeout=10) for future in running]

    assert all(_open(out).mode == "RGBA" for out in outputs)
    assert gate.active_count == 0
    # Capacity is back once the first two finish
    assert _open(pipeline.remove_background(png_bytes)).mode == "RGBA"


def test_preprocessing_stretches_low_contrast_input():
    ramp = np.tile(np.linspace(100, 120, 40).round().astype(np.uint8), (40, 1))
    buffer = io.BytesIO()
    Image.fromarray(np.stack([ramp] * 3, axis=-1)).save(buffer, format="PNG")

    segmenter = MagicMock()
    segmenter.segment.side_effect = SimulatedSegmenter().segment
    BackgroundRemovalPipeline(AdmissionGate(), segmenter).remove_background(buffer.getvalue())

    sent = np.asarray(_open(segmenter.segment.call_args.args[0]).convert("L"))
    assert sent.min() <= 5
    assert sent.max() >= 250


def test_slot_is_taken_through_admit(png_bytes):
    gate = AdmissionGate()
    pipeline = BackgroundRemovalPipeline(gate, SimulatedSegmenter(), retry_after=9)

    with patch.object(gate, "admit", wraps=gate.admit) as admit:
        pipeline.remove_background(png_bytes)

    admit.assert_called_once_with(retry_after=9)
    assert gate.active_count == 0
