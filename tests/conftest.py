import io
from typing import AsyncGenerator

import pytest
from httpx import AsyncClient, ASGITransport
from PIL import Image

from src.main import app
from src.api.dependencies import get_background_removal_pipeline
from src.core.admission import AdmissionGate
from src.pipeline.background_removal import BackgroundRemovalPipeline
from src.pipeline.segmentation import SimulatedSegmenter


def _make_image(
    width: int = 10,
    height: int = 10,
    mode: str = "RGB",
    color=(200, 30, 30),
    fmt: str = "PNG",
    **save_kwargs
) -> bytes:
    image = Image.new(mode, (width, height), color)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


@pytest.fixture
def make_image():
    """Factory for encoded test images."""
    return _make_image


@pytest.fixture
def png_bytes() -> bytes:
    return _make_image(40, 40)


@pytest.fixture
def jpeg_bytes() -> bytes:
    return _make_image(40, 30, fmt="JPEG")


@pytest.fixture
def segmenter() -> SimulatedSegmenter:
    return SimulatedSegmenter()


@pytest.fixture
def removal_pipeline(segmenter) -> BackgroundRemovalPipeline:
    return BackgroundRemovalPipeline(
        gate=AdmissionGate(max_concurrent=2),
        segmenter=segmenter,
        retry_after=3
    )


@pytest.fixture
async def client(removal_pipeline) -> AsyncGenerator[AsyncClient, None]:
    # Fresh gate + simulated model per test; no real segmentation model is loaded
    app.dependency_overrides[get_background_removal_pipeline] = lambda: removal_pipeline
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    app.dependency_overrides.clear()
