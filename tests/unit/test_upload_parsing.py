import io

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from src.api.dependencies import parse_bool, parse_number, read_image_upload, sanitize_filename
from src.core.exceptions import EmptyInputError, PayloadTooLargeError, ValidationError


def _upload(data: bytes, filename="photo.jpg", content_type="image/jpeg") -> UploadFile:
    return UploadFile(
        file=io.BytesIO(data),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


@pytest.mark.asyncio
async def test_read_upload():
    upload = await read_image_upload(_upload(b"abc", filename="my photo (1).JPG", content_type="Image/JPEG"))

    assert upload.data == b"abc"
    assert upload.filename == "my_photo__1_.JPG"
    assert upload.declared_mime == "image/jpeg"


@pytest.mark.asyncio
async def test_missing_file():
    with pytest.raises(ValidationError) as exc_info:
        await read_image_upload(None)

    assert exc_info.value.message == "Image file is required."


@pytest.mark.asyncio
async def test_oversized_file():
    with pytest.raises(PayloadTooLargeError) as exc_info:
        await read_image_upload(_upload(b"x" * 11), max_size_bytes=10)

    assert exc_info.value.code == 413


@pytest.mark.asyncio
async def test_file_at_limit_is_accepted():
    upload = await read_image_upload(_upload(b"x" * 10), max_size_bytes=10)

    assert upload.size == 10


@pytest.mark.asyncio
async def test_empty_file():
    with pytest.raises(EmptyInputError):
        await read_image_upload(_upload(b""))


def test_sanitize_filename_defaults():
    assert sanitize_filename(None) == "upload"
    assert sanitize_filename("") == "upload"
    assert sanitize_filename("a-b_c.png") == "a-b_c.png"


@pytest.mark.parametrize("value, expected", [
    ("80", 80),
    ("72.5", 72.5),
    (" 3 ", 3),
    ("abc", None),
    ("", None),
    ("inf", None),
    ("nan", None),
    (None, None),
])
def test_parse_number(value, expected):
    assert parse_number(value) == expected


@pytest.mark.parametrize("value, expected", [
    ("true", True), ("1", True), ("on", True), ("TRUE", True),
    ("false", False), ("0", False), (None, False),
])
def test_parse_bool(value, expected):
    assert parse_bool(value) is expected
