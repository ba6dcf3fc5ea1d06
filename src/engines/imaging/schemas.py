import base64
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.engines.imaging.formats import OutputFormat
from src.engines.imaging.quality import QualityPreset


class RawImageInput(BaseModel):
    """Uploaded image exactly as received from the form parser."""
    model_config = ConfigDict(frozen=True)

    data: bytes
    declared_mime: str
    filename: str

    @property
    def size(self) -> int:
        return len(self.data)


class CompressOptions(BaseModel):
    """Options for the compression engine. ``quality`` takes precedence over ``preset``."""
    model_config = ConfigDict(frozen=True)

    quality: Optional[float] = None
    preset: Optional[QualityPreset] = None
    max_width: Optional[int] = Field(None, gt=0)
    max_height: Optional[int] = Field(None, gt=0)
    format: OutputFormat = OutputFormat.JPEG


class ProcessedImage(BaseModel):
    """
    Result of a transform.

    Build through ``from_bytes`` so ``size`` and ``base64`` always describe
    ``data``.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    mime: str
    size: int
    data: bytes
    base64: str

    @classmethod
    def from_bytes(cls, data: bytes, name: str, mime: str) -> "ProcessedImage":
        return cls(
            name=name,
            mime=mime,
            size=len(data),
            data=data,
            base64=base64.b64encode(data).decode("ascii"),
        )

    def with_name(self, name: str) -> "ProcessedImage":
        """Copy of this image under a different name."""
        return self.model_copy(update={"name": name})
