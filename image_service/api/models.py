"""API request models and query-string parsing."""

import re
from collections import defaultdict
from typing import Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from image_service.api.config import DEFAULT_QUALITY
from image_service.core.encoder import ImageFormat
from image_service.core.errors import InvalidRequest
from image_service.core.geometry import Placement, PositionKind

ROTATIONS = (0, 90, 180, 270)

WATERMARK_KEY = re.compile(r"^watermarks\[(\d+)\](?:\.(\w+)|\[(\w+)\])$")

FLAT_KEYS = ("image_address", "rotation", "format", "quality", "square")


class Size(BaseModel):
    """Requested output size; the missing dimension follows the aspect ratio."""

    model_config = ConfigDict(frozen=True)

    w: Optional[int] = Field(default=None, ge=1, description="Target width in pixels")
    h: Optional[int] = Field(default=None, ge=1, description="Target height in pixels")


class CropBox(BaseModel):
    """Smart crop size."""

    model_config = ConfigDict(frozen=True)

    w: Optional[int] = Field(default=None, ge=1, description="Crop width in pixels")
    h: Optional[int] = Field(default=None, ge=1, description="Crop height in pixels")


class WatermarkSpec(BaseModel):
    """A watermark to composite over the image."""

    model_config = ConfigDict(frozen=True)

    image_address: str = Field(..., min_length=1, description="URL or path of the watermark")
    size: int = Field(
        ..., ge=1, le=100, description="Percentage of the base image taken by the watermark"
    )
    alpha: float = Field(default=1.0, ge=0.0, le=1.0, description="Opacity multiplier")
    x: int = Field(default=0, description="Horizontal offset; negative anchors to the right")
    y: int = Field(default=0, description="Vertical offset; negative anchors to the bottom")
    position: PositionKind = Field(default=PositionKind.POINT, description="Offset anchor")

    @field_validator("position", mode="before")
    @classmethod
    def _lowercase_position(cls, value: object) -> object:
        return value.lower() if isinstance(value, str) else value

    @property
    def placement(self) -> Placement:
        return Placement(kind=self.position, dx=self.x, dy=self.y)


class TransformRequest(BaseModel):
    """Request parameters for an image transformation."""

    model_config = ConfigDict(frozen=True)

    image_address: str = Field(..., min_length=1, description="URL or path of the source image")
    size: Optional[Size] = None
    crop: Optional[CropBox] = None
    rotation: Optional[int] = Field(default=None, description="Clockwise rotation in degrees")
    format: ImageFormat = Field(..., description="Output image format")
    quality: int = Field(default=DEFAULT_QUALITY, ge=1, le=100, description="Encode quality")
    watermarks: list[WatermarkSpec] = Field(default_factory=list)
    square: bool = Field(default=False, description="Pad the output to a white square")

    @field_validator("format", mode="before")
    @classmethod
    def _normalize_format(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.lower()
            return "jpeg" if value == "jpg" else value
        return value

    @field_validator("rotation")
    @classmethod
    def _check_rotation(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value not in ROTATIONS:
            raise ValueError(f"rotation must be one of {ROTATIONS}")
        return value


def _describe(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def parse_transform_request(items: Iterable[tuple[str, str]]) -> TransformRequest:
    """
    Build a TransformRequest from query-string pairs.

    Watermarks are given as ``watermarks[i].field`` or ``watermarks[i][field]``
    and ordered by index.

    Raises:
        InvalidRequest: If parameters are missing or malformed
    """
    data: dict[str, object] = {}
    size: dict[str, str] = {}
    crop: dict[str, str] = {}
    watermarks: dict[int, dict[str, str]] = defaultdict(dict)

    for key, value in items:
        match = WATERMARK_KEY.match(key)
        if match:
            field = match.group(2) or match.group(3)
            watermarks[int(match.group(1))][field] = value
        elif key in ("w", "h"):
            size[key] = value
        elif key in ("crop_w", "crop_h"):
            crop[key[len("crop_"):]] = value
        elif key in FLAT_KEYS:
            data[key] = value

    if size:
        data["size"] = size
    if crop:
        data["crop"] = crop
    if watermarks:
        data["watermarks"] = [watermarks[index] for index in sorted(watermarks)]

    try:
        return TransformRequest.model_validate(data)
    except ValidationError as e:
        raise InvalidRequest(
            f"Invalid transform request: {_describe(e)}",
            public_message=f"The provided parameters within the query string aren't valid: "
            f"{_describe(e)}",
        ) from e


def apply_quality_overrides(request: TransformRequest, rules: Mapping[str, int]) -> TransformRequest:
    """Replace the quality with the first rule whose pattern matches the address."""
    for pattern, quality in rules.items():
        if re.search(pattern, request.image_address):
            return request.model_copy(update={"quality": quality})
    return request
