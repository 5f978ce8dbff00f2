"""EXIF orientation inspection."""

import logging
from enum import Enum
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

EXIF_ORIENTATION_TAG = 0x0112

# 0 is not a valid tag value but some writers emit it for "unset".
IDENTITY_ORIENTATIONS = (0, 1)


class AccessMode(str, Enum):
    """Decode strategy."""

    SEQUENTIAL = "sequential"
    RANDOM = "random"


def exif_orientation(buffer: bytes) -> Optional[int]:
    """
    Read the EXIF orientation tag without decoding pixel data.

    Returns:
        Orientation value, or None when absent or unreadable
    """
    try:
        with Image.open(BytesIO(buffer)) as image:
            value = image.getexif().get(EXIF_ORIENTATION_TAG)
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        logger.debug(f"Unable to read EXIF metadata: {e}")
        return None

    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def needs_rotation(buffer: bytes, rotation: Optional[int] = None) -> bool:
    """Whether decoding must correct orientation or apply a rotation."""
    if rotation is not None:
        return True

    orientation = exif_orientation(buffer)
    return orientation is not None and orientation not in IDENTITY_ORIENTATIONS


def access_mode(buffer: bytes, rotation: Optional[int] = None) -> AccessMode:
    """Select sequential decode unless orientation has to be corrected."""
    if needs_rotation(buffer, rotation):
        return AccessMode.RANDOM
    return AccessMode.SEQUENTIAL
