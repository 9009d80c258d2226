"""Pluggable text extraction for image claims.

The engine does not ship an OCR implementation. A backend turns image
bytes into an ExtractionResult; the default backend refuses every image,
which routes image sessions to manual review.
"""

import base64
import binascii
from abc import ABC, abstractmethod
from typing import Optional

from truth_engine.errors import ExtractionFailure, ProtocolError
from truth_engine.schemas.claim import ExtractionResult

MAX_IMAGE_BYTES = 10 * 1024 * 1024


class ExtractionBackend(ABC):
    """Turns an image into text plus a confidence."""

    name = "extraction"

    @abstractmethod
    async def extract(self, image: bytes, filename: Optional[str] = None) -> ExtractionResult:
        """Extract text, raising ExtractionFailure when nothing usable comes out."""


class UnconfiguredExtractionBackend(ExtractionBackend):
    name = "unconfigured"

    async def extract(self, image: bytes, filename: Optional[str] = None) -> ExtractionResult:
        raise ExtractionFailure("No text extraction backend is configured")


def decode_image_payload(payload: str) -> bytes:
    """
    Decode a base64 image, with or without a ``data:`` URL prefix.

    Raises:
        ProtocolError: If the payload is not valid base64 or too large.
    """
    if payload.startswith("data:"):
        _, _, payload = payload.partition(",")
    try:
        image = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ProtocolError("imageBuffer is not valid base64", "start_image_verification") from None
    if not image:
        raise ProtocolError("imageBuffer is empty", "start_image_verification")
    if len(image) > MAX_IMAGE_BYTES:
        raise ProtocolError("imageBuffer exceeds 10 MB", "start_image_verification")
    return image
