"""
Image Service Module

Loads photos for card rendering from data URLs or over HTTP, with a
bounded timeout and size cap, and decodes them with Pillow.
"""

import io
from typing import Optional

import requests
from PIL import Image, UnidentifiedImageError

from config import settings
from utils.exceptions import ImageLoadError
from utils.helpers import decode_data_url, is_valid_url
from utils.logger import get_logger

logger = get_logger(__name__)


class ImageService:
    """Downloads and decodes photos."""

    def __init__(self, timeout: Optional[int] = None, max_bytes: Optional[int] = None,
                 headers: Optional[dict] = None):
        self.timeout = timeout or settings.IMAGE_DOWNLOAD_TIMEOUT
        self.max_bytes = max_bytes or settings.MAX_IMAGE_BYTES
        self.headers = headers or {'User-Agent': settings.USER_AGENT, 'Accept': 'image/*'}

    def load_bytes(self, image_ref: str) -> bytes:
        """
        Return the raw bytes behind an image reference.

        Args:
            image_ref: A data URL or an http(s) URL.

        Raises:
            ImageLoadError: If the reference is invalid, unreachable or too large.
        """
        if not image_ref:
            raise ImageLoadError("Empty image reference")

        if image_ref.startswith("data:"):
            try:
                _, content = decode_data_url(image_ref)
            except ValueError as e:
                raise ImageLoadError(f"Invalid data URL: {e}") from e
        elif is_valid_url(image_ref):
            try:
                response = requests.get(image_ref, headers=self.headers, timeout=self.timeout)
                response.raise_for_status()
            except requests.RequestException as e:
                raise ImageLoadError(f"Could not download {image_ref}: {e}") from e
            content = response.content
        else:
            raise ImageLoadError(f"Unsupported image reference: {image_ref[:60]}")

        if len(content) > self.max_bytes:
            raise ImageLoadError(f"Image too large: {len(content)} bytes (max {self.max_bytes})")
        return content

    @staticmethod
    def decode(content: bytes) -> Image.Image:
        """
        Decode image bytes into an RGBA Pillow image.

        Raises:
            ImageLoadError: If the bytes are not a readable image.
        """
        try:
            image = Image.open(io.BytesIO(content))
            image.load()
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise ImageLoadError(f"Undecodable image data: {e}") from e
        return image.convert("RGBA")

    def load(self, image_ref: Optional[str]) -> Optional[Image.Image]:
        """Load and decode a photo, returning None instead of raising."""
        if not image_ref:
            return None
        try:
            return self.decode(self.load_bytes(image_ref))
        except ImageLoadError as e:
            logger.warning(f"Photo unavailable, rendering without it: {e}")
            return None
