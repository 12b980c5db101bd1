"""
Image preprocessing before transmission to the vision provider.

Every image is re-encoded as JPEG with a bounded longest edge and a fixed
quality so that per-item token cost stays predictable. Orientation is taken
from EXIF before resizing. Undecodable input is skipped, never fatal.
"""

import base64
import io
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from config.constants import IMAGE_JPEG_QUALITY, IMAGE_MAX_EDGE_PX

from ..models import ImageAsset

logger = logging.getLogger(__name__)


@dataclass
class PreprocessedImage:
    """A re-encoded image ready to embed in a request."""

    asset_id: str
    ordinal: int
    data: bytes
    width: int
    height: int
    original_size_bytes: int
    mime_type: str = "image/jpeg"

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def compression_ratio(self) -> float:
        if not self.original_size_bytes:
            return 0.0
        return 1.0 - (self.size_bytes / self.original_size_bytes)

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("utf-8")
        return f"data:{self.mime_type};base64,{encoded}"


class ImagePreprocessor:
    """Downsize and recompress images to a fixed size/quality envelope."""

    def __init__(self, max_edge: int = IMAGE_MAX_EDGE_PX, quality: int = IMAGE_JPEG_QUALITY):
        """
        Args:
            max_edge: Maximum longest edge in pixels after resizing
            quality: JPEG quality used for re-encoding
        """
        self.max_edge = max_edge
        self.quality = quality

    def preprocess(self, raw: bytes) -> Optional[Tuple[bytes, int, int]]:
        """
        Re-encode raw image bytes.

        Returns:
            Tuple of (jpeg_bytes, width, height), or None if the input
            cannot be decoded.
        """
        try:
            with Image.open(io.BytesIO(raw)) as opened:
                opened.load()
                image = ImageOps.exif_transpose(opened)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.warning(f"Skipping undecodable image ({len(raw)} bytes): {e}")
            return None

        image = self._flatten(image)

        if max(image.size) > self.max_edge:
            image.thumbnail((self.max_edge, self.max_edge), Image.Resampling.LANCZOS)

        with io.BytesIO() as output:
            image.save(output, format="JPEG", quality=self.quality, optimize=True)
            data = output.getvalue()

        return data, image.size[0], image.size[1]

    def preprocess_asset(self, asset: ImageAsset, raw: bytes) -> Optional[PreprocessedImage]:
        """Preprocess one image asset; None when it must be skipped."""
        result = self.preprocess(raw)
        if result is None:
            logger.warning(f"Image {asset.id} (ordinal {asset.ordinal}) skipped: decode error")
            return None

        data, width, height = result
        processed = PreprocessedImage(
            asset_id=asset.id,
            ordinal=asset.ordinal,
            data=data,
            width=width,
            height=height,
            original_size_bytes=len(raw),
        )
        logger.debug(
            f"Preprocessed image {asset.id}: {len(raw)} -> {processed.size_bytes} bytes "
            f"({processed.compression_ratio:.0%} saved, {width}x{height})"
        )
        return processed

    @staticmethod
    def _flatten(image: Image.Image) -> Image.Image:
        """Convert to RGB, compositing transparency onto white."""
        if image.mode in ("RGBA", "LA", "P"):
            rgba = image.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[-1])
            return background
        if image.mode != "RGB":
            return image.convert("RGB")
        return image
