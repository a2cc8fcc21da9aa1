"""Image compression and upload conversion for vision providers."""

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from . import image_codec
from .errors import GatewayError, ImageValidationFailed, InvalidContent

logger = logging.getLogger(__name__)

# Provider-side image constraints: 6k x 6k, 5MB
MAX_WIDTH = 6000
MAX_HEIGHT = 6000
TARGET_SIZE_KB = 5 * 1024

QUALITY_LADDER = (0.9, 0.8, 0.7, 0.6, 0.5, 0.4, 0.3, 0.2, 0.1)
SCALE_LADDER = (0.9, 0.8, 0.7, 0.6, 0.5, 0.4, 0.3, 0.2, 0.1)
FALLBACK_SIZE = (100, 100)
FALLBACK_QUALITY = 0.1

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".tif", ".tiff"}
IMAGE_MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}


@dataclass(frozen=True)
class UploadedFile:
    """A binary file handed over by the front door (multipart upload)."""

    filename: str
    content: bytes
    content_type: Optional[str] = None

    @classmethod
    def from_path(cls, file_path: Path) -> "UploadedFile":
        path = Path(file_path).expanduser().resolve()
        if not path.is_file():
            raise FileNotFoundError(f"Image not found: {file_path}")
        return cls(
            filename=path.name,
            content=path.read_bytes(),
            content_type=IMAGE_MEDIA_TYPES.get(path.suffix.lower()),
        )

    @property
    def size(self) -> int:
        return len(self.content)

    def is_image(self) -> bool:
        """True if the declared content type or file extension names an image."""
        if self.content_type:
            return self.content_type.lower().startswith("image/")
        return Path(self.filename).suffix.lower() in IMAGE_EXTENSIONS


class ImageCompressor:
    """Shrinks images to fit a resolution box and a byte budget.

    The search is a fixed ladder, so it always terminates:

    1. fit inside (max_width, max_height), try each JPEG quality 0.9 .. 0.1
    2. shrink the box by 0.9 .. 0.1 and retry every quality at each scale
    3. 100x100 at quality 0.1, returned even if still above target

    That is at most 9 + 81 + 1 = 91 encodes.
    """

    def compress(
        self,
        data: bytes,
        max_width: int = MAX_WIDTH,
        max_height: int = MAX_HEIGHT,
        target_size_kb: int = TARGET_SIZE_KB,
    ) -> bytes:
        """Compress image bytes to at most ``target_size_kb`` kilobytes.

        Args:
            data: Encoded source image
            max_width: Maximum output width in pixels
            max_height: Maximum output height in pixels
            target_size_kb: Size budget in KB

        Returns:
            The original bytes if already small enough, else JPEG bytes

        Raises:
            InvalidContent: If the bytes cannot be decoded as an image
        """
        target_bytes = target_size_kb * 1024

        if len(data) <= target_bytes:
            return data

        source = self._open(data)

        # Phase A: resolution cap, descending quality
        fitted = self._fit(source, max_width, max_height)
        for quality in QUALITY_LADDER:
            encoded = self._encode(fitted, quality)
            if len(encoded) <= target_bytes:
                logger.debug(
                    f"Compressed to {fitted.size[0]}x{fitted.size[1]} at quality {quality}: "
                    f"{len(data):,} -> {len(encoded):,} bytes"
                )
                return encoded

        # Phase B: shrink the box, descending quality at each scale
        for scale in SCALE_LADDER:
            scaled = self._fit(source, int(max_width * scale), int(max_height * scale))
            for quality in QUALITY_LADDER:
                encoded = self._encode(scaled, quality)
                if len(encoded) <= target_bytes:
                    logger.debug(
                        f"Compressed to {scaled.size[0]}x{scaled.size[1]} "
                        f"(scale {scale}, quality {quality}): "
                        f"{len(data):,} -> {len(encoded):,} bytes"
                    )
                    return encoded

        fallback = self._encode(self._fit(source, *FALLBACK_SIZE), FALLBACK_QUALITY)
        logger.warning(
            f"Compression ladder exhausted, using minimal fallback ({len(fallback):,} bytes, "
            f"target {target_bytes:,})"
        )
        return fallback

    def _open(self, data: bytes) -> Image.Image:
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
        except (UnidentifiedImageError, OSError) as e:
            raise InvalidContent(f"Cannot decode image: {e}") from e
        except Image.DecompressionBombError as e:
            raise InvalidContent(f"Image dimensions too large: {e}") from e
        return img

    @staticmethod
    def _fit(img: Image.Image, width: int, height: int) -> Image.Image:
        """Scale down (never up) to fit inside width x height, keeping aspect ratio."""
        box = (max(1, width), max(1, height))
        fitted = img.copy()
        fitted.thumbnail(box, Image.Resampling.LANCZOS)
        return fitted

    def _encode(self, img: Image.Image, quality: float) -> bytes:
        if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
            # JPEG has no alpha channel, flatten onto white
            rgba = img.convert("RGBA")
            flattened = Image.new("RGB", rgba.size, (255, 255, 255))
            flattened.paste(rgba, mask=rgba.getchannel("A"))
            img = flattened
        elif img.mode != "RGB":
            img = img.convert("RGB")

        output = io.BytesIO()
        img.save(output, format="JPEG", quality=max(1, int(round(quality * 100))), optimize=True)
        return output.getvalue()


class ImageProcessor:
    """Turns uploaded files into validated base64 data URIs."""

    def __init__(
        self,
        compressor: Optional[ImageCompressor] = None,
        max_width: int = MAX_WIDTH,
        max_height: int = MAX_HEIGHT,
        target_size_kb: int = TARGET_SIZE_KB,
    ):
        """Initialize image processor.

        Args:
            compressor: Compressor to use (a fresh one by default)
            max_width: Resolution cap passed to the compressor
            max_height: Resolution cap passed to the compressor
            target_size_kb: Byte budget passed to the compressor
        """
        self.compressor = compressor or ImageCompressor()
        self.max_width = max_width
        self.max_height = max_height
        self.target_size_kb = target_size_kb

    def to_data_uri(self, upload: UploadedFile) -> str:
        """Compress an uploaded image and encode it as a data URI.

        Args:
            upload: The uploaded file

        Returns:
            Normalized, validated ``data:image/...`` string

        Raises:
            InvalidContent: If the file is not an image or cannot be decoded
            ImageValidationFailed: If the result still fails validation
        """
        if not upload.content:
            raise InvalidContent(f"Uploaded file is empty: {upload.filename}")
        if not upload.is_image():
            raise InvalidContent(f"Not an image file: {upload.filename}")

        compressed = self.compressor.compress(
            upload.content, self.max_width, self.max_height, self.target_size_kb
        )

        # The compressor may have re-encoded to JPEG, so trust the bytes over
        # the declared content type.
        fmt = image_codec.detect_format(compressed)
        if fmt is None:
            raise InvalidContent(f"Unrecognized image format: {upload.filename}")

        data_uri = image_codec.normalize(image_codec.build_data_uri(compressed, fmt))
        result = image_codec.validate(data_uri)
        if not result:
            raise ImageValidationFailed(f"{upload.filename}: {result.error}")

        logger.info(
            f"Processed: {upload.filename} "
            f"({upload.size:,} -> {len(compressed):,} bytes)"
        )
        return data_uri

    def convert_uploads(self, uploads: list[UploadedFile]) -> dict[str, str]:
        """Convert uploads to ``image_<n><ext>`` -> data URI, skipping failures.

        Args:
            uploads: Uploaded files in submission order

        Returns:
            Ordered mapping of generated file names to data URIs
        """
        images: dict[str, str] = {}
        index = 1
        for upload in uploads:
            if upload is None or not upload.content:
                continue
            try:
                data_uri = self.to_data_uri(upload)
            except (GatewayError, ValueError) as e:
                logger.warning(f"Skipping upload {upload.filename}: {e}")
                continue

            suffix = Path(upload.filename).suffix.lower()
            ext = suffix if suffix in (".png", ".gif", ".webp") else ".jpg"
            images[f"image_{index}{ext}"] = data_uri
            index += 1
        return images
