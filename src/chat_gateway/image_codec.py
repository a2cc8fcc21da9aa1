"""Base64 data-URI image validation and normalization.

Every image handed to a provider travels as
``data:image/<format>;base64,<payload>``. This module checks that such a
string is well formed, decodes to at most :data:`MAX_IMAGE_BYTES` and that the
decoded bytes really are the declared format (by their magic bytes). It can
also repair the common malformed inputs: a bare base64 payload without any
prefix, or a prefix with an upper-case or aliased format token.
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DATA_URI_PATTERN = re.compile(
    r"^data:image/(jpeg|jpg|png|webp|gif|bmp|tiff);base64,[A-Za-z0-9+/]+={0,2}$"
)
DATA_URI_PREFIX = "data:image/"

MAX_IMAGE_BYTES = 5 * 1024 * 1024  # 5MB

FORMAT_ALIASES = {"jpg": "jpeg", "tif": "tiff"}


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of :func:`validate`."""

    valid: bool
    error: Optional[str] = None
    oversized: bool = False

    @classmethod
    def success(cls) -> "ValidationResult":
        return cls(True)

    @classmethod
    def failure(cls, error: str, oversized: bool = False) -> "ValidationResult":
        return cls(False, error, oversized)

    def __bool__(self) -> bool:
        return self.valid

    def __str__(self) -> str:
        return "Valid" if self.valid else f"Invalid: {self.error}"


def canonical_format(fmt: Optional[str]) -> Optional[str]:
    """Lower-case a format token and resolve aliases (``jpg`` -> ``jpeg``)."""
    if fmt is None:
        return None
    token = fmt.strip().lower().lstrip(".")
    if token.startswith("image/"):
        token = token[len("image/"):]
    return FORMAT_ALIASES.get(token, token)


def detect_format(data: bytes) -> Optional[str]:
    """Identify an image format from its leading bytes.

    Args:
        data: Raw image bytes

    Returns:
        One of jpeg/png/webp/gif/bmp/tiff, or None if unrecognized
    """
    if not data or len(data) < 4:
        return None
    if data[:3] == b"\xff\xd8\xff":
        return "jpeg"
    if len(data) >= 8 and data[:4] == b"\x89PNG":
        return "png"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    if len(data) >= 6 and data[:6] in (b"GIF87a", b"GIF89a"):
        return "gif"
    if data[:2] == b"BM":
        return "bmp"
    if data[:4] in (b"II*\x00", b"MM\x00*"):
        return "tiff"
    return None


def matches_format(data: bytes, fmt: str) -> bool:
    """Check that ``data`` carries the magic bytes of ``fmt``."""
    if not data or len(data) < 4:
        return False
    return detect_format(data) == canonical_format(fmt)


def declared_format(data_uri: str) -> Optional[str]:
    """Return the raw format token of a ``data:image/...`` string."""
    if not data_uri.startswith(DATA_URI_PREFIX):
        return None
    header = data_uri.split(",", 1)[0]
    return header.split(";", 1)[0][len(DATA_URI_PREFIX):]


def decode(data_uri: str) -> bytes:
    """Decode the payload of a data URI (strict base64).

    Raises:
        ValueError: If there is no comma separator or the payload is not base64
    """
    if "," not in data_uri:
        raise ValueError("data URI has no comma separator")
    payload = data_uri.split(",", 1)[1]
    try:
        return base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError(f"invalid base64 payload: {e}") from e


def build_data_uri(data: bytes, fmt: Optional[str] = None) -> str:
    """Encode raw image bytes as a canonical data URI.

    Args:
        data: Raw image bytes
        fmt: Format token; sniffed from the bytes when omitted

    Raises:
        ValueError: If no format is given and none can be detected
    """
    fmt = canonical_format(fmt) or detect_format(data)
    if fmt is None:
        raise ValueError("cannot determine image format")
    encoded = base64.standard_b64encode(data).decode("ascii")
    return f"{DATA_URI_PREFIX}{fmt};base64,{encoded}"


def validate(data_uri: Optional[str], max_bytes: int = MAX_IMAGE_BYTES) -> ValidationResult:
    """Validate a base64 image data URI.

    Args:
        data_uri: Candidate ``data:image/<fmt>;base64,<payload>`` string
        max_bytes: Upper bound for the decoded payload

    Returns:
        ValidationResult; ``oversized`` is set when only the size check failed
    """
    if data_uri is None or not data_uri.strip():
        return ValidationResult.failure("image content is empty")

    if not data_uri.startswith(DATA_URI_PREFIX):
        return ValidationResult.failure(
            "image must be a base64 data URI, e.g. data:image/jpeg;base64,..."
        )

    if not DATA_URI_PATTERN.match(data_uri):
        return ValidationResult.failure(
            "malformed image data URI, expected data:image/[format];base64,[data]"
        )

    try:
        image_bytes = decode(data_uri)
    except ValueError as e:
        return ValidationResult.failure(f"invalid base64 encoding: {e}")

    if len(image_bytes) > max_bytes:
        return ValidationResult.failure(
            f"image is {len(image_bytes):,} bytes, limit is {max_bytes:,}",
            oversized=True,
        )

    fmt = declared_format(data_uri)
    if not matches_format(image_bytes, fmt):
        return ValidationResult.failure(
            f"image bytes do not match declared format '{fmt}' or are corrupt"
        )

    return ValidationResult.success()


def normalize(data_uri: Optional[str]) -> Optional[str]:
    """Best-effort repair of a base64 image string.

    - already valid: returned unchanged
    - bare base64 (no comma): format sniffed from the bytes, prefix attached
    - ``data:image/<token>...,payload``: token lower-cased and aliased, clean
      ``;base64`` prefix rebuilt
    - anything else: returned unchanged (stripped)

    Blank input yields None. ``normalize(normalize(x)) == normalize(x)``.
    """
    if data_uri is None or not data_uri.strip():
        return None

    data_uri = data_uri.strip()

    if DATA_URI_PATTERN.match(data_uri):
        return data_uri

    parts = data_uri.split(",")
    if len(parts) == 1:
        try:
            image_bytes = base64.b64decode(data_uri, validate=True)
        except binascii.Error:
            logger.debug("Bare image payload is not valid base64, leaving as is")
            return data_uri
        fmt = detect_format(image_bytes)
        if fmt is not None:
            return f"{DATA_URI_PREFIX}{fmt};base64,{data_uri}"
        return data_uri

    if len(parts) == 2 and parts[0].startswith(DATA_URI_PREFIX):
        fmt = canonical_format(declared_format(parts[0]))
        return f"{DATA_URI_PREFIX}{fmt};base64,{parts[1]}"

    return data_uri
