"""Conversion of generic message content into provider multimodal items."""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from . import image_codec
from .errors import GatewayError
from .image_processor import MAX_HEIGHT, MAX_WIDTH, TARGET_SIZE_KB, ImageCompressor
from .providers.base import ChatRequest, ContentItem, ContentType, Message

logger = logging.getLogger(__name__)


@dataclass
class NormalizedContent:
    """Provider messages plus bookkeeping about what was kept and dropped."""

    messages: list[dict] = field(default_factory=list)
    image_count: int = 0
    skipped: list[str] = field(default_factory=list)


class ContentNormalizer:
    """Builds provider message lists from generic messages.

    Text passes through, file URLs pass through untouched, images are
    normalized, validated and (when only too large) compressed. An image that
    cannot be repaired is dropped with a warning instead of failing the
    whole message.
    """

    def __init__(
        self,
        compressor: Optional[ImageCompressor] = None,
        max_image_bytes: int = image_codec.MAX_IMAGE_BYTES,
    ) -> None:
        self.compressor = compressor or ImageCompressor()
        self.max_image_bytes = max_image_bytes

    def normalize_request(
        self,
        request: ChatRequest,
        extra_items: Iterable[ContentItem] = (),
    ) -> NormalizedContent:
        """Convert every message of a request.

        Messages with image or file items become content arrays; text-only
        messages stay plain strings and blank ones are dropped.

        Args:
            request: The generic request
            extra_items: Items to append to the last user message (images or
                files supplied next to the request rather than inside it)

        Returns:
            NormalizedContent with provider messages and the valid image count
        """
        result = NormalizedContent()
        extra_items = tuple(extra_items)
        attach_at = self._attachment_index(request.messages) if extra_items else None

        for index, message in enumerate(request.messages):
            items = message.items() if message.is_multimodal or index == attach_at else ()
            if index == attach_at:
                items = items + extra_items

            if not any(item.type is not ContentType.TEXT for item in items):
                text = message.text_content()
                if text.strip():
                    result.messages.append({"role": message.role, "content": text})
                continue

            content = self.normalize_items(items, result)
            result.messages.append({"role": message.role, "content": content})

        if extra_items and attach_at is None:
            content = self.normalize_items(extra_items, result)
            result.messages.append({"role": "user", "content": content})

        return result

    def normalize_items(
        self,
        items: Iterable[ContentItem],
        result: Optional[NormalizedContent] = None,
    ) -> list[dict]:
        """Convert one message's items to the provider's item list.

        Never returns an empty list: a message with nothing usable gets a
        single empty text item.
        """
        if result is None:
            result = NormalizedContent()

        content: list[dict] = []
        for item in items:
            if item.type is ContentType.TEXT:
                content.append({"type": "text", "text": item.text})
            elif item.type is ContentType.IMAGE:
                data_uri = self.prepare_image(item.url, result)
                if data_uri is not None:
                    content.append({"type": "image_url", "image_url": {"url": data_uri}})
                    result.image_count += 1
            elif item.type is ContentType.FILE:
                content.append({"type": "file_url", "file_url": {"url": item.url}})
                logger.debug(f"Added file item: {item.url}")
            else:  # pragma: no cover - ContentType is closed
                result.skipped.append(f"unsupported content type {item.type}")

        if not content:
            content.append({"type": "text", "text": ""})
        return content

    def prepare_image(self, data_uri: Optional[str], result: NormalizedContent) -> Optional[str]:
        """Normalize, validate and if needed compress one image.

        Returns:
            The provider-ready data URI, or None if the image was dropped
        """
        normalized = image_codec.normalize(data_uri)
        if normalized is None:
            self._skip(result, "empty image content")
            return None

        validation = image_codec.validate(normalized, self.max_image_bytes)
        if validation.oversized:
            normalized = self._shrink(normalized, result)
            if normalized is None:
                return None
            validation = image_codec.validate(normalized, self.max_image_bytes)

        if not validation:
            self._skip(result, f"image validation failed: {validation.error}")
            return None

        logger.debug(f"Added image item ({len(normalized):,} chars)")
        return normalized

    def _shrink(self, data_uri: str, result: NormalizedContent) -> Optional[str]:
        try:
            raw = image_codec.decode(data_uri)
            compressed = self.compressor.compress(
                raw, MAX_WIDTH, MAX_HEIGHT, min(TARGET_SIZE_KB, self.max_image_bytes // 1024)
            )
            shrunk = image_codec.build_data_uri(compressed)
        except (GatewayError, ValueError) as e:
            self._skip(result, f"oversized image could not be compressed: {e}")
            return None
        logger.info(f"Compressed oversized image: {len(raw):,} -> {len(compressed):,} bytes")
        return shrunk

    @staticmethod
    def _skip(result: NormalizedContent, reason: str) -> None:
        logger.warning(f"Skipping image: {reason}")
        result.skipped.append(reason)

    @staticmethod
    def _attachment_index(messages: tuple[Message, ...]) -> Optional[int]:
        for index in range(len(messages) - 1, -1, -1):
            if messages[index].role == "user":
                return index
        return None
