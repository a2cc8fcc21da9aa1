"""Zhipu GLM vision provider."""

import logging
from typing import Any, Iterable, Mapping, Optional
from urllib.parse import urlparse

from ..content import ContentNormalizer
from ..errors import ImageCountExceeded, InvalidContent, MissingRequiredParameter
from ..image_processor import ImageProcessor, UploadedFile
from .base import (
    ChatRequest,
    ChatResponse,
    ContentItem,
    ContentType,
    Platform,
    ResponseMessage,
    Usage,
    VisionStrategy,
    created_from_epoch,
    first_choice,
    status_from_finish_reason,
)

logger = logging.getLogger(__name__)

MODEL_IMAGE_LIMITS = {
    "glm-4.1v-thinking-flash": 1,
    "glm-4v-plus-0111": 5,
}
DEFAULT_IMAGE_LIMIT = 1


class GlmVisionStrategy(VisionStrategy):
    """GLM vision models.

    Accepts images three ways: raw uploaded files (compressed here), a map of
    base64 data URIs, or a map of HTTP(S) file URLs. Every path enforces the
    per-model image limit before anything is sent.
    """

    provider_name = "glm"
    platform = Platform.GLM
    DEFAULT_MODELS = ("glm-4.1v-thinking-flash",)
    priority = 10

    def __init__(
        self,
        client,
        models: Optional[Iterable[str]] = None,
        image_limits: Optional[Mapping[str, int]] = None,
        normalizer: Optional[ContentNormalizer] = None,
        image_processor: Optional[ImageProcessor] = None,
    ) -> None:
        """Initialize strategy.

        Args:
            client: Transport used to reach the GLM API
            models: Model names to serve (defaults to DEFAULT_MODELS)
            image_limits: Per-model image limits, merged over MODEL_IMAGE_LIMITS
            normalizer: Content normalizer (default instance if omitted)
            image_processor: Upload converter (default instance if omitted)
        """
        super().__init__(client, models)
        self.image_limits = {**MODEL_IMAGE_LIMITS, **(image_limits or {})}
        self.normalizer = normalizer or ContentNormalizer()
        self.image_processor = image_processor or ImageProcessor()

    def image_limit(self, model: str) -> int:
        limit = self.image_limits.get(model)
        if limit is None:
            logger.warning(f"No image limit configured for model {model}, using {DEFAULT_IMAGE_LIMIT}")
            return DEFAULT_IMAGE_LIMIT
        return limit

    def check_image_count(self, model: str, count: int) -> None:
        """Raise ImageCountExceeded if ``count`` is over the model's limit."""
        limit = self.image_limit(model)
        if count > limit:
            raise ImageCountExceeded(
                f"Model {model} accepts at most {limit} image(s), got {count}",
                model=model,
                limit=limit,
                count=count,
            )
        logger.info(f"Image count check passed for model {model}: {count}/{limit}")

    def handle_chat_with_files(self, request: ChatRequest, files: list[UploadedFile]) -> ChatResponse:
        logger.info(f"Processing GLM vision request with {len(files or [])} uploaded file(s), model: {request.model}")
        if not files:
            raise MissingRequiredParameter("No files uploaded")

        self.check_image_count(request.model, len(files))

        image_map = self.image_processor.convert_uploads(files)
        if not image_map:
            raise MissingRequiredParameter(
                "No uploaded file could be converted to an image; check file format and size"
            )
        logger.info(f"Converted {len(image_map)} uploaded file(s) to data URIs")

        extra = [ContentItem.image(uri) for uri in image_map.values()]
        payload = self.to_provider_request(request, extra)
        return self._complete(request, payload)

    def handle_chat_with_base64_images(
        self, request: ChatRequest, image_map: Mapping[str, str]
    ) -> ChatResponse:
        logger.info(f"Processing GLM vision request with base64 images, model: {request.model}")
        if not image_map:
            raise MissingRequiredParameter("Base64 image data must not be empty")

        self.check_image_count(request.model, len(image_map))

        present = set(request.urls(ContentType.IMAGE))
        extra = [ContentItem.image(uri) for uri in image_map.values() if uri not in present]
        payload = self.to_provider_request(request, extra)
        return self._complete(request, payload)

    def handle_chat_with_file_urls(
        self, request: ChatRequest, file_map: Mapping[str, str]
    ) -> ChatResponse:
        logger.info(f"Processing GLM file URL request, model: {request.model}")
        if not file_map:
            raise MissingRequiredParameter("File URL data must not be empty")

        for name, url in file_map.items():
            if not is_http_url(url):
                raise InvalidContent(f"File URL for {name} is not an HTTP(S) URL: {url}", file=name)
        logger.info(f"Received {len(file_map)} file URL(s)")

        present = set(request.urls(ContentType.FILE))
        extra = [ContentItem.file(url) for url in file_map.values() if url not in present]
        payload = self.to_provider_request(request, extra)
        return self._complete(request, payload)

    def to_provider_request(
        self, request: ChatRequest, extra_items: Iterable[ContentItem] = ()
    ) -> dict:
        """Build the GLM payload.

        Args:
            request: Generic request
            extra_items: Images or files to append to the last user message

        Raises:
            ImageCountExceeded: If the request carries more images than allowed
            MissingRequiredParameter: If images were supplied but none survived
        """
        extra_items = tuple(extra_items)
        supplied = request.count(ContentType.IMAGE) + sum(
            1 for item in extra_items if item.type is ContentType.IMAGE
        )
        if supplied:
            self.check_image_count(request.model, supplied)

        normalized = self.normalizer.normalize_request(request, extra_items)
        if supplied and not normalized.image_count:
            raise MissingRequiredParameter(
                "No valid image left after validation",
                skipped=normalized.skipped,
            )
        if normalized.skipped:
            logger.warning(f"Dropped {len(normalized.skipped)} image(s) for model {request.model}")

        extensions = request.extensions or {}
        payload = {
            "model": request.model,
            "messages": normalized.messages,
            "stream": request.stream,
            "thinking": {"type": "enabled"} if "thinking" in request.model else None,
            "do_sample": True,
            "temperature": request.temperature,
            "top_p": request.top_p,
            "max_tokens": request.max_tokens,
            "stop": list(request.stop) or None,
            "request_id": extensions.get("request_id"),
            "user_id": extensions.get("user_id"),
        }
        logger.debug(
            f"Converted request to GLM format: model={request.model}, "
            f"messages={len(normalized.messages)}, images={normalized.image_count}"
        )
        return payload

    def from_provider_response(self, data: Mapping[str, Any], request: ChatRequest) -> ChatResponse:
        choice = first_choice(data, self.provider_name)
        source = choice.get("message") or {}

        extensions = {}
        if source.get("reasoning_content"):
            extensions["reasoning_content"] = source["reasoning_content"]

        return ChatResponse(
            id=data.get("id"),
            model=data.get("model") or request.model,
            created=created_from_epoch(data.get("created")),
            status=status_from_finish_reason(choice.get("finish_reason")),
            messages=[
                ResponseMessage(
                    role="assistant",
                    content=source.get("content") or "",
                    extensions=extensions,
                )
            ],
            usage=Usage.from_dict(data.get("usage")),
        )


def is_http_url(url: Optional[str]) -> bool:
    if not url or not url.strip():
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)
