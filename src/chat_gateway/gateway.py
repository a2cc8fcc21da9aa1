"""Chat gateway: request validation, dispatch and response cleanup."""

import dataclasses
import logging
import re
from typing import Optional

from .errors import InvalidContent, MissingRequiredParameter
from .image_processor import UploadedFile
from .providers.base import (
    VALID_ROLES,
    Capability,
    ChatRequest,
    ChatResponse,
    ContentType,
    DispatchMode,
    Message,
    truncate_for_log,
)
from .providers.glm import is_http_url
from .providers.registry import StrategyRegistry
from .providers.router import Router

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TOP_P = 0.7

# Upload size cap enforced before anything is decoded
MAX_UPLOAD_BYTES = 200 * 1024 * 1024

_FENCE_LANGUAGES = (
    "json|html|markdown|xml|yaml|sql|javascript|typescript|python|java|go|rust|php|c|cpp|"
    "csharp|shell|bash|powershell|docker|diff|log|text|txt"
)
_LEADING_FENCE = re.compile(rf"^```(?:{_FENCE_LANGUAGES})?\s*\n?\s*")
_TRAILING_FENCE = re.compile(r"\s*\n?\s*```$")
_CONTROL_CHARS = re.compile("[\u0000-\u001f\u007f-\u009f\ufffd]")
_SPECIAL_MARKERS = re.compile(r"<\|.*?\|>")
_WHITESPACE = re.compile(r"\s+")


def clean_content(content: Optional[str]) -> Optional[str]:
    """Strip code fences, control characters and ``<|...|>`` markers.

    Whitespace runs collapse to one space. Blank input is returned as is.
    """
    if content is None or not content.strip():
        return content

    cleaned = _LEADING_FENCE.sub("", content)
    cleaned = _TRAILING_FENCE.sub("", cleaned)
    cleaned = _CONTROL_CHARS.sub("", cleaned)
    cleaned = _SPECIAL_MARKERS.sub("", cleaned)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()

    if cleaned != content:
        logger.debug(f"Cleaned response content: {len(content)} -> {len(cleaned)} chars")
    return cleaned


def clean_response(response: ChatResponse) -> ChatResponse:
    for message in response.messages:
        if message.content is not None:
            message.content = clean_content(message.content)
    return response


class ChatGateway:
    """Entry point for chat requests.

    Validates the request, fills in default sampling parameters, picks the
    dispatch mode from the content and cleans the provider's answer.

    Examples:
        gateway = ChatGateway(build_registry(load_settings()))
        response = gateway.chat(ChatRequest(
            model="deepseek-chat",
            messages=(Message("user", "Hello"),),
        ))
        print(response.text)
    """

    def __init__(self, registry: StrategyRegistry, router: Optional[Router] = None):
        self.registry = registry
        self.router = router or Router(registry)

    def chat(self, request: ChatRequest) -> ChatResponse:
        """Chat with text, base64 images and/or file URLs in the messages.

        Images route to the model's base64 vision path, file URLs (without
        images) to its file URL path, everything else to plain chat. A
        text-only model given images or files falls back to plain chat and
        drops them.

        Raises:
            MissingRequiredParameter: On structurally invalid requests
            InvalidContent: On malformed content items
        """
        request = self.validate_and_normalize(request)

        strategy = self.registry.lookup(request.model)
        if request.platform is not None and request.platform is not strategy.platform:
            logger.warning(
                f"Request platform {request.platform.value} does not match model {request.model} "
                f"({strategy.platform.value}); routing by model"
            )

        mode, payload = self.detect_mode(request)
        if mode is not DispatchMode.TEXT and mode.capability not in strategy.capabilities():
            logger.warning(
                f"Model {request.model} does not support {mode.label} content; "
                f"non-text items will be dropped"
            )
            mode, payload = DispatchMode.TEXT, None

        response = self.router.route(request, mode, payload)
        return self._finish(request, response)

    def chat_with_files(self, request: ChatRequest, files: list[UploadedFile]) -> ChatResponse:
        """Chat with raw uploaded image files (compressed before sending)."""
        request = self.validate_and_normalize(request)
        self._validate_uploads(files)

        response = self.router.route(request, DispatchMode.VISION_FILES, list(files))
        return self._finish(request, response)

    def chat_text_only(self, request: ChatRequest) -> ChatResponse:
        """Plain text chat; any non-text content item is rejected."""
        request = self.validate_and_normalize(request, text_only=True)
        response = self.router.route(request, DispatchMode.TEXT)
        return self._finish(request, response)

    def supported_models(self) -> list[str]:
        return self.router.supported_models()

    def model_capabilities(self) -> dict[str, frozenset[Capability]]:
        return {
            model: self.registry.lookup(model).capabilities()
            for model in self.registry.supported_models()
        }

    def validate_and_normalize(self, request: ChatRequest, text_only: bool = False) -> ChatRequest:
        """Validate structure and apply default sampling parameters.

        Args:
            request: Incoming request
            text_only: Reject image and file items

        Returns:
            A new request with defaults filled in and roles lower-cased
        """
        if request is None:
            raise MissingRequiredParameter("Chat request must not be empty")
        if not request.model or not request.model.strip():
            raise MissingRequiredParameter("Model name must not be empty")
        if not request.messages:
            raise MissingRequiredParameter("Message list must not be empty")

        messages = []
        for index, message in enumerate(request.messages, 1):
            messages.append(self._validate_message(index, message, text_only))

        normalized = dataclasses.replace(
            request,
            messages=tuple(messages),
            max_tokens=request.max_tokens if request.max_tokens and request.max_tokens > 0 else DEFAULT_MAX_TOKENS,
            temperature=(
                request.temperature
                if request.temperature is not None and 0 <= request.temperature <= 2
                else DEFAULT_TEMPERATURE
            ),
            top_p=request.top_p if request.top_p is not None and 0 <= request.top_p <= 1 else DEFAULT_TOP_P,
            stream=request.stream if request.stream is not None else False,
        )
        logger.debug(
            f"Normalized request for model [{normalized.model}]: "
            f"images={normalized.count(ContentType.IMAGE)}, files={normalized.count(ContentType.FILE)}"
        )
        return normalized

    @staticmethod
    def detect_mode(request: ChatRequest) -> tuple[DispatchMode, Optional[dict[str, str]]]:
        """Pick the dispatch mode and its payload from the request content."""
        images = request.urls(ContentType.IMAGE)
        if images:
            return DispatchMode.VISION_BASE64, {
                f"image_{i}.jpg": url for i, url in enumerate(images, 1)
            }
        files = request.urls(ContentType.FILE)
        if files:
            return DispatchMode.VISION_FILE_URLS, {
                f"file_{i}": url for i, url in enumerate(files, 1)
            }
        return DispatchMode.TEXT, None

    def _validate_message(self, index: int, message: Message, text_only: bool) -> Message:
        if message is None:
            raise MissingRequiredParameter(f"Message {index} must not be empty")
        if not message.role or not message.role.strip():
            raise MissingRequiredParameter(f"Message {index} role must not be empty")

        role = message.role.strip().lower()
        if role not in VALID_ROLES:
            raise MissingRequiredParameter(f"Invalid message role: {message.role}")

        if not message.is_multimodal:
            if not message.content or not message.content.strip():
                raise MissingRequiredParameter(f"Message {index} content must not be empty")
        else:
            if not message.content:
                raise MissingRequiredParameter(f"Message {index} multimodal content must not be empty")
            for position, item in enumerate(message.content, 1):
                self._validate_item(index, position, item, text_only)

        if role != message.role:
            return dataclasses.replace(message, role=role)
        return message

    @staticmethod
    def _validate_item(index: int, position: int, item, text_only: bool) -> None:
        where = f"message {index}, item {position}"
        if item.type is ContentType.TEXT:
            if not item.text or not item.text.strip():
                raise MissingRequiredParameter(f"Text content must not be empty ({where})")
            return
        if text_only:
            raise InvalidContent(f"Text-only chat does not accept {item.type.value} content ({where})")
        if item.type is ContentType.IMAGE:
            if not item.url or not item.url.strip():
                raise MissingRequiredParameter(f"Image URL must not be empty ({where})")
        elif item.type is ContentType.FILE:
            if not is_http_url(item.url):
                raise InvalidContent(f"File URL is not a valid HTTP(S) URL ({where}): {item.url}")

    @staticmethod
    def _validate_uploads(files: list[UploadedFile]) -> None:
        if not files:
            raise MissingRequiredParameter("No files uploaded")
        for upload in files:
            if upload is None or not upload.content:
                continue
            if not upload.filename or not upload.filename.strip():
                raise MissingRequiredParameter("Uploaded file name must not be empty")
            if upload.size > MAX_UPLOAD_BYTES:
                raise InvalidContent(
                    f"File exceeds the {MAX_UPLOAD_BYTES // (1024 * 1024)}MB upload limit: {upload.filename}"
                )

    def _finish(self, request: ChatRequest, response: ChatResponse) -> ChatResponse:
        response = clean_response(response)
        logger.info(f"Model [{request.model}] answered: [{truncate_for_log(response)}]")
        return response
