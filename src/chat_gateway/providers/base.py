"""Base classes and contracts for provider strategies."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional, Union

from ..errors import (
    InvalidContent,
    ProviderResponseMalformed,
    classify_provider_error,
)

if TYPE_CHECKING:
    from ..image_processor import UploadedFile
    from .client import ProviderClient

logger = logging.getLogger(__name__)

VALID_ROLES = ("system", "user", "assistant")

LOG_CONTENT_LIMIT = 500


class Platform(Enum):
    DEEPSEEK = "DEEPSEEK"
    GLM = "GLM"
    IFLOW = "IFLOW"


class Capability(Enum):
    """What a strategy can do; the router checks membership, never type."""

    TEXT_CHAT = "text_chat"
    VISION_VIA_FILES = "vision_via_files"
    VISION_VIA_BASE64 = "vision_via_base64"


class DispatchMode(Enum):
    """Entry point the router should use, chosen from the request content."""

    TEXT = ("text", Capability.TEXT_CHAT)
    VISION_FILES = ("vision_files", Capability.VISION_VIA_FILES)
    VISION_BASE64 = ("vision_base64", Capability.VISION_VIA_BASE64)
    VISION_FILE_URLS = ("vision_file_urls", Capability.VISION_VIA_FILES)

    def __init__(self, label: str, capability: Capability) -> None:
        self.label = label
        self.capability = capability


class ContentType(Enum):
    TEXT = "text"
    IMAGE = "image_url"
    FILE = "file_url"

    @classmethod
    def parse(cls, value: str) -> "ContentType":
        aliases = {"image": cls.IMAGE, "file": cls.FILE}
        if value in aliases:
            return aliases[value]
        try:
            return cls(value)
        except ValueError:
            raise InvalidContent(f"Unsupported content type: {value}") from None


@dataclass(frozen=True)
class ContentItem:
    """One tagged unit of message content.

    Exactly one payload field is populated, the one matching ``type``:
    ``text`` for TEXT, ``url`` (base64 data URI) for IMAGE, ``url`` (HTTP(S)
    URL) for FILE.
    """

    type: ContentType
    text: Optional[str] = None
    url: Optional[str] = None

    def __post_init__(self) -> None:
        if self.type is ContentType.TEXT:
            if self.url is not None:
                raise InvalidContent("Text content item must not carry a url")
            if self.text is None:
                raise InvalidContent("Text content item requires text")
        else:
            if self.text is not None:
                raise InvalidContent(f"{self.type.value} content item must not carry text")
            if self.url is None:
                raise InvalidContent(f"{self.type.value} content item requires a url")

    @classmethod
    def text_item(cls, text: str) -> "ContentItem":
        return cls(ContentType.TEXT, text=text)

    @classmethod
    def image(cls, data_uri: str) -> "ContentItem":
        return cls(ContentType.IMAGE, url=data_uri)

    @classmethod
    def file(cls, url: str) -> "ContentItem":
        return cls(ContentType.FILE, url=url)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ContentItem":
        """Parse the wire shape ``{"type": "image_url", "image_url": {"url": ...}}``."""
        if not isinstance(data, Mapping) or "type" not in data:
            raise InvalidContent(f"Content item must be an object with a type: {data!r}")
        content_type = ContentType.parse(data["type"])
        if content_type is ContentType.TEXT:
            return cls.text_item(data.get("text"))
        nested = data.get(content_type.value) or data.get(data["type"]) or {}
        url = nested.get("url") if isinstance(nested, Mapping) else nested
        return cls(content_type, url=url)


@dataclass(frozen=True)
class Message:
    """A chat message; content is a plain string or a tuple of ContentItem."""

    role: str
    content: Union[str, tuple[ContentItem, ...]]

    @property
    def is_multimodal(self) -> bool:
        return isinstance(self.content, tuple)

    def items(self) -> tuple[ContentItem, ...]:
        if self.is_multimodal:
            return self.content
        return (ContentItem.text_item(self.content),) if self.content else ()

    def text_content(self) -> str:
        """Concatenated text of the message; non-text items are ignored."""
        if not self.is_multimodal:
            return self.content or ""
        return "".join(
            item.text for item in self.content if item.type is ContentType.TEXT and item.text
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        if not isinstance(data, Mapping):
            raise InvalidContent(f"Message must be an object: {data!r}")
        content = data.get("content")
        if isinstance(content, (list, tuple)):
            content = tuple(ContentItem.from_dict(item) for item in content)
        elif content is not None and not isinstance(content, str):
            raise InvalidContent(f"Message content must be a string or a list: {content!r}")
        return cls(role=data.get("role"), content=content)


@dataclass(frozen=True)
class ChatRequest:
    """Normalized request format for all providers."""

    model: str
    messages: tuple[Message, ...]
    platform: Optional[Platform] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    stream: Optional[bool] = None
    stop: tuple[str, ...] = ()
    response_format: Optional[str] = None  # "text" | "json_object"
    n: int = 1
    extensions: Mapping[str, Any] = field(default_factory=dict)

    def count(self, content_type: ContentType) -> int:
        return sum(
            1
            for message in self.messages
            if message.is_multimodal
            for item in message.content
            if item.type is content_type
        )

    def urls(self, content_type: ContentType) -> list[str]:
        return [
            item.url
            for message in self.messages
            if message.is_multimodal
            for item in message.content
            if item.type is content_type
        ]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChatRequest":
        """Build a request from its JSON wire shape (snake or camel case keys).

        Raises:
            InvalidContent: If the document is not an object, names an unknown
                platform or carries malformed messages
        """
        if not isinstance(data, Mapping):
            raise InvalidContent(f"Chat request must be a JSON object, got {type(data).__name__}")
        platform = data.get("platform")
        if platform:
            try:
                platform = Platform(str(platform).upper())
            except ValueError:
                raise InvalidContent(f"Unknown platform: {platform}") from None
        response_format = data.get("response_format", data.get("responseReformat"))
        if isinstance(response_format, Mapping):
            response_format = response_format.get("type")
        stop = data.get("stop") or ()
        if isinstance(stop, str):
            stop = (stop,)
        return cls(
            model=data.get("model"),
            messages=tuple(Message.from_dict(m) for m in data.get("messages") or ()),
            platform=platform or None,
            max_tokens=data.get("max_tokens", data.get("maxTokens")),
            temperature=data.get("temperature"),
            top_p=data.get("top_p", data.get("topP")),
            stream=data.get("stream"),
            stop=tuple(stop),
            response_format=response_format,
            n=data.get("n") or 1,
            extensions=dict(data.get("extensions") or {}),
        )


@dataclass
class Usage:
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["Usage"]:
        if not data:
            return None
        return cls(
            prompt_tokens=data.get("prompt_tokens"),
            completion_tokens=data.get("completion_tokens"),
            total_tokens=data.get("total_tokens"),
        )


@dataclass
class ResponseMessage:
    role: str
    content: Optional[str]
    extensions: dict = field(default_factory=dict)


@dataclass
class ChatResponse:
    """Normalized response format from all providers."""

    id: Optional[str]
    model: Optional[str]
    messages: list[ResponseMessage] = field(default_factory=list)
    created: Optional[datetime] = None
    status: Optional[str] = None
    usage: Optional[Usage] = None
    extensions: dict = field(default_factory=dict)

    @property
    def text(self) -> str:
        if not self.messages:
            return ""
        return self.messages[0].content or ""

    def to_dict(self) -> dict:
        payload = {
            "id": self.id,
            "model": self.model,
            "created": self.created.isoformat() if self.created else None,
            "status": self.status,
            "messages": [
                {"role": m.role, "content": m.content, "extensions": m.extensions or None}
                for m in self.messages
            ],
            "usage": None,
            "extensions": self.extensions or None,
        }
        if self.usage:
            payload["usage"] = {
                "prompt_tokens": self.usage.prompt_tokens,
                "completion_tokens": self.usage.completion_tokens,
                "total_tokens": self.usage.total_tokens,
            }
        return payload


FINISH_REASON_STATUS = {
    "stop": "completed",
    "length": "length_exceeded",
    "content_filter": "filtered",
}


def status_from_finish_reason(finish_reason: Optional[str]) -> str:
    return FINISH_REASON_STATUS.get(finish_reason, "completed")


def created_from_epoch(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value)


def truncate_for_log(response: ChatResponse) -> str:
    """First message content, trimmed for logging."""
    if not response.messages:
        return "<no response content>"
    content = (response.messages[0].content or "").strip()
    if not content:
        return "<no text content>"
    if len(content) > LOG_CONTENT_LIMIT:
        return content[:LOG_CONTENT_LIMIT] + "...(truncated)"
    return content


def first_choice(data: Mapping[str, Any], provider: str) -> Mapping[str, Any]:
    """Return the first choice of an OpenAI-style reply.

    Raises:
        ProviderResponseMalformed: If the reply has no choices
    """
    choices = data.get("choices") if data else None
    if not choices:
        raise ProviderResponseMalformed(f"{provider} returned no choices", provider=provider)
    return choices[0]


class ProviderStrategy(ABC):
    """Abstract base class for provider adapters.

    Each strategy serves a set of model names, declares its capabilities and
    translates between the generic request/response and its provider's wire
    format. The provider call itself goes through an injected client.
    """

    provider_name: str  # "deepseek", "glm", "iflow"
    platform: Platform
    DEFAULT_MODELS: tuple[str, ...] = ()
    CAPABILITIES: frozenset[Capability] = frozenset({Capability.TEXT_CHAT})
    priority: int = 0

    def __init__(self, client: "ProviderClient", models: Optional[Iterable[str]] = None) -> None:
        """Initialize strategy.

        Args:
            client: Transport used to reach the provider
            models: Model names to serve (defaults to DEFAULT_MODELS)
        """
        self.client = client
        self._models = frozenset(models) if models else frozenset(self.DEFAULT_MODELS)

    def served_models(self) -> frozenset[str]:
        return self._models

    def capabilities(self) -> frozenset[Capability]:
        return self.CAPABILITIES

    def handle_chat(self, request: ChatRequest) -> ChatResponse:
        """Text path: convert, call the provider, convert back."""
        logger.info(f"Processing chat request with {self.provider_name} for model [{request.model}]")
        payload = self.to_provider_request(request)
        return self._complete(request, payload)

    @abstractmethod
    def to_provider_request(self, request: ChatRequest) -> dict:
        """Build the provider-shaped request payload."""
        ...

    @abstractmethod
    def from_provider_response(self, data: Mapping[str, Any], request: ChatRequest) -> ChatResponse:
        """Convert the provider-shaped reply into a ChatResponse."""
        ...

    def _complete(self, request: ChatRequest, payload: dict) -> ChatResponse:
        data = self._call_provider(request, payload)
        response = self.from_provider_response(data, request)
        logger.info(
            f"{self.provider_name} model [{request.model}] answered: [{truncate_for_log(response)}]"
        )
        logger.debug(f"{self.provider_name} response id={response.id} usage={response.usage}")
        return response

    def _call_provider(self, request: ChatRequest, payload: dict) -> Mapping[str, Any]:
        """Send the payload; classify and re-raise any failure."""
        try:
            return self.client.chat_completions(payload)
        except Exception as e:
            logger.error(f"Error calling {self.provider_name} API for model [{request.model}]: {e}")
            raise classify_provider_error(e, provider=self.provider_name) from e


class VisionStrategy(ProviderStrategy):
    """A strategy that also accepts images and file references."""

    CAPABILITIES = frozenset(
        {Capability.TEXT_CHAT, Capability.VISION_VIA_FILES, Capability.VISION_VIA_BASE64}
    )

    @abstractmethod
    def handle_chat_with_files(
        self, request: ChatRequest, files: list["UploadedFile"]
    ) -> ChatResponse:
        """Chat with raw uploaded image files."""
        ...

    @abstractmethod
    def handle_chat_with_base64_images(
        self, request: ChatRequest, image_map: Mapping[str, str]
    ) -> ChatResponse:
        """Chat with a filename -> base64 data URI map."""
        ...

    @abstractmethod
    def handle_chat_with_file_urls(
        self, request: ChatRequest, file_map: Mapping[str, str]
    ) -> ChatResponse:
        """Chat with a filename -> HTTP(S) URL map."""
        ...
