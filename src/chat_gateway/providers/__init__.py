"""Provider strategies for multi-model chat."""

from .base import (
    Capability,
    ChatRequest,
    ChatResponse,
    ContentItem,
    ContentType,
    DispatchMode,
    Message,
    Platform,
    ProviderStrategy,
    VisionStrategy,
)

__all__ = [
    "Capability",
    "ChatRequest",
    "ChatResponse",
    "ContentItem",
    "ContentType",
    "DispatchMode",
    "Message",
    "Platform",
    "ProviderStrategy",
    "VisionStrategy",
]
