"""iFlow chat-completion provider."""

import logging
from datetime import datetime
from typing import Any, Mapping

from .base import (
    ChatRequest,
    ChatResponse,
    Platform,
    ProviderStrategy,
    ResponseMessage,
    Usage,
    created_from_epoch,
    first_choice,
)

logger = logging.getLogger(__name__)


class IflowStrategy(ProviderStrategy):
    """iFlow implementation (GLM-4.6, TBStars2-200B-A13B).

    The iFlow endpoint answers ``stream=true`` with text/event-stream, which
    this gateway does not consume, so every outbound request is forced to
    non-streaming whatever the caller asked for.
    """

    provider_name = "iflow"
    platform = Platform.IFLOW
    DEFAULT_MODELS = ("GLM-4.6", "TBStars2-200B-A13B")

    def to_provider_request(self, request: ChatRequest) -> dict:
        if request.stream:
            logger.debug(f"Ignoring stream=true for iFlow model {request.model}")
        return {
            "model": request.model,
            "messages": [
                {"role": message.role, "content": message.text_content()}
                for message in request.messages
            ],
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "top_p": request.top_p,
            "stream": False,
            "stop": list(request.stop) or None,
        }

    def from_provider_response(self, data: Mapping[str, Any], request: ChatRequest) -> ChatResponse:
        choice = first_choice(data, self.provider_name)

        messages = []
        source = choice.get("message")
        if source:
            extensions = {}
            if source.get("reasoning_content"):
                extensions["reasoning_content"] = source["reasoning_content"]
            messages.append(
                ResponseMessage(
                    role=source.get("role") or "assistant",
                    content=source.get("content"),
                    extensions=extensions,
                )
            )

        return ChatResponse(
            id=data.get("id"),
            model=request.model,
            created=created_from_epoch(data.get("created")) or datetime.now(),
            status="success",
            messages=messages,
            usage=Usage.from_dict(data.get("usage")),
        )
