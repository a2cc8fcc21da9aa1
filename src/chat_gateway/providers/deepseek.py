"""DeepSeek text-only provider."""

import logging
from typing import Any, Mapping

from .base import (
    ChatRequest,
    ChatResponse,
    ContentType,
    Platform,
    ProviderStrategy,
    ResponseMessage,
    Usage,
    created_from_epoch,
    first_choice,
    status_from_finish_reason,
)

logger = logging.getLogger(__name__)


class DeepSeekStrategy(ProviderStrategy):
    """DeepSeek chat implementation (deepseek-chat, deepseek-reasoner).

    Text only: multimodal messages are flattened to their text items and
    anything else is dropped.
    """

    provider_name = "deepseek"
    platform = Platform.DEEPSEEK
    DEFAULT_MODELS = ("deepseek-chat", "deepseek-reasoner")

    def to_provider_request(self, request: ChatRequest) -> dict:
        messages = []
        for message in request.messages:
            if message.is_multimodal:
                dropped = sum(1 for item in message.content if item.type is not ContentType.TEXT)
                if dropped:
                    logger.debug(f"Dropping {dropped} non-text item(s) for text-only model {request.model}")
            messages.append({"role": message.role, "content": message.text_content()})

        response_format = None
        if request.response_format is not None:
            kind = "json_object" if request.response_format == "json_object" else "text"
            response_format = {"type": kind}

        extensions = request.extensions or {}

        payload = {
            "model": request.model,
            "messages": messages,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "top_p": request.top_p,
            "stream": request.stream,
            "stop": list(request.stop) or None,
            "response_format": response_format,
            "n": request.n,
            "frequency_penalty": extensions.get("frequency_penalty", extensions.get("frequencyPenalty", 0.0)),
            "presence_penalty": extensions.get("presence_penalty", extensions.get("presencePenalty", 0.0)),
        }
        logger.debug(
            f"Converted request to DeepSeek format: model={request.model}, "
            f"messages={len(messages)}, response_format={response_format}"
        )
        return payload

    def from_provider_response(self, data: Mapping[str, Any], request: ChatRequest) -> ChatResponse:
        first = first_choice(data, self.provider_name)

        messages = []
        for choice in data["choices"]:
            source = choice.get("message")
            if not source:
                continue
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

        extensions = {}
        if data.get("system_fingerprint"):
            extensions["system_fingerprint"] = data["system_fingerprint"]
        if data.get("object"):
            extensions["object"] = data["object"]

        return ChatResponse(
            id=data.get("id"),
            model=data.get("model") or request.model,
            created=created_from_epoch(data.get("created")),
            status=status_from_finish_reason(first.get("finish_reason")),
            messages=messages,
            usage=Usage.from_dict(data.get("usage")),
            extensions=extensions,
        )
