"""Transport clients for OpenAI-compatible provider endpoints."""

import logging
from typing import Any, Mapping, Optional, Protocol

import httpx
from openai import OpenAI

logger = logging.getLogger(__name__)

# Arguments accepted natively by chat.completions.create; everything else in a
# payload is provider-specific and travels in extra_body.
NATIVE_ARGUMENTS = frozenset(
    {
        "model",
        "messages",
        "max_tokens",
        "temperature",
        "top_p",
        "stream",
        "stop",
        "response_format",
        "n",
        "frequency_penalty",
        "presence_penalty",
        "user",
    }
)


class ProviderClient(Protocol):
    """Sends one provider-shaped request and returns the provider-shaped reply."""

    def chat_completions(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        ...


class OpenAICompatibleClient:
    """Provider client backed by the OpenAI SDK pointed at another base URL.

    DeepSeek, Zhipu GLM and iFlow all expose ``/chat/completions`` in the
    OpenAI wire format, so one SDK covers the three of them.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        connect_timeout: float = 60.0,
        read_timeout: float = 60.0,
        max_retries: int = 2,
        default_headers: Optional[dict[str, str]] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        """Initialize client.

        Args:
            api_key: Provider API key (sent as a Bearer token)
            base_url: Provider API root, e.g. https://api.deepseek.com
            connect_timeout: Connect timeout in seconds
            read_timeout: Read timeout in seconds
            max_retries: Retries performed by the SDK transport
            default_headers: Extra headers for every request
            http_client: Preconfigured httpx client (proxies, custom transport)
        """
        self.base_url = base_url
        self._client = OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=httpx.Timeout(read_timeout, connect=connect_timeout),
            max_retries=max_retries,
            default_headers=default_headers,
            http_client=http_client,
        )

    def chat_completions(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        native = {k: v for k, v in payload.items() if k in NATIVE_ARGUMENTS and v is not None}
        extra = {k: v for k, v in payload.items() if k not in NATIVE_ARGUMENTS and v is not None}

        # Only whole completions are parsed
        if native.get("stream"):
            logger.debug(f"Streaming not supported, sending non-streaming request for {native.get('model')}")
        native["stream"] = False

        logger.debug(
            f"POST {self.base_url}/chat/completions model={native.get('model')} "
            f"messages={len(native.get('messages', []))} extra={sorted(extra)}"
        )

        response = self._client.chat.completions.create(
            **native,
            extra_body=extra or None,
        )
        return response.model_dump()
