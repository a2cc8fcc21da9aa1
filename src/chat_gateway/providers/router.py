"""Provider routing by model name and capability."""

import logging
from typing import Any, Optional

from ..errors import CapabilityMismatch
from .base import ChatRequest, ChatResponse, DispatchMode
from .registry import StrategyRegistry

logger = logging.getLogger(__name__)


class Router:
    """Routes requests to the strategy registered for the request's model.

    The router resolves and checks capability membership; it never inspects
    message content. A capability miss fails before any provider call.
    """

    # Entry point invoked per dispatch mode
    HANDLERS = {
        DispatchMode.TEXT: "handle_chat",
        DispatchMode.VISION_FILES: "handle_chat_with_files",
        DispatchMode.VISION_BASE64: "handle_chat_with_base64_images",
        DispatchMode.VISION_FILE_URLS: "handle_chat_with_file_urls",
    }

    def __init__(self, registry: StrategyRegistry) -> None:
        self.registry = registry

    def route(
        self,
        request: ChatRequest,
        mode: DispatchMode = DispatchMode.TEXT,
        payload: Optional[Any] = None,
    ) -> ChatResponse:
        """Dispatch a request.

        Args:
            request: Generic chat request
            mode: Which entry point to use
            payload: Uploaded files (VISION_FILES), filename -> data URI map
                (VISION_BASE64) or filename -> URL map (VISION_FILE_URLS);
                ignored for TEXT

        Returns:
            The strategy's ChatResponse

        Raises:
            UnsupportedModel: If no strategy serves the model
            CapabilityMismatch: If the strategy lacks the mode's capability
        """
        model = request.model
        logger.debug(f"Routing {mode.label} request for model: [{model}]")

        strategy = self.registry.lookup(model)
        logger.debug(f"Found strategy [{type(strategy).__name__}] for model: [{model}]")

        if mode.capability not in strategy.capabilities():
            raise CapabilityMismatch(
                f"Model {model} does not support {mode.label} requests",
                model=model,
                mode=mode.label,
                capability=mode.capability.value,
            )

        handler = getattr(strategy, self.HANDLERS[mode])
        try:
            if mode is DispatchMode.TEXT:
                response = handler(request)
            else:
                response = handler(request, payload)
        except Exception as e:
            logger.error(f"Error processing {mode.label} request for model [{model}]: {e}")
            raise

        logger.debug(f"Successfully processed {mode.label} request for model: [{model}]")
        return response

    def is_model_supported(self, model: str) -> bool:
        return self.registry.is_supported(model)

    def supported_models(self) -> list[str]:
        return self.registry.supported_models()
