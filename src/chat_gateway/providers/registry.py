"""Model name -> strategy registry."""

import logging
import threading
from typing import Optional

from ..errors import UnsupportedModel
from .base import ProviderStrategy

logger = logging.getLogger(__name__)


class StrategyRegistry:
    """Maps every served model name to exactly one strategy.

    Registering a strategy for a model that is already taken replaces the
    previous owner (last write wins); ``priority`` is logged but never
    consulted. All access goes through one re-entrant lock so lookups stay
    consistent while registration is in progress.
    """

    def __init__(self) -> None:
        self._strategies: dict[str, ProviderStrategy] = {}
        self._lock = threading.RLock()

    def register(self, strategy: ProviderStrategy) -> None:
        with self._lock:
            for model in sorted(strategy.served_models()):
                previous = self._strategies.get(model)
                if previous is not None and previous is not strategy:
                    logger.warning(
                        f"Model [{model}] already registered to {previous.provider_name} "
                        f"(priority {previous.priority}), replacing with "
                        f"{strategy.provider_name} (priority {strategy.priority})"
                    )
                self._strategies[model] = strategy
                logger.info(f"Registered {strategy.provider_name} strategy for model: [{model}]")

    def lookup(self, model: Optional[str]) -> ProviderStrategy:
        """Return the strategy serving ``model``.

        Raises:
            UnsupportedModel: If nothing serves the model; the error details
                carry the currently supported model names
        """
        with self._lock:
            strategy = self._strategies.get(model)
            if strategy is None:
                supported = list(self._strategies)
                raise UnsupportedModel(
                    f"Unsupported model: {model}. Supported models: {supported}",
                    model=model,
                    supported_models=supported,
                )
            return strategy

    def is_supported(self, model: Optional[str]) -> bool:
        with self._lock:
            return model in self._strategies

    def supported_models(self) -> list[str]:
        with self._lock:
            return list(self._strategies)

    def strategies(self) -> list[ProviderStrategy]:
        """Distinct registered strategies, in registration order."""
        with self._lock:
            seen: list[ProviderStrategy] = []
            for strategy in self._strategies.values():
                if not any(strategy is s for s in seen):
                    seen.append(strategy)
            return seen

    def unregister(self, model: str) -> Optional[ProviderStrategy]:
        with self._lock:
            removed = self._strategies.pop(model, None)
            if removed is not None:
                logger.info(f"Unregistered strategy for model: [{model}]")
            return removed

    def clear(self) -> None:
        with self._lock:
            self._strategies.clear()
            logger.info("Cleared all strategies")

    def __contains__(self, model: object) -> bool:
        return self.is_supported(model)

    def __len__(self) -> int:
        with self._lock:
            return len(self._strategies)
