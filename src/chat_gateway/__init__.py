"""Chat gateway with multi-provider support (DeepSeek, GLM, iFlow)."""

from .gateway import ChatGateway

__version__ = "0.1.0"
__all__ = ["ChatGateway"]
