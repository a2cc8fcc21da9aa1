"""Error taxonomy and provider failure classification."""

from enum import Enum
from typing import Any, Optional

import httpx
import openai


class ErrorKind(Enum):
    """Normalized error kinds with stable codes and categories."""

    # (code, message, category)
    UNSUPPORTED_MODEL = ("AI005", "Unsupported AI model", "AI_SERVICE")
    CAPABILITY_MISMATCH = ("AI011", "Model does not support the requested capability", "AI_SERVICE")
    MISSING_REQUIRED_PARAMETER = ("AIP002", "Missing required parameter", "AI_PARAMETER")
    INVALID_CONTENT = ("AIP006", "Invalid message content", "AI_PARAMETER")
    IMAGE_VALIDATION_FAILED = ("AIP007", "Image validation failed", "AI_PARAMETER")
    IMAGE_COUNT_EXCEEDED = ("AIP008", "Too many images for model", "AI_PARAMETER")
    INVALID_PARAMETER = ("AIP001", "Invalid model parameter", "AI_PARAMETER")
    AUTH_FAILED = ("AI007", "AI service authentication failed", "AI_SERVICE")
    MODEL_NOT_SUPPORTED = ("AI012", "Model not found at provider", "AI_SERVICE")
    RATE_LIMITED = ("AI004", "AI request rate limit exceeded", "AI_SERVICE")
    SERVICE_UNAVAILABLE = ("AI002", "AI service unavailable", "AI_SERVICE")
    TIMEOUT = ("AI003", "AI request timed out", "AI_SERVICE")
    QUOTA_EXCEEDED = ("AI008", "AI service quota exceeded", "AI_SERVICE")
    RESPONSE_MALFORMED = ("AI006", "AI response format error", "AI_SERVICE")
    PROVIDER_ERROR = ("AI001", "AI service internal error", "AI_SERVICE")

    def __init__(self, code: str, message: str, category: str) -> None:
        self.code = code
        self.default_message = message
        self.category = category


class GatewayError(Exception):
    """Base class for every error raised by the gateway core.

    Attributes:
        kind: Normalized error kind
        details: Extra structured data for the caller (e.g. supported models)
    """

    kind: ErrorKind = ErrorKind.PROVIDER_ERROR

    def __init__(self, message: Optional[str] = None, **details: Any) -> None:
        self.message = message or self.kind.default_message
        self.details = details
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return self.kind.code

    def to_dict(self) -> dict:
        payload = {
            "code": self.kind.code,
            "kind": self.kind.name,
            "category": self.kind.category,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class UnsupportedModel(GatewayError):
    kind = ErrorKind.UNSUPPORTED_MODEL


class CapabilityMismatch(GatewayError):
    kind = ErrorKind.CAPABILITY_MISMATCH


class MissingRequiredParameter(GatewayError):
    kind = ErrorKind.MISSING_REQUIRED_PARAMETER


class InvalidContent(GatewayError):
    kind = ErrorKind.INVALID_CONTENT


class ImageValidationFailed(GatewayError):
    kind = ErrorKind.IMAGE_VALIDATION_FAILED


class ImageCountExceeded(GatewayError):
    kind = ErrorKind.IMAGE_COUNT_EXCEEDED


class ProviderError(GatewayError):
    """A failure reported by (or while talking to) an upstream provider."""

    def __init__(
        self,
        message: Optional[str] = None,
        provider: Optional[str] = None,
        **details: Any,
    ) -> None:
        if provider:
            details["provider"] = provider
        super().__init__(message, **details)
        self.provider = provider


class ProviderInvalidParameter(ProviderError):
    kind = ErrorKind.INVALID_PARAMETER


class ProviderAuthFailed(ProviderError):
    kind = ErrorKind.AUTH_FAILED


class ProviderModelNotSupported(ProviderError):
    kind = ErrorKind.MODEL_NOT_SUPPORTED


class ProviderRateLimited(ProviderError):
    kind = ErrorKind.RATE_LIMITED


class ProviderUnavailable(ProviderError):
    kind = ErrorKind.SERVICE_UNAVAILABLE


class ProviderTimeout(ProviderError):
    kind = ErrorKind.TIMEOUT


class ProviderQuotaExceeded(ProviderError):
    kind = ErrorKind.QUOTA_EXCEEDED


class ProviderResponseMalformed(ProviderError):
    kind = ErrorKind.RESPONSE_MALFORMED


class GenericProviderError(ProviderError):
    kind = ErrorKind.PROVIDER_ERROR


_ERROR_CLASSES: dict[ErrorKind, type[ProviderError]] = {
    ErrorKind.INVALID_PARAMETER: ProviderInvalidParameter,
    ErrorKind.AUTH_FAILED: ProviderAuthFailed,
    ErrorKind.MODEL_NOT_SUPPORTED: ProviderModelNotSupported,
    ErrorKind.RATE_LIMITED: ProviderRateLimited,
    ErrorKind.SERVICE_UNAVAILABLE: ProviderUnavailable,
    ErrorKind.TIMEOUT: ProviderTimeout,
    ErrorKind.QUOTA_EXCEEDED: ProviderQuotaExceeded,
    ErrorKind.RESPONSE_MALFORMED: ProviderResponseMalformed,
    ErrorKind.PROVIDER_ERROR: GenericProviderError,
}

_HTTP_STATUS_MAP: dict[int, ErrorKind] = {
    400: ErrorKind.INVALID_PARAMETER,
    401: ErrorKind.AUTH_FAILED,
    403: ErrorKind.AUTH_FAILED,
    404: ErrorKind.MODEL_NOT_SUPPORTED,
    429: ErrorKind.RATE_LIMITED,
    503: ErrorKind.SERVICE_UNAVAILABLE,
    504: ErrorKind.TIMEOUT,
}

# Checked in order; the first group with a matching substring wins.
_MESSAGE_PATTERNS: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (ErrorKind.INVALID_PARAMETER, ("400", "bad request")),
    (ErrorKind.AUTH_FAILED, ("401", "unauthorized", "api key")),
    (ErrorKind.MODEL_NOT_SUPPORTED, ("404", "not found")),
    (ErrorKind.RATE_LIMITED, ("429", "too many requests", "rate limit")),
    (ErrorKind.SERVICE_UNAVAILABLE, ("503", "unavailable")),
    (ErrorKind.TIMEOUT, ("504", "gateway timeout", "timeout")),
    (ErrorKind.QUOTA_EXCEEDED, ("quota",)),
)


def _extract_status(exc: BaseException) -> Optional[int]:
    """Pull an HTTP status code off an SDK exception, if it carries one."""
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and 100 <= value < 600:
            return value
    response = getattr(exc, "response", None)
    if response is not None:
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value < 600:
            return value
    return None


def _is_timeout(exc: BaseException) -> bool:
    # Timeouts carry no status code
    return isinstance(exc, (TimeoutError, httpx.TimeoutException, openai.APITimeoutError))


def classify_error_kind(exc: BaseException) -> ErrorKind:
    """Map an arbitrary provider exception onto an :class:`ErrorKind`.

    Precedence:
        1. GatewayError passthrough
        2. Timeout exception types
        3. HTTP status attached to the exception
        4. Substring heuristics over the lower-cased message
        5. PROVIDER_ERROR fallback
    """
    if isinstance(exc, GatewayError):
        return exc.kind
    if _is_timeout(exc):
        return ErrorKind.TIMEOUT

    status = _extract_status(exc)
    if status is not None and status in _HTTP_STATUS_MAP:
        return _HTTP_STATUS_MAP[status]

    text = str(exc).lower()
    for kind, patterns in _MESSAGE_PATTERNS:
        if any(pattern in text for pattern in patterns):
            return kind
    return ErrorKind.PROVIDER_ERROR


def classify_provider_error(exc: BaseException, provider: Optional[str] = None) -> GatewayError:
    """Build the typed gateway error for a provider failure.

    The caller is expected to ``raise classify_provider_error(e) from e`` so
    the original exception stays attached as ``__cause__``.

    Args:
        exc: Exception raised by the provider client
        provider: Provider name for the error payload

    Returns:
        The matching GatewayError instance (``exc`` itself if already typed)
    """
    if isinstance(exc, GatewayError):
        return exc
    kind = classify_error_kind(exc)
    error_cls = _ERROR_CLASSES[kind]
    return error_cls(f"{kind.default_message}: {exc}", provider=provider)
