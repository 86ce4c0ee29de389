from __future__ import annotations

_NON_RETRIABLE_ERROR_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "ResourceNotFound",
    "ResourceNotFoundException",
    "ValidationException",
    "InvalidArgumentException",
    "KMSAccessDeniedException",
    "KMSDisabledException",
    "KMSNotFoundException",
}
_NON_RETRIABLE_ERROR_PREFIXES = ("AccessDenied", "ResourceNotFound")
_OVERSIZE_ERROR_MARKERS = (
    "too large",
    "exceeds the maximum",
    "must be less than",
    "1 mb",
    "1mib",
)
_NON_RETRIABLE_MESSAGE_MARKERS = (
    "access denied",
    "resource not found",
)


class ShipperError(RuntimeError):
    """Base class for every error raised by the shipper."""


class ConfigurationError(ShipperError):
    """Raised at startup when the configuration cannot produce a working engine."""


class ConnectivityError(ShipperError):
    """Raised at startup when the target stream is missing or unreachable."""

    def __init__(self, message: str, *, stream_name: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.stream_name = stream_name
        self.error_code = error_code


class KeyResolutionError(ShipperError):
    """Raised when a partition or explicit hash key cannot be computed for a batch."""


class DeliveryError(ShipperError):
    """Raised when a single put_record call is rejected or fails in transport."""

    def __init__(
        self,
        message: str,
        *,
        batch_index: int,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        super().__init__(message)
        self.batch_index = batch_index
        self.error_code = error_code
        self.error_message = error_message

    @property
    def retriable(self) -> bool:
        """Hint for the host's retry policy; the shipper itself never retries."""
        return not is_non_retriable_error(code=self.error_code, message=self.error_message)


def extract_exception_error(exc: BaseException) -> tuple[str | None, str | None]:
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        error = response.get("Error")
        if isinstance(error, dict):
            code = error.get("Code")
            message = error.get("Message")
            return (
                str(code) if code is not None else None,
                str(message) if message is not None else None,
            )

    return None, str(exc)


def is_non_retriable_error(*, code: str | None, message: str | None) -> bool:
    normalized_code = code.strip() if code else None
    if normalized_code:
        if normalized_code in _NON_RETRIABLE_ERROR_CODES:
            return True
        if any(normalized_code.startswith(prefix) for prefix in _NON_RETRIABLE_ERROR_PREFIXES):
            return True

    message_lc = message.lower() if message else ""
    if "validation" in message_lc:
        return True
    if any(marker in message_lc for marker in _NON_RETRIABLE_MESSAGE_MARKERS):
        return True
    return any(marker in message_lc for marker in _OVERSIZE_ERROR_MARKERS)
