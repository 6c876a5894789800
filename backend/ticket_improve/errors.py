from __future__ import annotations


class TicketImproveError(RuntimeError):
    """Base class for failures surfaced to callers of the ticket improve pipeline."""

    code = "TICKET_IMPROVE_ERROR"

    def __init__(self, message: str, *, status_code: int = 500, retryable: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class ConfigurationError(TicketImproveError):
    code = "NOT_CONFIGURED"

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=503, retryable=False)


class CompletionTimeoutError(TicketImproveError):
    code = "TIMEOUT_ERROR"

    def __init__(self, message: str = "Completion request timed out.") -> None:
        super().__init__(message, status_code=504, retryable=True)


class UpstreamError(TicketImproveError):
    code = "API_ERROR"

    def __init__(self, message: str, *, status_code: int, retryable: bool | None = None) -> None:
        if retryable is None:
            retryable = is_retryable_status(status_code)
        super().__init__(message, status_code=status_code, retryable=retryable)


class InvalidResponseError(TicketImproveError):
    code = "INVALID_AI_RESPONSE"

    def __init__(self, message: str = "Invalid AI response.") -> None:
        super().__init__(message, status_code=502, retryable=False)


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code <= 599


def error_to_payload(error: BaseException) -> dict[str, object]:
    if isinstance(error, TicketImproveError):
        return {
            "message": str(error),
            "code": error.code,
            "retryable": error.retryable,
        }

    message = str(error).strip()
    return {
        "message": message or "An unexpected error occurred.",
        "code": "UNKNOWN_ERROR",
        "retryable": False,
    }
