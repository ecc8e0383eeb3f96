"""
Error taxonomy for completion requests.

Every error carries a stable ``code`` (see :class:`nbchat.types.ErrorCode`)
and an optional ``detail`` string that the UI shows as the remediation hint.
"""

from __future__ import annotations

from nbchat.types import ErrorCode


class CompletionError(Exception):
    """Structured error raised while preparing or streaming a completion."""

    code = ""

    def __init__(self, message: str, *, detail: str = "", code: str = ""):
        super().__init__(message)
        self.detail = detail
        if code:
            self.code = code


class TransportCancelled(CompletionError):
    code = ErrorCode.CANCELLED


class ConnectionReset(CompletionError):
    code = ErrorCode.CONNECTION_RESET

    HINT = (
        "The API closed the connection while streaming. The text written so "
        "far has been kept; add a markdown cell with 'continue' and send a "
        "new request to let the model finish where it left off."
    )

    def __init__(self, message: str = "Connection reset by the provider"):
        super().__init__(message, detail=self.HINT)


class BudgetExceeded(CompletionError):
    code = ErrorCode.BUDGET_EXCEEDED

    def __init__(self, message: str, *, token_count: int, limit: int, detail: str = ""):
        super().__init__(message, detail=detail)
        self.token_count = token_count
        self.limit = limit


class InsufficientReduction(BudgetExceeded):
    code = ErrorCode.INSUFFICIENT_REDUCTION

    def __init__(self, token_count: int, limit: int):
        super().__init__(
            "The selected strategies do not reduce tokens below the limit.",
            token_count=token_count,
            limit=limit,
            detail=f"{token_count} tokens remain against a limit of {limit}.",
        )


class UnparseableToolArguments(CompletionError):
    code = ErrorCode.UNPARSEABLE_TOOL_ARGUMENTS

    def __init__(self, index: int, arguments: str, cause: Exception | None = None):
        super().__init__(
            f"Unable to parse JSON arguments for tool call with index {index}",
            detail=str(cause) if cause else "",
        )
        self.index = index
        self.arguments = arguments


class UnhandledFinishReason(CompletionError):
    code = ErrorCode.UNHANDLED_FINISH_REASON

    def __init__(self, finish_reason: object):
        super().__init__(
            f"Unhandled finish_reason: {finish_reason!r}",
            detail="Invalid state: finish_reason wasn't handled.",
        )
        self.finish_reason = finish_reason


class UnknownModelTokenizer(CompletionError):
    code = ErrorCode.UNKNOWN_MODEL_TOKENIZER

    def __init__(self, model: str):
        super().__init__(
            f"No tokenizer available for model {model!r}",
            detail=(
                "Tokens could not be counted. This happens for newer models the "
                "tokenizer does not know yet; token limit checks are skipped."
            ),
        )
        self.model = model


class ModelNotSet(CompletionError):
    code = ErrorCode.MODEL_NOT_SET

    def __init__(self):
        super().__init__("You must choose a valid model before proceeding.")


class CredentialMissing(CompletionError):
    code = ErrorCode.CREDENTIAL_MISSING

    def __init__(self):
        super().__init__("An API key is required to send completion requests.")


_STATUS_HINTS: dict[int, str] = {
    400: "The API may return this error when the request goes over the max token limit.",
    401: "Ensure the correct API key and requesting organization are being used.",
    404: "The endpoint is not found or the requested model is unknown or not available to your account.",
    429: "Rate limit reached for requests, or you exceeded your current quota or the engine is currently overloaded.",
    500: "The server had an error while processing your request.",
}


def hint_for_status(status_code: int) -> str:
    """Return the user-facing remediation hint for an HTTP status code."""
    if status_code in _STATUS_HINTS:
        return _STATUS_HINTS[status_code]
    if status_code > 500:
        return _STATUS_HINTS[500]
    return ""


class ProviderHTTPError(CompletionError):
    code = ErrorCode.PROVIDER_HTTP_ERROR

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.hint = hint_for_status(status_code)
        detail = f"{self.hint} {message}".strip() if self.hint else message
        super().__init__(f"HTTP {status_code}: {message}", detail=detail)
