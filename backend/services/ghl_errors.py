"""
GHL error classification.

Every failure that leaves the GHL service layer is a CRMError carrying a kind,
the upstream HTTP status (when there was one), whether a retry can help, and the
original exception as __cause__ / .original.
"""
from enum import Enum
from typing import Any, Dict, Optional
import httpx


class ErrorKind(str, Enum):
    BAD_REQUEST = "BAD_REQUEST"
    AUTH_ERROR = "AUTH_ERROR"
    SCOPE_ERROR = "SCOPE_ERROR"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    SERVER_ERROR = "SERVER_ERROR"


# status -> (kind, retryable, message)
GHL_ERROR_CODES: Dict[int, tuple] = {
    400: (ErrorKind.BAD_REQUEST, False, "Bad request - validate payload schema"),
    401: (ErrorKind.AUTH_ERROR, False, "Authentication failed - check API key"),
    403: (ErrorKind.SCOPE_ERROR, False, "Insufficient permissions - check scopes"),
    404: (ErrorKind.NOT_FOUND, False, "Resource not found"),
    422: (ErrorKind.VALIDATION_ERROR, False, "Invalid request data - review field values"),
    429: (ErrorKind.RATE_LIMIT, True, "Rate limit exceeded"),
    500: (ErrorKind.SERVER_ERROR, True, "GHL internal error"),
    502: (ErrorKind.SERVER_ERROR, True, "GHL bad gateway"),
    503: (ErrorKind.SERVER_ERROR, True, "GHL service unavailable"),
    504: (ErrorKind.SERVER_ERROR, True, "GHL gateway timeout"),
}

DEFAULT_RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMIT, ErrorKind.SERVER_ERROR})


class CRMError(Exception):
    """Classified upstream failure."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        retryable: bool,
        status_code: Optional[int] = None,
        original: Optional[BaseException] = None,
        response_body: Any = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retryable = retryable
        self.status_code = status_code
        self.original = original
        self.response_body = response_body
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "status": self.status_code,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context,
            "ghl_response": self.response_body,
        }

    def __repr__(self) -> str:
        return f"CRMError(kind={self.kind.value}, status={self.status_code}, retryable={self.retryable})"


class ToolProtocolError(Exception):
    """The tool endpoint answered with a JSON-RPC error object."""

    def __init__(self, message: str, code: Optional[int] = None, tool_name: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.tool_name = tool_name


class ToolTransportError(Exception):
    """Network or HTTP failure while talking to the tool endpoint."""

    def __init__(self, message: str, tool_name: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.tool_name = tool_name
        self.status_code = status_code


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def classify_status(status_code: Optional[int]) -> tuple:
    """Lookup (kind, retryable, message) for an upstream status. Unknown -> SERVER_ERROR."""
    if status_code in GHL_ERROR_CODES:
        return GHL_ERROR_CODES[status_code]
    return GHL_ERROR_CODES[500]


def classify_error(exc: BaseException, context: Optional[Dict[str, Any]] = None) -> CRMError:
    """Turn any exception raised by a transport call into a CRMError."""
    if isinstance(exc, CRMError):
        if context:
            exc.context = {**exc.context, **context}
        return exc

    status_code = None
    response_body = None
    detail = str(exc)

    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        response_body = _response_body(exc.response)
    elif isinstance(exc, ToolTransportError):
        status_code = exc.status_code
        cause = exc.__cause__
        if isinstance(cause, httpx.HTTPStatusError):
            response_body = _response_body(cause.response)
    elif isinstance(exc, httpx.TimeoutException):
        detail = f"GHL request timed out: {exc}"

    kind, retryable, message = classify_status(status_code)
    if status_code is None:
        # Transport failures and timeouts carry no status; treat as transient
        message = f"{message}: {detail}" if detail else message

    return CRMError(
        kind=kind,
        message=message,
        retryable=retryable,
        status_code=status_code,
        original=exc,
        response_body=response_body,
        context=context,
    )
