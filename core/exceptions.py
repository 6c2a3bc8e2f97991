"""
Exceptions raised across Shopify Insights.

    ShopifyError
    ├── ShopifyConnectionError   transport failure, 5xx or 429; worth retrying
    ├── ShopifyAPIError          the shop answered with an error status
    └── ShopifyDataError         the body is not shaped like an Admin API reply

    AppError                     rendered as a JSON error response
    ├── BadRequestError     400
    ├── UnauthorizedError   401
    ├── ForbiddenError      403
    ├── NotFoundError       404
    └── ConflictError       409

    ValidationError              a request field failed validation (400)
    QueryTimeoutError            a DuckDB statement ran past its budget
"""
from typing import Any, Dict, Optional


class ShopifyError(Exception):
    """Anything that went wrong talking to a shop; ``details`` is appended to ``str()``."""

    def __init__(self, message: str, details: str = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return f"{self.message}: {self.details}" if self.details else self.message


class ShopifyConnectionError(ShopifyError):
    # retry_after: seconds from the Retry-After header of a 429
    def __init__(self, message: str, details: str = None, retry_after: float = None):
        super().__init__(message, details)
        self.retry_after = retry_after


class ShopifyAPIError(ShopifyError):
    """Non-retryable HTTP error from the shop, e.g. 401 for a revoked token."""

    def __init__(
        self,
        message: str,
        details: str = None,
        status_code: int = None,
        error_code: str = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code
        self.error_code = error_code

    @property
    def is_server_error(self) -> bool:
        return (self.status_code or 0) >= 500


class ShopifyDataError(ShopifyError):
    """A collection key such as ``orders`` is missing from the reply or is not a list."""

    def __init__(self, message: str, details: str = None, expected: str = None, got: str = None):
        super().__init__(message, details)
        self.expected = expected
        self.got = got


# ═══════════════════════════════════════════════════════════════════════════════
# HTTP-FACING ERRORS
# ═══════════════════════════════════════════════════════════════════════════════

class AppError(Exception):
    """
    Error with an HTTP status code.

    ``status`` is ``fail`` for client errors and ``error`` for server errors.
    Operational errors are expected conditions whose message is safe to show
    to the caller.
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        status_code: int = None,
        data: Optional[Dict[str, Any]] = None,
        is_operational: bool = True,
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.data = data
        self.is_operational = is_operational
        super().__init__(message)

    @property
    def status(self) -> str:
        return "fail" if 400 <= self.status_code < 500 else "error"

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"status": self.status, "message": self.message}
        if self.data:
            body.update(self.data)
        return body


class BadRequestError(AppError):
    status_code = 400


class UnauthorizedError(AppError):
    status_code = 401


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class ValidationError(Exception):
    """A single request field was rejected; rendered as 400 with ``field`` in the body."""

    def __init__(self, field: str, message: str, value: Any = None):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message
        self.value = value

    def __str__(self) -> str:
        text = f"{self.field}: {self.message}"
        return text if self.value is None else f"{text} (got: {self.value!r})"


class QueryTimeoutError(Exception):
    """An analytics query was interrupted; the SQL is kept (first 200 chars) for the log."""

    MAX_QUERY_CHARS = 200

    def __init__(self, query: str, timeout: float, details: str = None):
        if len(query) > self.MAX_QUERY_CHARS:
            query = query[:self.MAX_QUERY_CHARS] + "..."
        self.query = query
        self.timeout = timeout
        self.details = details
        super().__init__(f"Query timed out after {timeout}s" + (f": {details}" if details else ""))

    def __str__(self) -> str:
        return f"QueryTimeoutError: Query timed out after {self.timeout}s - {self.query}"
