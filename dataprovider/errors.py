from __future__ import annotations

from typing import Any, Mapping, Optional

NOT_FOUND = "NOT_FOUND"
DUPLICATE = "DUPLICATE"
UNKNOWN = "UNKNOWN"
REALTIME_UNAVAILABLE = "REALTIME_UNAVAILABLE"

# Backend-native codes (PostgreSQL SQLSTATE / PostgREST) -> user-facing message
ERROR_MESSAGES = {
    "23505": "Record already exists (duplicate key)",
    "23503": "Referenced record does not exist (foreign key)",
    "23502": "A required field is missing",
    "42501": "Insufficient privileges for this operation",
    "42P01": "Table does not exist",
    "PGRST116": "Record not found",
    "PGRST301": "Database connection failed",
    "08006": "Database connection failed",
}

STATUS_CODES = {
    NOT_FOUND: 404,
    DUPLICATE: 409,
    REALTIME_UNAVAILABLE: 503,
    "23505": 409,
    "23503": 409,
    "23502": 400,
    "42501": 403,
    "42P01": 404,
    "PGRST116": 404,
    "PGRST301": 503,
    "08006": 503,
}


class DataProviderError(Exception):
    """Normalized failure of a provider operation."""

    def __init__(self, message: str, code: str, status: Optional[int] = None, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.details = details

    def __repr__(self) -> str:
        return f"DataProviderError(code={self.code!r}, message={self.message!r}, status={self.status!r})"


def error_message(code: Optional[str], original: str) -> str:
    return ERROR_MESSAGES.get(code or "", original)


def error_code(error: Any) -> Optional[str]:
    """Best-effort `code` extraction from an exception, mapping or arbitrary object."""
    if isinstance(error, Mapping):
        code = error.get("code")
    else:
        code = getattr(error, "code", None)
    return str(code) if code not in (None, "") else None


def _original_message(error: Any) -> str:
    if isinstance(error, Mapping):
        return str(error.get("message") or error)
    return str(getattr(error, "message", None) or error)


def from_backend(error: Any, default_code: str = UNKNOWN) -> DataProviderError:
    """Wrap a backend error (exception or error value) into a DataProviderError."""
    code = error_code(error) or default_code
    return DataProviderError(
        error_message(code, _original_message(error)),
        code,
        status=STATUS_CODES.get(code),
        details=error,
    )


def not_found(details: Any = None) -> DataProviderError:
    return DataProviderError(ERROR_MESSAGES["PGRST116"], NOT_FOUND, status=404, details=details)


def duplicate(details: Any = None) -> DataProviderError:
    return DataProviderError(ERROR_MESSAGES["23505"], DUPLICATE, status=409, details=details)


def realtime_unavailable(details: Any = None) -> DataProviderError:
    return DataProviderError(
        f"Realtime channel unavailable: {details}",
        REALTIME_UNAVAILABLE,
        status=503,
        details=details,
    )
