from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    FETCH_FAILED = "FETCH_FAILED"
    PARSE_FAILED = "PARSE_FAILED"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    NOT_CONFIGURED = "NOT_CONFIGURED"


class ChangewatchError(Exception):
    """Base class for all expected failure conditions.

    Pipeline stages catch these per source and log them. The API layer
    serialises them into a JSON error envelope with an HTTP status derived
    from the code.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str = "",
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }


class FetchError(ChangewatchError):
    """Non-2xx response or network failure while retrieving a changelog."""

    def __init__(self, url: str, status_code: int | None = None, detail: str = "") -> None:
        if status_code is not None:
            message = f"HTTP {status_code} fetching {url}"
        else:
            message = f"Network error fetching {url}: {detail}"
        super().__init__(
            code=ErrorCode.FETCH_FAILED,
            message=message,
            suggestion="The changelog source may be temporarily unavailable.",
            recoverable=status_code is None or status_code >= 500 or status_code in {408, 429},
        )
        self.url = url
        self.status_code = status_code


class ParseError(ChangewatchError):
    def __init__(self, url: str) -> None:
        super().__init__(
            code=ErrorCode.PARSE_FAILED,
            message=f"No version header found in changelog at {url}",
            suggestion='The document must contain markdown headers like "## 1.0.0".',
            recoverable=False,
        )
        self.url = url


class ConflictError(ChangewatchError):
    def __init__(self, message: str) -> None:
        super().__init__(
            code=ErrorCode.CONFLICT,
            message=message,
            suggestion="Each source URL can only be registered once.",
            recoverable=False,
        )


class NotFoundError(ChangewatchError):
    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.NOT_FOUND, message=message, recoverable=False)


class InvalidInputError(ChangewatchError):
    def __init__(self, message: str, suggestion: str = "") -> None:
        super().__init__(
            code=ErrorCode.INVALID_INPUT,
            message=message,
            suggestion=suggestion,
            recoverable=False,
        )


class NotConfiguredError(ChangewatchError):
    """A required credential or address is missing from the settings."""

    def __init__(self, message: str, suggestion: str = "") -> None:
        super().__init__(
            code=ErrorCode.NOT_CONFIGURED,
            message=message,
            suggestion=suggestion,
            recoverable=False,
        )
