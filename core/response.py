# core/response.py

"""
Structured results for every store, cache, and batch operation.

Nothing in the core raises across its public boundary for an expected failure. Writes that
violate a constraint, lookups that miss, and batches that time out all come back as a
`Response` carrying an `ErrorCode`, so callers decide how to surface them.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(Enum):
    # === Not Found ===
    NOT_FOUND = "NOT_FOUND"
    UNKNOWN_STUDENT = "UNKNOWN_STUDENT"

    # === Constraint Violations ===
    DUPLICATE_EMAIL = "DUPLICATE_EMAIL"
    DUPLICATE_ID = "DUPLICATE_ID"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"

    # === Validation Failures ===
    # score outside of [0, 100]
    INVALID_SCORE = "INVALID_SCORE"

    # field value is out of bounds or incorrectly formatted
    INVALID_FIELD_VALUE = "INVALID_FIELD_VALUE"

    # the value is valid in isolation, but violates system rules
    VALIDATION_FAILED = "VALIDATION_FAILED"

    # === Batch Outcomes ===
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    OPERATION_FAILED = "OPERATION_FAILED"

    # === Internal Faults ===
    INTERNAL_ERROR = "INTERNAL_ERROR"


# HTTP-style status codes kept for callers that bridge responses onto a transport
STATUS_CODES: dict[ErrorCode, int] = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.UNKNOWN_STUDENT: 404,
    ErrorCode.DUPLICATE_EMAIL: 409,
    ErrorCode.DUPLICATE_ID: 409,
    ErrorCode.CAPACITY_EXCEEDED: 507,
    ErrorCode.TIMEOUT: 408,
}


class Response:
    """
    Standard Response object for directory, ledger, cache, and batch operations.

    Attributes:
        success (bool): Indicates whether the operation succeeded.
        detail (str | None): Optional human-readable explanation.
        error (ErrorCode | str | None): Optional machine-readable error identifier.
        status_code (int | None): HTTP-style status code.
        data (dict): Optional payload, varies by operation.
    """

    def __init__(
        self,
        success: bool,
        detail: str | None = None,
        error: ErrorCode | str | None = None,
        status_code: int | None = None,
        data: dict | None = None,
    ):
        self._success = success
        self._detail = detail
        self._error = error
        self._status_code = status_code
        self._data = data or {}

    # === properties ===

    @property
    def success(self) -> bool:
        return self._success

    @property
    def detail(self) -> str | None:
        return self._detail

    @property
    def error(self) -> ErrorCode | str | None:
        return self._error

    @property
    def status_code(self) -> int | None:
        return self._status_code

    @property
    def data(self) -> dict:
        return self._data

    # === public classmethods ===

    @classmethod
    def succeed(
        cls,
        detail: str | None = None,
        status_code: int | None = 200,
        data: dict | None = None,
    ) -> Response:
        return cls(
            success=True,
            detail=detail,
            error=None,
            status_code=status_code,
            data=data,
        )

    @classmethod
    def fail(
        cls,
        detail: str | None = None,
        error: ErrorCode | str | None = None,
        status_code: int | None = None,
        data: dict | None = None,
    ) -> Response:
        """
        Builds a failed Response.

        When `status_code` is omitted it is derived from `error` via `STATUS_CODES`,
        falling back to 400.
        """
        if status_code is None:
            status_code = (
                STATUS_CODES.get(error, 400) if isinstance(error, ErrorCode) else 400
            )

        return cls(
            success=False,
            detail=detail,
            error=error,
            status_code=status_code,
            data=data,
        )

    # === snapshot ===

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "error": self.error.value if isinstance(self.error, Enum) else self.error,
            "detail": self.detail,
            "status_code": self.status_code,
            "data_keys": sorted(self.data),
        }

    # === dunder methods ===

    def __bool__(self) -> bool:
        return self._success

    def __repr__(self) -> str:
        return f"Response({self._success}, {self._error}, {self._status_code}, {self._detail!r})"

    def __str__(self) -> str:
        if self.success:
            return f"Success: {self.detail or ''}"
        else:
            error_str = (
                self.error.value if isinstance(self.error, Enum) else self.error or ""
            )
            return f"Error: {error_str} {self.detail or ''}".rstrip()
