"""Explicit outcome of a remote call, classified instead of raised."""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    """Why a remote call did not succeed."""

    TRANSPORT = "transport"  # no response: connect error, timeout, DNS
    NOT_FOUND = "not_found"  # 404/405/501, endpoint absent in this backend
    SERVER_ERROR = "server_error"  # 5xx
    REJECTED = "rejected"  # other 4xx (auth, validation)
    MALFORMED = "malformed"  # 2xx with an unusable body


FEATURE_ABSENT_STATUSES = frozenset({404, 405, 501})


def classify_status(status_code: int) -> ErrorKind:
    if status_code in FEATURE_ABSENT_STATUSES:
        return ErrorKind.NOT_FOUND
    if status_code >= 500:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.REJECTED


@dataclass
class CallResult:
    ok: bool
    status_code: int | None = None
    data: Any = None
    error_kind: ErrorKind | None = None
    detail: str = ""

    @property
    def is_transient(self) -> bool:
        return self.error_kind in (ErrorKind.TRANSPORT, ErrorKind.SERVER_ERROR)

    @classmethod
    def success(cls, status_code: int, data: Any) -> "CallResult":
        return cls(ok=True, status_code=status_code, data=data)

    @classmethod
    def failure(
        cls, error_kind: ErrorKind, detail: str = "", status_code: int | None = None
    ) -> "CallResult":
        return cls(ok=False, status_code=status_code, error_kind=error_kind, detail=detail)


class ServiceUnavailable(Exception):
    """The progress API could not serve a request.

    Args:
        message: Technical description for logs.
        error_kind: Classification of the failure.
        status_code: HTTP status, when a response was received.
        user_message: Text suitable for showing to the learner.
    """

    def __init__(
        self,
        message: str,
        error_kind: ErrorKind,
        status_code: int | None = None,
        user_message: str = "Progress could not be loaded",
    ):
        super().__init__(message)
        self.error_kind = error_kind
        self.status_code = status_code
        self.user_message = user_message

    @classmethod
    def from_result(cls, operation: str, result: CallResult, user_message: str) -> "ServiceUnavailable":
        return cls(
            f"{operation} failed ({result.error_kind}): {result.detail}",
            error_kind=result.error_kind or ErrorKind.TRANSPORT,
            status_code=result.status_code,
            user_message=user_message,
        )
