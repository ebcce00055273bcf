from __future__ import annotations

import asyncio
from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    BAD_REQUEST = "bad_request"
    AUTH = "auth"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    UNPROCESSABLE = "unprocessable"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    NO_BODY = "no_body"
    UNKNOWN = "unknown"


class ConfigError(ValueError):
    pass


class SessionError(RuntimeError):
    pass


class TurnInProgressError(RuntimeError):
    def __init__(self, message: str, *, conversation_id: str | None = None) -> None:
        super().__init__(message)
        self.conversation_id = conversation_id


class DecisionValidationError(ValueError):
    def __init__(self, message: str, *, field: str) -> None:
        super().__init__(message)
        self.field = field


class TransportError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        operation: str | None = None,
        status_code: int | None = None,
        retryable: bool | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.operation = operation
        self.status_code = status_code
        self.retryable = retryable
        self.details = details
        self.__cause__ = cause


class CancellationToken:
    """
    Cancellation signal shared between a caller and one exchange.

    `cancel()` may be called any number of times. Awaiting `wait()` returns once
    the token has been cancelled.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


def is_retryable_error_code(code: ErrorCode) -> bool:
    return code in {
        ErrorCode.TIMEOUT,
        ErrorCode.RATE_LIMIT,
        ErrorCode.SERVER_ERROR,
        ErrorCode.NETWORK_ERROR,
    }


def code_for_status(status_code: int) -> ErrorCode:
    if status_code == 400:
        return ErrorCode.BAD_REQUEST
    if status_code == 401:
        return ErrorCode.AUTH
    if status_code == 403:
        return ErrorCode.PERMISSION
    if status_code == 404:
        return ErrorCode.NOT_FOUND
    if status_code == 422:
        return ErrorCode.UNPROCESSABLE
    if status_code == 429:
        return ErrorCode.RATE_LIMIT
    if 500 <= status_code <= 599:
        return ErrorCode.SERVER_ERROR
    return ErrorCode.UNKNOWN


def wrap_httpx_exception(exc: BaseException, *, operation: str) -> TransportError:
    import httpx

    status_code: int | None = None
    body_snippet: str | None = None
    if isinstance(exc, TransportError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        code = ErrorCode.TIMEOUT
    elif isinstance(exc, (httpx.NetworkError, httpx.RemoteProtocolError)):
        code = ErrorCode.NETWORK_ERROR
    elif isinstance(exc, httpx.HTTPStatusError):
        status_code = int(exc.response.status_code)
        code = code_for_status(status_code)
        try:
            text = exc.response.text
        except httpx.ResponseNotRead:
            text = ""
        if isinstance(text, str) and text.strip():
            body_snippet = text.strip()[:2000]
    else:
        code = ErrorCode.UNKNOWN

    message = str(exc) or exc.__class__.__name__
    if body_snippet:
        message = f"{message}\n\nServer response (truncated):\n{body_snippet}"
    return TransportError(
        message,
        code=code,
        operation=operation,
        status_code=status_code,
        retryable=is_retryable_error_code(code),
        details={"operation": operation},
        cause=exc,
    )
