"""Run errors: exceptions raised inside phases and their RunError mapping."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from pydantic import ValidationError

from cartmerge.models.state import ErrorCode, RunError, RunPhase

# Port response codes grouped by the error class they map to.
AUTH_CODES = frozenset({"NOT_LOGGED_IN", "AUTH_REQUIRED", "SESSION_EXPIRED"})
SELECTOR_CODES = frozenset({"ELEMENT_NOT_FOUND", "WRONG_PAGE", "EXTRACTION_FAILED", "INVALID_DATA"})
TIMEOUT_CODES = frozenset({"TIMEOUT"})


class CartRunError(Exception):
    """Base for errors that carry their ErrorCode."""

    code: ErrorCode = ErrorCode.unknown

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def recoverable(self) -> bool:
        return self.code.recoverable


class NetworkError(CartRunError):
    code = ErrorCode.network


class PortTimeoutError(CartRunError):
    code = ErrorCode.timeout


class ExtractionError(CartRunError):
    """The page did not contain what we expected (layout change, wrong page)."""
    code = ErrorCode.selector


class AuthError(CartRunError):
    code = ErrorCode.auth


class PortCallError(CartRunError):
    """The extraction port answered with ``success: false``."""

    def __init__(self, action: str, port_code: str | None, message: str) -> None:
        super().__init__(f"{action} failed: {message}", code=code_for_port_error(port_code))
        self.action = action
        self.port_code = port_code


def code_for_port_error(port_code: str | None) -> ErrorCode:
    """Map a port error code onto the run taxonomy.

    Anything the port reports that is not about login or page structure is
    treated as a transient network fault.
    """
    if port_code in AUTH_CODES:
        return ErrorCode.auth
    if port_code in SELECTOR_CODES:
        return ErrorCode.selector
    if port_code in TIMEOUT_CODES:
        return ErrorCode.timeout
    return ErrorCode.network


def classify_exception(
    exc: BaseException,
    phase: RunPhase | None,
    retry_count: int = 0,
    now: datetime | None = None,
) -> RunError:
    if isinstance(exc, CartRunError):
        code = exc.code
    elif isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        code = ErrorCode.timeout
    elif isinstance(exc, (ConnectionError, OSError)):
        code = ErrorCode.network
    elif isinstance(exc, ValidationError):
        code = ErrorCode.selector
    else:
        code = ErrorCode.unknown

    message = str(exc) or type(exc).__name__
    if code == ErrorCode.timeout and not str(exc):
        message = f"Timed out during {phase.value if phase else 'run'}"

    return RunError(
        code=code,
        message=message,
        recoverable=code.recoverable,
        phase=phase,
        timestamp=now or datetime.now(timezone.utc),
        retry_count=retry_count,
    )
