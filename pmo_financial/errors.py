"""Exception hierarchy shared by the financial services."""

from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class PMOError(Exception):
    """Base class for all errors raised by this package."""


class ValidationError(PMOError, ValueError):
    """Input violates a business rule; raised before any write happens."""


class NotFoundError(PMOError, LookupError):
    """A referenced record does not exist."""


class DecodeError(PMOError, ValueError):
    """A stored row does not match its sheet schema."""

    def __init__(self, sheet: str, column: str, value: Any, reason: str) -> None:
        self.sheet = sheet
        self.column = column
        self.value = value
        self.reason = reason
        super().__init__(f"{sheet}: column '{column}' has invalid value {value!r} ({reason})")


class RowStoreError(PMOError):
    """The row store backend failed to serve a request."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        self.status = status
        super().__init__(message if status is None else f"{message} (HTTP {status})")


class OperationError(PMOError, RuntimeError):
    """A public service operation failed.

    The message always reads ``"Failed to <action>: <cause>"`` and the
    underlying exception is preserved as ``__cause__``.
    """

    def __init__(self, action: str, cause: BaseException) -> None:
        self.action = action
        super().__init__(f"Failed to {action}: {cause}")


def wraps_errors(action: str) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorate an async operation so every failure surfaces as ``OperationError``.

    Args:
        action: Human readable verb phrase, e.g. ``"create budget"``.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except Exception as exc:
                LOGGER.debug("Operation '%s' failed: %s", action, exc)
                raise OperationError(action, exc) from exc

        return wrapper

    return decorator


def root_cause(exc: BaseException) -> BaseException:
    """Follow the ``__cause__`` chain to the original exception."""

    while exc.__cause__ is not None:
        exc = exc.__cause__
    return exc
