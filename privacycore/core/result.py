from __future__ import annotations

import asyncio
from dataclasses import dataclass
from functools import wraps
import logging
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

from sqlalchemy.exc import SQLAlchemyError

from privacycore.core.errors import PrivacyCoreError, StoreUnavailableError


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Driver connect failures surface as OSError (ConnectionRefusedError) outside SQLAlchemy.
STORE_ERRORS: tuple[type[BaseException], ...] = (SQLAlchemyError, OSError, asyncio.TimeoutError)


@dataclass(frozen=True)
class Ok(Generic[T]):
    # Successful operation payload; None/[] mean "no rows", not failure.
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    # Typed failure so callers can tell store outages from missing rows.
    error: PrivacyCoreError

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self) -> Any:
        raise self.error


Result = Union[Ok[T], Err]


def store_operation(
    event: str, *, log_level: int = logging.ERROR
) -> Callable[[Callable[..., Awaitable[Result[T]]]], Callable[..., Awaitable[Result[T]]]]:
    """Convert store exceptions raised inside a service call into ``Err`` results.

    The wrapped coroutine returns ``Ok``/``Err`` itself for domain outcomes. Typed
    errors raised inside it (for example enum parsing) become ``Err`` unchanged;
    store and driver errors (``STORE_ERRORS``) are logged under ``<event>_failed``
    and reported as ``StoreUnavailableError``.
    """

    def decorator(fn: Callable[..., Awaitable[Result[T]]]) -> Callable[..., Awaitable[Result[T]]]:
        @wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Result[T]:
            try:
                return await fn(*args, **kwargs)
            except PrivacyCoreError as exc:
                return Err(exc)
            except STORE_ERRORS as exc:
                logger.log(log_level, "%s_failed", event, exc_info=exc)
                return Err(StoreUnavailableError(f"Store error during {event}"))

        return wrapper

    return decorator
