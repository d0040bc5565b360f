"""
Uniform success/failure wrapper for calls into the database or object storage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy.exc import SQLAlchemyError

from memoirs.errors import BackendError

logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKEND_ERRORS = (BackendError, SQLAlchemyError, BotoCoreError, ClientError)


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, reason: str) -> "Result[T]":
        return cls(error=reason)


def attempt(label: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Result[T]:
    """
    Run a backend call and capture backend failures as a Result.

    Programming errors (TypeError, KeyError, ...) are not caught.
    """
    try:
        return Result.success(fn(*args, **kwargs))
    except BACKEND_ERRORS as exc:
        logger.warning("%s failed: %s", label, exc)
        return Result.failure(f"{label} failed")
