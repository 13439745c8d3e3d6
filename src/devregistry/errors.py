"""Error taxonomy and best-effort results for registry operations."""

from __future__ import annotations

import errno
import logging
from dataclasses import dataclass
from typing import Generic, TypeVar


T = TypeVar("T")

_ABSENT_ERRNOS = frozenset({errno.ECONNREFUSED, errno.ECONNRESET})


class RegistryError(Exception):
    """Base class for registry failures."""
    pass


class PortCheckError(RegistryError):
    """Raised when checking the registry port fails for a reason other than 'in use'."""
    pass


def _walk(exc: BaseException, seen: set[int]):
    if id(exc) in seen:
        return
    seen.add(id(exc))
    yield exc
    if isinstance(exc, BaseExceptionGroup):
        for inner in exc.exceptions:
            yield from _walk(inner, seen)
    for linked in (exc.__cause__, exc.__context__):
        if linked is not None:
            yield from _walk(linked, seen)


def is_registry_absent(exc: BaseException) -> bool:
    """
    Return True if ``exc`` means "no registry is listening".

    HTTP clients wrap the underlying socket error (sometimes several layers
    deep, sometimes in an exception group when several addresses were
    tried), so the whole chain is searched for a refused or reset
    connection.
    """
    for err in _walk(exc, set()):
        if isinstance(err, (ConnectionRefusedError, ConnectionResetError)):
            return True
        if isinstance(err, OSError) and err.errno in _ABSENT_ERRNOS:
            return True
    return False


@dataclass(frozen=True)
class BestEffort(Generic[T]):
    """
    Outcome of an operation whose failure must not reach the caller.

    Returned instead of silently suppressing the exception, so call sites
    decide (usually: log and move on) and the discard stays visible.
    """
    ok: bool
    value: T | None = None
    error: BaseException | None = None

    @classmethod
    def success(cls, value: T | None = None) -> "BestEffort[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: BaseException) -> "BestEffort[T]":
        return cls(ok=False, error=error)

    @property
    def absent(self) -> bool:
        """True if this failed only because no registry was reachable."""
        return self.error is not None and is_registry_absent(self.error)

    def log(self, log: logging.Logger, message: str, *args) -> None:
        """Log a failure: debug for transient absence, error for anything else."""
        if self.ok:
            return
        if self.absent:
            log.debug(message + ": %s", *args, self.error)
        else:
            log.error(message, *args, exc_info=self.error)
