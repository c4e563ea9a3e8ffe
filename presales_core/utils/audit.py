"""Audit decorator for pipeline entry points.

Wraps an async callable and emits one ``audit_event`` log entry per call,
with the same success/failure split on both paths: the outcome, the
exception type on failure, and the elapsed time.  Exceptions are always
re-raised unchanged.

The acting user is read from a context variable so that whatever sits in
front of the pipelines (a request handler, a worker) can bind it once per
call chain::

    with audit_actor("alice@example.com"):
        await pipeline.index_version(request)
"""

from __future__ import annotations

import functools
import inspect
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Awaitable, Callable, Iterator, TypeVar

import structlog

_F = TypeVar("_F", bound=Callable[..., Awaitable[Any]])

_ACTOR: ContextVar[str] = ContextVar("audit_actor", default="anonymous")

logger = structlog.get_logger(logger_name=__name__)


@contextmanager
def audit_actor(actor: str) -> Iterator[None]:
    """Bind *actor* as the audited user for the duration of the block."""
    token = _ACTOR.set(actor)
    try:
        yield
    finally:
        _ACTOR.reset(token)


def current_actor() -> str:
    return _ACTOR.get()


def _resolve_resource_id(
    signature: inspect.Signature,
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
    resource_arg: str | None,
    resource_attr: str | None,
) -> str | None:
    if resource_arg is None:
        return None
    try:
        bound = signature.bind_partial(*args, **kwargs)
    except TypeError:
        return None
    value = bound.arguments.get(resource_arg)
    if value is None:
        return None
    if resource_attr:
        for part in resource_attr.split("."):
            value = getattr(value, part, None)
            if value is None:
                return None
    return str(value)


def audited(
    action: str,
    resource_type: str,
    resource_arg: str | None = None,
    resource_attr: str | None = None,
) -> Callable[[_F], _F]:
    """Decorate an async function so every call is audit-logged.

    Parameters
    ----------
    action:
        Verb recorded in the audit entry, e.g. ``"INDEX"`` or ``"PURGE"``.
    resource_type:
        Kind of resource acted on, e.g. ``"DOCUMENT_VERSION"``.
    resource_arg:
        Name of the parameter identifying the resource.
    resource_attr:
        Optional dotted attribute path read from that parameter, e.g.
        ``"version.id"`` when the parameter is a request object.
    """

    def decorator(func: _F) -> _F:
        signature = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            resource_id = _resolve_resource_id(
                signature, args, kwargs, resource_arg, resource_attr
            )
            started = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                logger.info(
                    "audit_event",
                    action=action,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    actor=_ACTOR.get(),
                    outcome="failure",
                    error_type=type(exc).__name__,
                    elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
                )
                raise
            logger.info(
                "audit_event",
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                actor=_ACTOR.get(),
                outcome="success",
                elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            return result

        return wrapper  # type: ignore[return-value]

    return decorator
