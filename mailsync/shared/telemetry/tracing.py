"""Utility functions and decorators for distributed tracing"""
import asyncio
import inspect
from collections.abc import Callable
from functools import wraps
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

# Never copied onto spans
SENSITIVE_ARGUMENTS = frozenset({"token", "access_token", "refresh_token", "credential", "secret"})

# Argument names promoted to span attributes when present
TRACED_ARGUMENTS = frozenset({"account_id", "user_id", "run_id", "provider_type"})


def _span_arguments(func: Callable, args: tuple, kwargs: dict) -> dict[str, str]:
    try:
        bound = inspect.signature(func).bind_partial(*args, **kwargs)
    except TypeError:
        return {}
    return {
        f"arg.{name}": str(value)
        for name, value in bound.arguments.items()
        if name in TRACED_ARGUMENTS and name not in SENSITIVE_ARGUMENTS
    }


def traced(operation_name: str | None = None, attributes: dict[str, Any] | None = None):
    """
    Decorator to create a span for a function

    Usage:
        @traced("sync_account")
        async def sync_account(self, account_id: str):
            ...

    Args:
        operation_name: Name of the operation (defaults to function name)
        attributes: Additional attributes to add to the span
    """

    def decorator(func: Callable) -> Callable:
        span_name = operation_name or f"{func.__module__}.{func.__name__}"

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            tracer = trace.get_tracer(__name__)
            with tracer.start_as_current_span(span_name) as span:
                for key, value in (attributes or {}).items():
                    span.set_attribute(key, value)
                for key, value in _span_arguments(func, args, kwargs).items():
                    span.set_attribute(key, value)

                try:
                    result = await func(*args, **kwargs)
                    span.set_status(Status(StatusCode.OK))
                    return result
                except Exception as e:
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    span.record_exception(e)
                    raise

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            tracer = trace.get_tracer(__name__)
            with tracer.start_as_current_span(span_name) as span:
                for key, value in (attributes or {}).items():
                    span.set_attribute(key, value)
                for key, value in _span_arguments(func, args, kwargs).items():
                    span.set_attribute(key, value)

                try:
                    result = func(*args, **kwargs)
                    span.set_status(Status(StatusCode.OK))
                    return result
                except Exception as e:
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    span.record_exception(e)
                    raise

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def add_span_attributes(**attributes):
    """
    Add attributes to the current span

    Usage:
        add_span_attributes(messages_listed=120, sync_kind="initial")
    """
    span = trace.get_current_span()
    if span:
        for key, value in attributes.items():
            span.set_attribute(key, value)
