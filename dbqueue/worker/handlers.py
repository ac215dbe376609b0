"""
Job handlers registry and implementations.

A handler is a pydantic model: its fields are the job's arguments and its
perform() method is the work. Handlers are stored in the jobs table as
"<type-identifier>:<model JSON>" and rebuilt through a HandlerRegistry that
the application populates explicitly.

Job handlers must be idempotent - they may be executed more than once for
the same job if a worker dies before recording the outcome.
"""

import contextlib
import io
import logging
import sys
import time
from collections.abc import Callable
from typing import Any, ClassVar

import httpx
from pydantic import BaseModel, ValidationError

from dbqueue.constants import HANDLER_TYPE_SEPARATOR
from dbqueue.errors import (
    HandlerNotRegisteredError,
    HandlerResolutionError,
    RetryException,
    UnexpectedOutputError,
)
from dbqueue.types.job import Failed, Outcome, RetryRequested, Success

logger = logging.getLogger(__name__)


class Handler(BaseModel):
    """
    Base class for enqueueable handlers.

    Subclasses implement perform(). It may return None (success), return an
    Outcome explicitly, or raise RetryException to ask for a delayed retry.
    Any other exception fails the attempt.

    Subclasses may define on_retry_error(error) to be told when the job has
    used up its attempts.
    """

    type_id: ClassVar[str | None] = None

    def perform(self) -> Outcome | None:
        raise NotImplementedError

    def serialize(self) -> str:
        """Encode this handler as "<type-identifier>:<json>"."""
        if self.type_id is None:
            raise HandlerResolutionError(
                f"{type(self).__name__} is not registered with a handler registry"
            )
        return f"{self.type_id}{HANDLER_TYPE_SEPARATOR}{self.model_dump_json()}"


class HandlerRegistry:
    """
    Mapping from type identifier to handler class.

    Example:
        registry = HandlerRegistry()

        @registry.register("send_email")
        class SendEmail(Handler):
            to: str

            def perform(self) -> None:
                ...
    """

    def __init__(self) -> None:
        self._handlers: dict[str, type[Handler]] = {}

    def register(self, type_id: str) -> Callable[[type[Handler]], type[Handler]]:
        """
        Decorator to register a handler class.

        Args:
            type_id: The identifier stored in front of the serialized body.

        Returns:
            Decorator function.
        """
        if not type_id or HANDLER_TYPE_SEPARATOR in type_id:
            raise ValueError(f"Invalid handler type identifier: {type_id!r}")

        def decorator(handler_cls: type[Handler]) -> type[Handler]:
            handler_cls.type_id = type_id
            self._handlers[type_id] = handler_cls
            logger.debug(f"Registered handler for job type: {type_id}")
            return handler_cls

        return decorator

    def get(self, type_id: str) -> type[Handler] | None:
        return self._handlers.get(type_id)

    def list(self) -> list[str]:
        """List all registered type identifiers."""
        return list(self._handlers.keys())

    def deserialize(self, payload: str | None) -> Handler:
        """
        Rebuild a handler from its stored form.

        Args:
            payload: The stored "<type-identifier>:<json>" string.

        Returns:
            The handler instance.

        Raises:
            HandlerNotRegisteredError: If the type identifier is unknown.
            HandlerResolutionError: If the payload is missing or malformed.
        """
        if not payload:
            raise HandlerResolutionError("Handler payload is missing")

        type_id, separator, body = payload.partition(HANDLER_TYPE_SEPARATOR)
        if not separator:
            raise HandlerResolutionError("Handler payload has no type identifier")

        handler_cls = self.get(type_id)
        if handler_cls is None:
            raise HandlerNotRegisteredError(type_id)

        try:
            return handler_cls.model_validate_json(body)
        except ValidationError as e:
            raise HandlerResolutionError(
                f"Cannot deserialize handler of type {type_id}: {e}"
            ) from e


# Registry used when the application does not supply its own
default_registry = HandlerRegistry()
register_handler = default_registry.register


def get_handler(type_id: str) -> type[Handler] | None:
    """Get the default registry's handler class for a type identifier."""
    return default_registry.get(type_id)


def list_handlers() -> list[str]:
    """List all type identifiers in the default registry."""
    return default_registry.list()


def _flush_captured(buffer: io.StringIO | None) -> None:
    """Write output captured from a handler to the real stdout."""
    if buffer is not None and buffer.getvalue():
        sys.stdout.write(buffer.getvalue())
        sys.stdout.flush()


def invoke_handler(handler: Handler, fail_on_output: bool = False) -> Outcome:
    """
    Run a handler and turn whatever happens into an Outcome.

    Never raises for handler errors.

    With fail_on_output, stdout is captured while perform() runs. Output
    only fails an attempt that would otherwise have succeeded; when the
    handler asks for a retry or fails anyway, the outcome is kept and the
    captured output is passed through to stdout.

    Args:
        handler: The handler to run.
        fail_on_output: Fail the attempt if perform() writes to stdout.

    Returns:
        Success, RetryRequested or Failed.
    """
    buffer = io.StringIO() if fail_on_output else None
    try:
        if buffer is None:
            result = handler.perform()
        else:
            with contextlib.redirect_stdout(buffer):
                result = handler.perform()
    except RetryException as e:
        _flush_captured(buffer)
        return RetryRequested(delay_seconds=e.delay_seconds, message=e.message)
    except Exception as e:
        _flush_captured(buffer)
        logger.exception(
            "Handler raised exception",
            extra={"handler_type": handler.type_id},
        )
        return Failed(message=str(e) or type(e).__name__)

    if isinstance(result, (RetryRequested, Failed)):
        _flush_captured(buffer)
        return result

    if buffer is not None and buffer.getvalue():
        error = UnexpectedOutputError(buffer.getvalue())
        logger.error(str(error), extra={"handler_type": handler.type_id})
        return Failed(message=str(error))
    return Success()


# ============================================================================
# Built-in job handlers
# ============================================================================


@register_handler("echo")
class EchoHandler(Handler):
    """
    Echo handler for testing.

    Logs its message and succeeds.
    """

    message: str = ""

    def perform(self) -> None:
        logger.info("Echo job executing", extra={"echo_message": self.message})


@register_handler("sleep")
class SleepHandler(Handler):
    """
    Sleep handler for testing delays.
    """

    duration_seconds: float = 1.0

    def perform(self) -> None:
        logger.info("Sleep job starting", extra={"duration": self.duration_seconds})
        time.sleep(self.duration_seconds)


@register_handler("fail")
class FailingHandler(Handler):
    """
    Handler that always fails - for testing retry logic.
    """

    message: str = "Intentional failure"

    def perform(self) -> None:
        raise RuntimeError(self.message)

    def on_retry_error(self, error: str) -> None:
        logger.warning("Failing job gave up", extra={"error": error})


@register_handler("http_request")
class HttpRequestHandler(Handler):
    """
    Make an HTTP request.

    429 and 503 responses ask for a retry, honouring a numeric Retry-After
    header. Other non-2xx responses fail the attempt.
    """

    # Swappable for tests
    transport: ClassVar[httpx.BaseTransport | None] = None

    url: str
    method: str = "GET"
    headers: dict[str, str] = {}
    body: Any = None
    timeout_seconds: float = 30.0
    retry_delay_seconds: int = 60

    def perform(self) -> Outcome:
        method = self.method.upper()
        logger.info("HTTP request job", extra={"method": method, "url": self.url})

        with httpx.Client(transport=self.transport, timeout=self.timeout_seconds) as client:
            response = client.request(
                method=method,
                url=self.url,
                headers=self.headers,
                json=self.body if method in ["POST", "PUT", "PATCH"] else None,
            )

        if response.is_success:
            return Success()

        if response.status_code in (429, 503):
            retry_after = response.headers.get("Retry-After", "")
            delay = int(retry_after) if retry_after.isdigit() else self.retry_delay_seconds
            return RetryRequested(
                delay_seconds=delay,
                message=f"HTTP {response.status_code}",
            )

        return Failed(message=f"HTTP {response.status_code}")
