"""
Handlers used by the test suite.
"""

from collections import Counter
from typing import ClassVar

from dbqueue.errors import RetryException
from dbqueue.types.job import Failed
from dbqueue.worker.handlers import Handler, HandlerRegistry

handler_registry = HandlerRegistry()


@handler_registry.register("hello")
class HelloWorldJob(Handler):
    """Succeeds and greets."""

    name: str = "world"

    def perform(self) -> None:
        print(f"Hello {self.name}!")

    def on_retry_error(self, error: str) -> None:
        HandlerLog.notifications.append(("hello", error))


@handler_registry.register("failing")
class FailingJob(Handler):
    """Always raises a plain error."""

    def perform(self) -> None:
        raise RuntimeError("Uh oh")

    def on_retry_error(self, error: str) -> None:
        HandlerLog.notifications.append(("failing", error))


@handler_registry.register("retry_once")
class RetryOnceJob(Handler):
    """Asks for a retry on its first call and succeeds afterwards."""

    key: str
    delay_seconds: int = 0

    def perform(self) -> None:
        HandlerLog.calls[self.key] += 1
        if HandlerLog.calls[self.key] == 1:
            raise RetryException("not ready yet", delay_seconds=self.delay_seconds)


@handler_registry.register("always_retry")
class AlwaysRetryJob(Handler):
    """Asks for a retry on every call."""

    delay_seconds: int = 0

    def perform(self) -> None:
        raise RetryException("still waiting", delay_seconds=self.delay_seconds)

    def on_retry_error(self, error: str) -> None:
        HandlerLog.notifications.append(("always_retry", error))


@handler_registry.register("returns_failure")
class ReturnsFailureJob(Handler):
    """Reports failure through a returned outcome instead of raising."""

    reason: str = "bad input"

    def perform(self) -> Failed:
        return Failed(message=self.reason)


class HandlerLog:
    """Side effects observed from test handlers."""

    calls: ClassVar[Counter] = Counter()
    notifications: ClassVar[list[tuple[str, str]]] = []

    @classmethod
    def reset(cls) -> None:
        cls.calls.clear()
        cls.notifications.clear()
