"""
Worker module.
Contains the polling loop, the job executor, and the handler registry.
"""

from dbqueue.worker.executor import JobExecutor
from dbqueue.worker.handlers import (
    Handler,
    HandlerRegistry,
    default_registry,
    invoke_handler,
    register_handler,
)
from dbqueue.worker.main import Worker

__all__ = [
    "Worker",
    "JobExecutor",
    "Handler",
    "HandlerRegistry",
    "default_registry",
    "invoke_handler",
    "register_handler",
]
