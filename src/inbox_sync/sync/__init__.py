"""Job scheduling, execution, and the engine facade."""

from .bootstrap import build_container, build_engine
from .engine import SyncEngine
from .policy import SchedulingPolicy
from .retry import RetryDisposition, RetryPolicy
from .scheduler import SyncScheduler
from .worker import SyncWorker

__all__ = [
    "RetryDisposition",
    "RetryPolicy",
    "SchedulingPolicy",
    "SyncEngine",
    "SyncScheduler",
    "SyncWorker",
    "build_container",
    "build_engine",
]
