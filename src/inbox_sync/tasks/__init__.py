"""Task list backends and the task service."""

from .caldav import CalDavTaskBackend
from .google import GoogleTasksBackend, infer_priority
from .graph import GraphTodoBackend
from .service import TaskService

__all__ = [
    "CalDavTaskBackend",
    "GoogleTasksBackend",
    "GraphTodoBackend",
    "TaskService",
    "infer_priority",
]
