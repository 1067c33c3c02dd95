"""Wire storage, services, and the engine from application settings."""

from __future__ import annotations

from ..calendar.caldav import CalDavCalendarBackend
from ..calendar.google import GoogleCalendarBackend
from ..calendar.graph import GraphCalendarBackend
from ..calendar.service import CalendarService
from ..core.config import AppSettings
from ..core.container import ServiceContainer
from ..core.credentials import EnvCredentialResolver
from ..core.interfaces import CredentialResolver
from ..ingestion.parser import EmailParser
from ..mail.ews import EwsBackend
from ..mail.gmail import GmailBackend
from ..mail.imap_smtp import ImapSmtpBackend
from ..mail.jmap import JmapBackend
from ..mail.service import EmailService
from ..storage.jobs import SqliteJobStore
from ..storage.sqlite import SqliteRecordStore
from ..tasks.caldav import CalDavTaskBackend
from ..tasks.google import GoogleTasksBackend
from ..tasks.graph import GraphTodoBackend
from ..tasks.service import TaskService
from .engine import SyncEngine
from .policy import SchedulingPolicy
from .retry import RetryPolicy
from .scheduler import SyncScheduler
from .worker import SyncWorker


def build_container(
    settings: AppSettings, credentials: CredentialResolver | None = None
) -> ServiceContainer:
    """Register every engine component lazily on a new container."""
    container = ServiceContainer()
    timeout = settings.http.timeout_seconds

    container.register_instance("settings", settings)
    container.register_instance("credentials", credentials or EnvCredentialResolver())
    container.register("parser", lambda _: EmailParser())
    container.register("jobs", lambda _: SqliteJobStore(settings.storage))
    container.register("store", lambda _: SqliteRecordStore(settings.storage))
    container.register(
        "email",
        lambda c: EmailService(
            c.resolve("store"),
            imap_smtp=ImapSmtpBackend(
                c.resolve("parser"),
                gmail=GmailBackend(c.resolve("parser"), timeout=timeout),
                timeout=timeout,
                idle_timeout=settings.mail.idle_timeout_secs,
            ),
            ews=EwsBackend(timeout=timeout),
            jmap=JmapBackend(timeout=timeout),
            parser=c.resolve("parser"),
            per_host_connections=settings.mail.per_host_connections,
        ),
    )
    container.register(
        "calendar",
        lambda c: CalendarService(
            c.resolve("store"),
            caldav=CalDavCalendarBackend(timeout=timeout),
            google=GoogleCalendarBackend(timeout=timeout),
            graph=GraphCalendarBackend(timeout=timeout),
        ),
    )
    container.register(
        "tasks",
        lambda c: TaskService(
            c.resolve("store"),
            caldav=CalDavTaskBackend(timeout=timeout),
            google=GoogleTasksBackend(timeout=timeout),
            graph=GraphTodoBackend(timeout=timeout),
        ),
    )
    container.register(
        "retry",
        lambda c: RetryPolicy(
            c.resolve("jobs"),
            base_seconds=settings.sync.backoff_base_seconds,
            cap=settings.sync.backoff_cap,
        ),
    )
    container.register(
        "worker",
        lambda c: SyncWorker(
            jobs=c.resolve("jobs"),
            accounts=c.resolve("store"),
            credentials=c.resolve("credentials"),
            email=c.resolve("email"),
            calendar=c.resolve("calendar"),
            tasks=c.resolve("tasks"),
            retry=c.resolve("retry"),
            settings=settings.sync,
        ),
    )
    container.register(
        "scheduler",
        lambda c: SyncScheduler(
            c.resolve("jobs"), c.resolve("worker").run, settings.sync
        ),
    )
    container.register(
        "policy",
        lambda c: SchedulingPolicy(
            c.resolve("store"), c.resolve("jobs"), settings.sync
        ),
    )
    container.register(
        "engine",
        lambda c: SyncEngine(
            jobs=c.resolve("jobs"),
            store=c.resolve("store"),
            scheduler=c.resolve("scheduler"),
            policy=c.resolve("policy"),
            email=c.resolve("email"),
            calendar=c.resolve("calendar"),
            tasks=c.resolve("tasks"),
            settings=settings.sync,
        ),
    )
    return container


def build_engine(
    settings: AppSettings, credentials: CredentialResolver | None = None
) -> tuple[SyncEngine, ServiceContainer]:
    """Return a ready engine and the container that owns its resources."""
    container = build_container(settings, credentials)
    return container.resolve("engine"), container


__all__ = ["build_container", "build_engine"]
