"""
Service wiring.

Builds the store, activity log, notification engine and managers once and
hands them out through get_services(). Tests build isolated instances
with build_services().
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .activity_log import ActivityLog
from .aggregation import AggregationEngine
from .calendar_events import CalendarService
from .config import DATA_DIR, STORE_BACKEND
from .models import utcnow
from .notification_engine import NotificationEngine, create_notification_engine
from .settings_store import SettingsStore
from .store import EntityStore, create_store
from .suggestion_engine import SuggestionEngine
from .task_manager import TaskLifecycleManager
from .user_directory import DepartmentDirectory, UserDirectory

logger = logging.getLogger("services")


@dataclass
class TaskboardServices:
    store: EntityStore
    notifier: NotificationEngine
    activity: ActivityLog
    tasks: TaskLifecycleManager
    aggregation: AggregationEngine
    suggestions: SuggestionEngine
    users: UserDirectory
    departments: DepartmentDirectory
    calendar: CalendarService
    settings: SettingsStore

    def shutdown(self) -> None:
        self.notifier.drain(timeout=5)
        self.notifier.shutdown()


def build_services(
    store: Optional[EntityStore] = None,
    notifier: Optional[NotificationEngine] = None,
    clock: Callable[[], datetime] = utcnow,
    settings_file: Optional[Path] = None,
) -> TaskboardServices:
    """Wire every component around one store and one notification engine."""
    store = store or create_store(STORE_BACKEND, DATA_DIR)
    notifier = notifier or create_notification_engine()
    activity = ActivityLog(store, clock=clock)
    tasks = TaskLifecycleManager(store, activity, notifier=notifier, clock=clock)
    return TaskboardServices(
        store=store,
        notifier=notifier,
        activity=activity,
        tasks=tasks,
        aggregation=AggregationEngine(store, clock=clock),
        suggestions=SuggestionEngine(store, tasks, activity, notifier=notifier, clock=clock),
        users=UserDirectory(store, activity, clock=clock),
        departments=DepartmentDirectory(store, activity, clock=clock),
        calendar=CalendarService(store, activity, clock=clock),
        settings=SettingsStore(store, activity, defaults_file=settings_file, clock=clock),
    )


# -----------------------------------------------------------------------------
# Global Instance
# -----------------------------------------------------------------------------
_services: Optional[TaskboardServices] = None
_services_lock = threading.Lock()


def get_services() -> TaskboardServices:
    """Get the process-wide services instance, building it on first use."""
    global _services
    with _services_lock:
        if _services is None:
            _services = build_services()
            logger.info(f"Task board services initialized (store={STORE_BACKEND}, data_dir={DATA_DIR})")
        return _services


def set_services(services: Optional[TaskboardServices]) -> None:
    """Replace the process-wide instance (used by tests)."""
    global _services
    with _services_lock:
        _services = services
