"""
Notification Engine - Fire-and-Forget Dispatch

Notifies users about task events (assignment, status changes, comments,
accepted suggestions). The core calls notify(event, recipients, ...) and
never waits for, or learns about, the outcome.

IMPORTANT:
- At-most-once: each notification is handed to the channels once, no retry
- Delivery runs on a background worker pool; a failing or slow channel
  never blocks or rolls back the task/suggestion mutation that caused it
- Rate limiting is applied per recipient
- Every dispatched notification is kept in a bounded in-memory history
"""

import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Set

import httpx

from .config import (
    NOTIFY_WORKERS,
    RATE_LIMIT_MAX,
    RATE_LIMIT_WINDOW,
    WEBHOOK_TIMEOUT_SECONDS,
    WEBHOOK_URL,
)
from .models import AiSuggestion, Task, TaskComment, TaskPriority, TaskStatus, utcnow

logger = logging.getLogger("notification_engine")

HISTORY_SIZE = 200


class NotificationEvent(str, Enum):
    TASK_ASSIGNED = "task_assigned"
    TASK_STATUS_CHANGED = "task_status_changed"
    TASK_PROGRESS = "task_progress"
    TASK_COMMENT = "task_comment"
    SUGGESTION_ACCEPTED = "suggestion_accepted"


class NotificationSeverity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"


@dataclass
class Notification:
    """A notification addressed to one or more users."""
    event: NotificationEvent
    recipients: List[str]
    title: str
    message: str
    severity: NotificationSeverity = NotificationSeverity.INFO
    task_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    delivered_at: Optional[datetime] = None
    delivery_channel: Optional[str] = None
    delivery_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event.value,
            "recipients": list(self.recipients),
            "title": self.title,
            "message": self.message,
            "severity": self.severity.value,
            "task_id": self.task_id,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "delivery_channel": self.delivery_channel,
            "delivery_error": self.delivery_error,
        }


Channel = Callable[[Notification], bool]


class NotificationTemplates:
    """Pre-defined notifications for task board events."""

    @staticmethod
    def task_assigned(task: Task, recipients: Sequence[str]) -> Notification:
        return Notification(
            event=NotificationEvent.TASK_ASSIGNED,
            recipients=list(recipients),
            title="New Task Assigned",
            message=f"You have been assigned a new task: {task.title}",
            severity=(
                NotificationSeverity.WARNING
                if task.priority == TaskPriority.URGENT
                else NotificationSeverity.INFO
            ),
            task_id=task.id,
            metadata={"priority": task.priority.value},
        )

    @staticmethod
    def task_status_changed(
        task: Task,
        previous: TaskStatus,
        recipients: Sequence[str],
    ) -> Notification:
        if task.status == TaskStatus.COMPLETED:
            message = f'Task "{task.title}" has been completed'
            severity = NotificationSeverity.SUCCESS
        elif task.status == TaskStatus.IN_PROGRESS:
            message = f'Task "{task.title}" is now in progress'
            severity = NotificationSeverity.INFO
        elif task.status == TaskStatus.CANCELLED:
            message = f'Task "{task.title}" has been cancelled'
            severity = NotificationSeverity.WARNING
        else:
            message = f'Task "{task.title}" was moved back to todo'
            severity = NotificationSeverity.INFO
        return Notification(
            event=NotificationEvent.TASK_STATUS_CHANGED,
            recipients=list(recipients),
            title="Task Status Updated",
            message=message,
            severity=severity,
            task_id=task.id,
            metadata={"from": previous.value, "to": task.status.value},
        )

    @staticmethod
    def task_progress(task: Task, recipients: Sequence[str]) -> Notification:
        return Notification(
            event=NotificationEvent.TASK_PROGRESS,
            recipients=list(recipients),
            title="Task Progress Updated",
            message=f'Task "{task.title}" progress updated to {task.progress}%',
            task_id=task.id,
            metadata={"progress": task.progress},
        )

    @staticmethod
    def task_comment(task: Task, comment: TaskComment, recipients: Sequence[str]) -> Notification:
        return Notification(
            event=NotificationEvent.TASK_COMMENT,
            recipients=list(recipients),
            title="New Comment",
            message=f'New comment on task "{task.title}"',
            task_id=task.id,
            metadata={"comment_id": comment.id, "author": comment.user_id},
        )

    @staticmethod
    def suggestion_accepted(suggestion: AiSuggestion, task: Task, recipients: Sequence[str]) -> Notification:
        return Notification(
            event=NotificationEvent.SUGGESTION_ACCEPTED,
            recipients=list(recipients),
            title="Suggestion Accepted",
            message=f'Suggestion "{suggestion.title}" is now a task',
            severity=NotificationSeverity.SUCCESS,
            task_id=task.id,
            metadata={"suggestion_id": suggestion.id},
        )


class NotificationEngine:
    """
    Central notification dispatcher.

    Features:
    - Multiple delivery channels (log, webhook)
    - Rate limiting per recipient
    - Background delivery, failures logged and recorded, never raised
    """

    def __init__(
        self,
        max_workers: int = NOTIFY_WORKERS,
        synchronous: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._clock = clock
        self._channels: Dict[str, Channel] = {}
        self._rate_limits: Dict[str, List[datetime]] = {}
        self._history: Deque[Notification] = deque(maxlen=HISTORY_SIZE)
        self._lock = threading.Lock()
        self._synchronous = synchronous
        self._executor: Optional[ThreadPoolExecutor] = None
        if not synchronous:
            self._executor = ThreadPoolExecutor(
                max_workers=max_workers,
                thread_name_prefix="notify",
            )
        self._pending: Set[Future] = set()

    def register_channel(self, name: str, handler: Channel) -> None:
        """Register a notification delivery channel."""
        self._channels[name] = handler
        logger.info(f"Registered notification channel: {name}")

    @property
    def channels(self) -> List[str]:
        return list(self._channels)

    def _check_rate_limit(self, recipient: str) -> bool:
        """Check if recipient is within rate limit."""
        now = self._clock()
        window_start = now - timedelta(seconds=RATE_LIMIT_WINDOW)

        with self._lock:
            # Timestamps are appended in order, so the last one is the newest
            idle = [r for r, stamps in self._rate_limits.items() if not stamps or stamps[-1] <= window_start]
            for key in idle:
                del self._rate_limits[key]

            recent = [t for t in self._rate_limits.get(recipient, []) if t > window_start]
            if len(recent) >= RATE_LIMIT_MAX:
                self._rate_limits[recipient] = recent
                return False
            recent.append(now)
            self._rate_limits[recipient] = recent
            return True

    # -------------------------------------------------------------------------
    # Dispatch (Fire-and-Forget)
    # -------------------------------------------------------------------------

    def notify(
        self,
        event: NotificationEvent,
        recipients: Sequence[str],
        title: str = "",
        message: str = "",
        task_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Build and dispatch a notification. Returns immediately."""
        self.dispatch(Notification(
            event=event,
            recipients=list(recipients),
            title=title,
            message=message,
            task_id=task_id,
            metadata=metadata or {},
        ))

    def dispatch(self, notification: Notification) -> None:
        """
        Hand a notification to the worker pool.

        Duplicate and rate-limited recipients are dropped. Never raises.
        """
        try:
            recipients: List[str] = []
            for recipient in notification.recipients:
                if recipient in recipients:
                    continue
                if not self._check_rate_limit(recipient):
                    logger.warning(f"Rate limit exceeded for {recipient}")
                    continue
                recipients.append(recipient)
            if not recipients:
                return
            notification.recipients = recipients

            if self._executor is None:
                self._deliver(notification)
                return

            future = self._executor.submit(self._deliver, notification)
            with self._lock:
                self._pending.add(future)
            future.add_done_callback(self._forget)
        except Exception as e:
            logger.error(f"Notification dispatch failed for {notification.event.value}: {e}")

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _deliver(self, notification: Notification) -> bool:
        """Try each channel in registration order until one accepts."""
        delivered = False
        for name, handler in list(self._channels.items()):
            try:
                if handler(notification):
                    notification.delivered_at = utcnow()
                    notification.delivery_channel = name
                    delivered = True
                    break
            except Exception as e:
                logger.error(f"Channel {name} delivery failed: {e}")
                notification.delivery_error = str(e)

        with self._lock:
            self._history.append(notification)
        return delivered

    def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight deliveries. Used on shutdown and in tests."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self, wait_for_pending: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait_for_pending)

    def get_recent_notifications(
        self,
        recipient: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Recently dispatched notifications, oldest first."""
        with self._lock:
            history = list(self._history)
        if recipient is not None:
            history = [n for n in history if recipient in n.recipients]
        return [n.to_dict() for n in history[-limit:]]


# -----------------------------------------------------------------------------
# Channels
# -----------------------------------------------------------------------------
def log_channel(notification: Notification) -> bool:
    """Write the notification to the application log."""
    logger.info(
        f"[{notification.event.value}] {notification.title}: {notification.message} "
        f"-> {', '.join(notification.recipients)}"
    )
    return True


def webhook_channel(url: str, timeout: float = WEBHOOK_TIMEOUT_SECONDS) -> Channel:
    """Build a channel that POSTs the notification as JSON to a webhook."""

    def send(notification: Notification) -> bool:
        response = httpx.post(url, json=notification.to_dict(), timeout=timeout)
        if response.status_code >= 400:
            logger.warning(f"Webhook rejected notification: HTTP {response.status_code}")
            return False
        return True

    return send


def create_notification_engine(
    webhook_url: Optional[str] = None,
    synchronous: bool = False,
) -> NotificationEngine:
    """Create an engine with the webhook channel (when configured) and the log channel."""
    engine = NotificationEngine(synchronous=synchronous)
    url = WEBHOOK_URL if webhook_url is None else webhook_url
    if url:
        engine.register_channel("webhook", webhook_channel(url))
    engine.register_channel("log", log_channel)
    return engine


logger.info("Notification Engine module loaded")
