"""
Task Lifecycle Manager

Owns every Task. Validates and applies task creation and mutation,
enforces the status state machine and records each change in the
activity log.

Key responsibilities:
- Status transitions (todo / in_progress / completed / cancelled)
- Progress invariants (completed => 100, cancelled freezes progress)
- Optimistic concurrency on update (expected updated_at)
- Task comments
- Fire-and-forget notifications to assignees and creators
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .activity_log import ActivityLog
from .errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .models import (
    Task,
    TaskComment,
    TaskPriority,
    TaskStatus,
    new_id,
    parse_datetime,
    utcnow,
)
from .notification_engine import Notification, NotificationEngine, NotificationTemplates
from .schema import (
    InsertTask,
    TaskPatch,
    validate_comment_input,
    validate_task_input,
    validate_task_patch,
)
from .store import EntityStore

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
logger = logging.getLogger("task_manager")

# -----------------------------------------------------------------------------
# Status Transition Rules
# -----------------------------------------------------------------------------

# Valid transitions from each status
VALID_TRANSITIONS: Dict[TaskStatus, List[TaskStatus]] = {
    TaskStatus.TODO: [TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED],
    TaskStatus.IN_PROGRESS: [
        TaskStatus.COMPLETED,
        TaskStatus.CANCELLED,
        TaskStatus.TODO,  # Reopen
    ],
    TaskStatus.COMPLETED: [],  # Terminal state
    TaskStatus.CANCELLED: [],  # Terminal state
}

# list_tasks() filters
TASK_FILTERS = ("all", "assigned", "created", "completed")


def can_transition(current: TaskStatus, target: TaskStatus) -> Tuple[bool, str]:
    """Check if a status transition is valid."""
    valid_targets = VALID_TRANSITIONS.get(current, [])
    if target in valid_targets:
        return True, f"Transition {current.value} -> {target.value} allowed"
    return False, (
        f"Invalid transition: {current.value} -> {target.value}. "
        f"Valid targets: {[t.value for t in valid_targets]}"
    )


def _audience(task: Task, exclude: Optional[str]) -> List[str]:
    """Assignees plus creator, without the acting user."""
    recipients: List[str] = []
    for user_id in list(task.assigned_to) + [task.created_by]:
        if user_id != exclude and user_id not in recipients:
            recipients.append(user_id)
    return recipients


class TaskLifecycleManager:
    """
    Manager for task creation, status transitions and comments.
    """

    def __init__(
        self,
        store: EntityStore,
        activity_log: ActivityLog,
        notifier: Optional[NotificationEngine] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._activity = activity_log
        self._notifier = notifier
        self._clock = clock

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _next_timestamp(self, previous: Optional[datetime] = None) -> datetime:
        """Current time, strictly after previous so updated_at always advances."""
        now = self._clock()
        if previous is not None and now <= previous:
            now = previous + timedelta(microseconds=1)
        return now

    def _notify(self, notifications: Iterable[Notification]) -> None:
        if self._notifier is None:
            return
        for notification in notifications:
            if notification.recipients:
                self._notifier.dispatch(notification)

    def _load(self, task_id: str) -> Task:
        data = self._store.get(Task.collection, task_id)
        if data is None:
            raise NotFoundError("Task", task_id)
        return Task.from_dict(data)

    # -------------------------------------------------------------------------
    # Task Operations
    # -------------------------------------------------------------------------

    def prepare_task(self, data: Union[InsertTask, Dict[str, Any]], actor_id: str) -> Task:
        """
        Validate an InsertTask payload and build the Task without storing it.

        status defaults to todo, progress always starts at 0 and created_by
        is the acting user.
        """
        fields = validate_task_input(data)
        if not actor_id:
            raise ValidationError.single("created_by", "is required")

        now = self._next_timestamp()
        task = Task(
            id=new_id(Task.id_prefix),
            title=fields["title"],
            created_by=actor_id,
            assigned_to=fields["assigned_to"],
            description=fields.get("description"),
            status=fields.get("status") or TaskStatus.TODO,
            priority=fields.get("priority") or TaskPriority.MEDIUM,
            due_date=fields.get("due_date"),
            progress=0,
            estimated_hours=fields.get("estimated_hours"),
            actual_hours=fields.get("actual_hours"),
            tags=fields.get("tags", []),
            attachments=fields.get("attachments", []),
            metadata=fields.get("metadata") or {},
            created_at=now,
            updated_at=now,
        )
        if "category" in fields:
            task.category = fields["category"]
        return task

    def log_task_created(self, task: Task) -> None:
        self._activity.append(
            type="task_created",
            user_id=task.created_by,
            target_id=task.id,
            description=f"Created task '{task.title}'",
            metadata={
                "status": task.status.value,
                "priority": task.priority.value,
                "assigned_to": list(task.assigned_to),
            },
        )

    def announce_task_created(self, task: Task) -> None:
        """Notify assignees of a task that is already stored."""
        logger.info(f"Task created: {task.id} '{task.title}' by {task.created_by}")
        assignees = [u for u in task.assigned_to if u != task.created_by]
        self._notify([NotificationTemplates.task_assigned(task, assignees)])

    def create_task(self, data: Union[InsertTask, Dict[str, Any]], actor_id: str) -> Task:
        """Create and store a task from an InsertTask payload."""
        with self._store.atomic():
            task = self.prepare_task(data, actor_id)
            self._store.put(Task.collection, task.id, task.to_dict())
            self.log_task_created(task)

        self.announce_task_created(task)
        return task

    def get_task(self, task_id: str) -> Task:
        return self._load(task_id)

    def update_task(
        self,
        task_id: str,
        patch: Union[TaskPatch, Dict[str, Any]],
        actor_id: str,
        expected_updated_at: Union[datetime, str, None] = None,
    ) -> Task:
        """
        Apply a partial update under the status state machine.

        - expected_updated_at, when given, must equal the stored updated_at
          or the update fails with ConflictError
        - entering completed forces progress to 100
        - entering cancelled keeps progress at its previous value
        - completed and cancelled tasks accept no further changes
        - a patch that changes nothing is a no-op (no stamp, no activity)
        """
        fields = validate_task_patch(patch)
        try:
            expected = parse_datetime(expected_updated_at)
        except ValueError:
            raise ValidationError.single("expected_updated_at", "must be an ISO-8601 datetime")

        with self._store.atomic():
            task = self._load(task_id)
            if expected is not None and task.updated_at != expected:
                logger.warning(f"Update conflict on {task_id}: expected {expected}, stored {task.updated_at}")
                raise ConflictError(
                    "Task",
                    task_id,
                    expected=expected.isoformat(),
                    actual=task.updated_at.isoformat() if task.updated_at else None,
                    current=task.to_dict(),
                )

            before = Task.from_dict(task.to_dict())
            target_status = fields.pop("status", task.status)
            if "metadata" in fields and fields["metadata"] is None:
                fields["metadata"] = {}

            if target_status != task.status:
                allowed, message = can_transition(task.status, target_status)
                if not allowed:
                    logger.warning(f"Rejected transition on {task_id}: {message}")
                    raise InvalidTransitionError(
                        "Task",
                        task_id,
                        from_state=task.status.value,
                        to_state=target_status.value,
                        current=task.to_dict(),
                        reason=message,
                    )
            elif task.is_terminal:
                changed = sorted(k for k, v in fields.items() if getattr(task, k) != v)
                if changed:
                    raise InvalidTransitionError(
                        "Task",
                        task_id,
                        from_state=task.status.value,
                        to_state=task.status.value,
                        current=task.to_dict(),
                        reason=(
                            f"Task is {task.status.value}; fields cannot change: "
                            f"{', '.join(changed)}"
                        ),
                    )

            for name, value in fields.items():
                setattr(task, name, value)

            if target_status != before.status:
                task.status = target_status
                if target_status == TaskStatus.COMPLETED:
                    task.progress = 100
                elif target_status == TaskStatus.CANCELLED:
                    task.progress = before.progress

            old_doc, new_doc = before.to_dict(), task.to_dict()
            changes = {
                key: {"from": old_doc[key], "to": new_doc[key]}
                for key in new_doc
                if key != "updated_at" and old_doc.get(key) != new_doc[key]
            }
            if not changes:
                return before

            task.updated_at = self._next_timestamp(before.updated_at)
            self._store.put(Task.collection, task.id, task.to_dict())
            self._activity.append(
                type="task_updated",
                user_id=actor_id,
                target_id=task.id,
                description=f"Updated task '{task.title}' ({', '.join(sorted(changes))})",
                metadata={"changes": changes},
            )

        logger.info(f"Task updated: {task_id} ({', '.join(sorted(changes))}) by {actor_id}")

        notifications = []
        if task.status != before.status:
            notifications.append(
                NotificationTemplates.task_status_changed(task, before.status, _audience(task, actor_id))
            )
        elif task.progress != before.progress:
            notifications.append(NotificationTemplates.task_progress(task, _audience(task, actor_id)))
        added = [u for u in task.assigned_to if u not in before.assigned_to and u != actor_id]
        if added:
            notifications.append(NotificationTemplates.task_assigned(task, added))
        self._notify(notifications)
        return task

    def list_tasks(
        self,
        filter: str = "all",
        user_id: Optional[str] = None,
        status: Union[TaskStatus, str, None] = None,
        limit: Optional[int] = None,
    ) -> List[Task]:
        """
        List tasks, most recently updated first.

        filter:
        - all: every task
        - assigned: tasks assigned to user_id
        - created: tasks created by user_id
        - completed: completed tasks
        """
        if filter not in TASK_FILTERS:
            raise ValidationError.single("filter", f"must be one of: {', '.join(TASK_FILTERS)}")
        if filter in ("assigned", "created") and not user_id:
            raise ValidationError.single("user_id", f"is required for filter '{filter}'")
        if status is not None and not isinstance(status, TaskStatus):
            try:
                status = TaskStatus(status)
            except ValueError:
                raise ValidationError.single(
                    "status", f"must be one of: {', '.join(s.value for s in TaskStatus)}"
                )
        if limit is not None and limit < 0:
            raise ValidationError.single("limit", "must be >= 0")

        def matches(doc: Dict[str, Any]) -> bool:
            if filter == "assigned" and user_id not in doc.get("assigned_to", []):
                return False
            if filter == "created" and doc.get("created_by") != user_id:
                return False
            if filter == "completed" and doc.get("status") != TaskStatus.COMPLETED.value:
                return False
            if status is not None and doc.get("status") != status.value:
                return False
            return True

        tasks = [Task.from_dict(d) for d in self._store.query(Task.collection, matches)]
        tasks.sort(key=lambda t: (t.updated_at, t.created_at), reverse=True)
        if limit is not None:
            tasks = tasks[:limit]
        return tasks

    # -------------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------------

    def add_comment(self, task_id: str, content: str, user_id: str) -> TaskComment:
        fields = validate_comment_input({"content": content})
        with self._store.atomic():
            task = self._load(task_id)
            now = self._next_timestamp()
            comment = TaskComment(
                id=new_id(TaskComment.id_prefix),
                task_id=task.id,
                user_id=user_id,
                content=fields["content"],
                created_at=now,
                updated_at=now,
            )
            self._store.put(TaskComment.collection, comment.id, comment.to_dict())
            self._activity.append(
                type="comment_added",
                user_id=user_id,
                target_id=task.id,
                description=f"Commented on '{task.title}'",
                metadata={"comment_id": comment.id},
            )

        self._notify([NotificationTemplates.task_comment(task, comment, _audience(task, user_id))])
        return comment

    def edit_comment(self, comment_id: str, content: str, user_id: str) -> TaskComment:
        """Edit a comment's content. Only its author may do this."""
        fields = validate_comment_input({"content": content})
        with self._store.atomic():
            data = self._store.get(TaskComment.collection, comment_id)
            if data is None:
                raise NotFoundError("TaskComment", comment_id)
            comment = TaskComment.from_dict(data)
            if comment.user_id != user_id:
                raise PermissionDeniedError(
                    "Only the author can edit a comment",
                    details={"comment_id": comment_id, "author": comment.user_id},
                )
            if comment.content == fields["content"]:
                return comment
            comment.content = fields["content"]
            comment.updated_at = self._next_timestamp(comment.updated_at)
            self._store.put(TaskComment.collection, comment.id, comment.to_dict())
            self._activity.append(
                type="comment_edited",
                user_id=user_id,
                target_id=comment.task_id,
                description="Edited a comment",
                metadata={"comment_id": comment.id},
            )
        return comment

    def list_comments(self, task_id: str) -> List[TaskComment]:
        """Comments on a task, newest first."""
        self._load(task_id)
        comments = [
            TaskComment.from_dict(d)
            for d in self._store.query(TaskComment.collection, lambda d: d.get("task_id") == task_id)
        ]
        comments.sort(key=lambda c: c.created_at, reverse=True)
        return comments


logger.info("Task Lifecycle Manager module loaded")
