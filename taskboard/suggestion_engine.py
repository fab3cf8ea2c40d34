"""
Suggestion Lifecycle Engine

Stores AI work suggestions produced by the external recommendation
generator and resolves them into tasks.

States: pending -> accepted | dismissed (both terminal).

IMPORTANT:
- Suggestions are stored as given; confidence and category are opaque
  and never recomputed here
- Accepting a suggestion creates a task through the Task Lifecycle
  Manager and marks the suggestion accepted as one atomic unit
- Dismissal only changes the suggestion's status
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .activity_log import ActivityLog
from .errors import InvalidTransitionError, NotFoundError, ValidationError
from .models import (
    AiSuggestion,
    SuggestionStatus,
    Task,
    TaskPriority,
    new_id,
    utcnow,
)
from .notification_engine import NotificationEngine, NotificationTemplates
from .schema import InsertSuggestion, validate_suggestion_input, validate_suggestion_status
from .store import EntityStore
from .task_manager import TaskLifecycleManager

logger = logging.getLogger("suggestion_engine")


class SuggestionEngine:
    """
    Lifecycle of AI suggestions.

    Holds the store lock for every read-check-write sequence so two
    concurrent resolutions of the same suggestion cannot both succeed.
    """

    def __init__(
        self,
        store: EntityStore,
        task_manager: TaskLifecycleManager,
        activity_log: ActivityLog,
        notifier: Optional[NotificationEngine] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._tasks = task_manager
        self._activity = activity_log
        self._notifier = notifier
        self._clock = clock

    def _load(self, suggestion_id: str) -> AiSuggestion:
        data = self._store.get(AiSuggestion.collection, suggestion_id)
        if data is None:
            raise NotFoundError("AiSuggestion", suggestion_id)
        return AiSuggestion.from_dict(data)

    def _require_pending(self, suggestion: AiSuggestion, target: SuggestionStatus) -> None:
        if suggestion.status != SuggestionStatus.PENDING:
            logger.warning(
                f"Cannot {target.value} suggestion {suggestion.id}: already {suggestion.status.value}"
            )
            raise InvalidTransitionError(
                "AiSuggestion",
                suggestion.id,
                from_state=suggestion.status.value,
                to_state=target.value,
                current=suggestion.to_dict(),
            )

    # -------------------------------------------------------------------------
    # WRITE Operations
    # -------------------------------------------------------------------------

    def record_suggestions(
        self,
        user_id: str,
        items: Sequence[Union[InsertSuggestion, Dict[str, Any]]],
    ) -> List[AiSuggestion]:
        """
        Store a batch of generated suggestions for one user as pending.

        Every item is validated before anything is written; one invalid item
        rejects the whole batch. Issues are reported per item index.
        """
        if not user_id:
            raise ValidationError.single("user_id", "is required")
        if not isinstance(items, (list, tuple)):
            raise ValidationError.single("items", "must be a list")

        validated: List[Dict[str, Any]] = []
        issues: List[Dict[str, str]] = []
        for index, item in enumerate(items):
            try:
                validated.append(validate_suggestion_input(item))
            except ValidationError as e:
                for issue in e.issues:
                    issues.append({
                        "field": f"items[{index}].{issue['field']}",
                        "message": issue["message"],
                    })
        if issues:
            raise ValidationError(issues)

        suggestions: List[AiSuggestion] = []
        with self._store.atomic():
            now = self._clock()
            for fields in validated:
                suggestion = AiSuggestion(
                    id=new_id(AiSuggestion.id_prefix),
                    user_id=user_id,
                    title=fields["title"],
                    description=fields["description"],
                    confidence=fields["confidence"],
                    reasoning=fields.get("reasoning", ""),
                    priority=fields.get("priority", TaskPriority.MEDIUM),
                    created_at=now,
                    updated_at=now,
                )
                if "category" in fields:
                    suggestion.category = fields["category"]
                self._store.put(AiSuggestion.collection, suggestion.id, suggestion.to_dict())
                suggestions.append(suggestion)

            if suggestions:
                self._activity.append(
                    type="suggestions_generated",
                    user_id=user_id,
                    description=f"{len(suggestions)} AI suggestion(s) generated",
                    metadata={"suggestion_ids": [s.id for s in suggestions]},
                )

        logger.info(f"Recorded {len(suggestions)} suggestion(s) for {user_id}")
        return suggestions

    def accept_suggestion(self, suggestion_id: str, actor_id: str) -> Tuple[Task, AiSuggestion]:
        """
        Accept a pending suggestion.

        Creates a task assigned to the suggestion's recipient, seeded with its
        title, description and priority, and marks the suggestion accepted.
        Both writes commit together: if any write after the task is stored
        fails, the task is removed and the suggestion restored to pending.
        Notifications go out only once the whole unit has committed.
        """
        with self._store.atomic():
            suggestion = self._load(suggestion_id)
            self._require_pending(suggestion, SuggestionStatus.ACCEPTED)
            previous = suggestion.to_dict()

            task = self._tasks.prepare_task(
                {
                    "title": suggestion.title,
                    "description": suggestion.description,
                    "priority": suggestion.priority.value,
                    "assigned_to": [suggestion.user_id],
                    "metadata": {"source_suggestion_id": suggestion.id},
                },
                actor_id=actor_id,
            )

            now = self._clock()
            suggestion.status = SuggestionStatus.ACCEPTED
            suggestion.task_id = task.id
            suggestion.resolved_by = actor_id
            suggestion.resolved_at = now
            suggestion.updated_at = now

            self._store.put(Task.collection, task.id, task.to_dict())
            suggestion_written = False
            try:
                self._store.put(AiSuggestion.collection, suggestion.id, suggestion.to_dict())
                suggestion_written = True
                self._tasks.log_task_created(task)
                self._activity.append(
                    type="suggestion_accepted",
                    user_id=actor_id,
                    target_id=suggestion.id,
                    description=f"Accepted suggestion '{suggestion.title}'",
                    metadata={"task_id": task.id, "confidence": suggestion.confidence},
                )
            except Exception as e:
                logger.error(f"Accepting suggestion {suggestion_id} failed, removing task {task.id}: {e}")
                self._store.delete(Task.collection, task.id)
                if suggestion_written:
                    self._store.put(AiSuggestion.collection, suggestion_id, previous)
                raise

        logger.info(f"Suggestion accepted: {suggestion_id} -> task {task.id} by {actor_id}")
        self._tasks.announce_task_created(task)
        if self._notifier is not None and suggestion.user_id != actor_id:
            self._notifier.dispatch(
                NotificationTemplates.suggestion_accepted(suggestion, task, [suggestion.user_id])
            )
        return task, suggestion

    def dismiss_suggestion(self, suggestion_id: str, actor_id: str) -> AiSuggestion:
        """Dismiss a pending suggestion. No task is created."""
        with self._store.atomic():
            suggestion = self._load(suggestion_id)
            self._require_pending(suggestion, SuggestionStatus.DISMISSED)

            now = self._clock()
            suggestion.status = SuggestionStatus.DISMISSED
            suggestion.resolved_by = actor_id
            suggestion.resolved_at = now
            suggestion.updated_at = now
            self._store.put(AiSuggestion.collection, suggestion.id, suggestion.to_dict())
            self._activity.append(
                type="suggestion_dismissed",
                user_id=actor_id,
                target_id=suggestion.id,
                description=f"Dismissed suggestion '{suggestion.title}'",
            )

        logger.info(f"Suggestion dismissed: {suggestion_id} by {actor_id}")
        return suggestion

    # -------------------------------------------------------------------------
    # READ Operations
    # -------------------------------------------------------------------------

    def get_suggestion(self, suggestion_id: str) -> AiSuggestion:
        return self._load(suggestion_id)

    def list_suggestions(
        self,
        user_id: Optional[str] = None,
        status: Union[SuggestionStatus, str, None] = None,
        limit: Optional[int] = None,
    ) -> List[AiSuggestion]:
        """Suggestions for a user (or all users), newest first."""
        if status is not None:
            status = validate_suggestion_status(status)

        def matches(doc: Dict[str, Any]) -> bool:
            if user_id is not None and doc.get("user_id") != user_id:
                return False
            if status is not None and doc.get("status") != status.value:
                return False
            return True

        suggestions = [
            AiSuggestion.from_dict(d)
            for d in self._store.query(AiSuggestion.collection, matches)
        ]
        suggestions.sort(key=lambda s: s.created_at, reverse=True)
        if limit is not None:
            suggestions = suggestions[:limit]
        return suggestions


logger.info("Suggestion Lifecycle Engine module loaded")
