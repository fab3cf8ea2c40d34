"""
Unit Tests for the Suggestion Lifecycle Engine
"""

import pytest

from taskboard.errors import InternalError, InvalidTransitionError, NotFoundError, ValidationError
from taskboard.models import AiSuggestion, SuggestionStatus, Task, TaskPriority, TaskStatus

RECIPIENT = "user-educator"
REVIEWER = "user-head"


def suggestion_item(**overrides):
    item = {
        "title": "Schedule parent-teacher conferences",
        "description": "Three students are behind on coursework.",
        "confidence": 0.82,
        "priority": "high",
        "reasoning": "Grades dropped across two consecutive assessments",
    }
    item.update(overrides)
    return item


@pytest.fixture
def suggestions(services):
    return services.suggestions


@pytest.fixture
def pending(suggestions):
    return suggestions.record_suggestions(RECIPIENT, [suggestion_item()])[0]


class TestRecordSuggestions:

    def test_stored_as_pending(self, suggestions, pending):
        assert pending.status == SuggestionStatus.PENDING
        assert pending.confidence == 0.82
        assert pending.category == "general"
        assert suggestions.get_suggestion(pending.id) == pending

    def test_defaults(self, suggestions):
        item = suggestion_item()
        del item["reasoning"]
        del item["priority"]
        suggestion = suggestions.record_suggestions(RECIPIENT, [item])[0]

        assert suggestion.reasoning == ""
        assert suggestion.priority == TaskPriority.MEDIUM

    def test_batch_is_all_or_nothing(self, suggestions, store):
        items = [suggestion_item(), suggestion_item(confidence=1.5)]

        with pytest.raises(ValidationError) as exc_info:
            suggestions.record_suggestions(RECIPIENT, items)

        assert exc_info.value.fields == ["items[1].confidence"]
        assert store.count(AiSuggestion.collection) == 0

    @pytest.mark.parametrize("confidence", [0, 0.0, 1, 1.0])
    def test_confidence_bounds_inclusive(self, suggestions, confidence):
        suggestion = suggestions.record_suggestions(RECIPIENT, [suggestion_item(confidence=confidence)])[0]
        assert suggestion.confidence == float(confidence)

    def test_records_activity(self, services, pending):
        entry = services.activity.query(type="suggestions_generated")[0]
        assert entry.user_id == RECIPIENT
        assert entry.metadata["suggestion_ids"] == [pending.id]


class TestAcceptSuggestion:

    def test_creates_task_for_recipient(self, services, suggestions, pending):
        task, accepted = suggestions.accept_suggestion(pending.id, actor_id=REVIEWER)

        assert task.title == pending.title
        assert task.description == pending.description
        assert task.priority == TaskPriority.HIGH
        assert task.assigned_to == [RECIPIENT]
        assert task.status == TaskStatus.TODO
        assert task.metadata == {"source_suggestion_id": pending.id}

        assert accepted.status == SuggestionStatus.ACCEPTED
        assert accepted.task_id == task.id
        assert accepted.resolved_by == REVIEWER
        assert accepted.resolved_at is not None
        assert suggestions.get_suggestion(pending.id) == accepted
        assert services.tasks.get_task(task.id) == task

    def test_accept_twice_fails(self, suggestions, store, pending):
        suggestions.accept_suggestion(pending.id, actor_id=REVIEWER)

        with pytest.raises(InvalidTransitionError) as exc_info:
            suggestions.accept_suggestion(pending.id, actor_id=REVIEWER)

        assert exc_info.value.current["status"] == "accepted"
        assert store.count(Task.collection) == 1

    def test_failed_task_creation_keeps_pending(self, services, suggestions, pending, monkeypatch):
        def refuse(*args, **kwargs):
            raise ValidationError.single("title", "rejected")

        monkeypatch.setattr(services.tasks, "prepare_task", refuse)

        with pytest.raises(ValidationError):
            suggestions.accept_suggestion(pending.id, actor_id=REVIEWER)

        assert suggestions.get_suggestion(pending.id).status == SuggestionStatus.PENDING

    def test_failed_suggestion_write_removes_task(self, services, suggestions, store, recorder, pending, monkeypatch):
        original_put = store.put

        def failing_put(collection, entity_id, document):
            if collection == AiSuggestion.collection and document["status"] == "accepted":
                raise InternalError("Failed to persist collection 'ai_suggestions'")
            return original_put(collection, entity_id, document)

        monkeypatch.setattr(store, "put", failing_put)

        with pytest.raises(InternalError):
            suggestions.accept_suggestion(pending.id, actor_id=REVIEWER)

        assert store.count(Task.collection) == 0
        assert suggestions.get_suggestion(pending.id).status == SuggestionStatus.PENDING
        assert recorder.for_event("task_assigned") == []
        assert services.activity.query(type="task_created") == []

        monkeypatch.setattr(store, "put", original_put)
        task, accepted = suggestions.accept_suggestion(pending.id, actor_id=REVIEWER)

        assert store.count(Task.collection) == 1
        assert accepted.task_id == task.id

    def test_failed_activity_write_restores_pending(self, services, suggestions, store, pending, monkeypatch):
        def failing_append(*args, **kwargs):
            raise InternalError("Failed to append to 'activities'")

        monkeypatch.setattr(services.activity, "append", failing_append)

        with pytest.raises(InternalError):
            suggestions.accept_suggestion(pending.id, actor_id=REVIEWER)

        assert store.count(Task.collection) == 0
        assert suggestions.get_suggestion(pending.id).status == SuggestionStatus.PENDING

    def test_recipient_notified(self, suggestions, recorder, pending):
        suggestions.accept_suggestion(pending.id, actor_id=REVIEWER)

        accepted = recorder.for_event("suggestion_accepted")
        assert accepted[0].recipients == [RECIPIENT]

    def test_missing(self, suggestions):
        with pytest.raises(NotFoundError):
            suggestions.accept_suggestion("sugg-missing", actor_id=REVIEWER)


class TestDismissSuggestion:

    def test_dismiss(self, services, suggestions, store, pending):
        dismissed = suggestions.dismiss_suggestion(pending.id, actor_id=RECIPIENT)

        assert dismissed.status == SuggestionStatus.DISMISSED
        assert dismissed.task_id is None
        assert store.count(Task.collection) == 0
        assert services.activity.query(type="suggestion_dismissed")[0].target_id == pending.id

    def test_dismissed_cannot_be_accepted(self, suggestions, pending):
        suggestions.dismiss_suggestion(pending.id, actor_id=RECIPIENT)
        with pytest.raises(InvalidTransitionError):
            suggestions.accept_suggestion(pending.id, actor_id=REVIEWER)


class TestListSuggestions:

    def test_newest_first_and_filters(self, suggestions, clock):
        older = suggestions.record_suggestions(RECIPIENT, [suggestion_item(title="Older")])[0]
        clock.advance(hours=1)
        newer = suggestions.record_suggestions(RECIPIENT, [suggestion_item(title="Newer")])[0]
        suggestions.record_suggestions("user-other", [suggestion_item()])
        suggestions.dismiss_suggestion(older.id, actor_id=RECIPIENT)

        assert [s.id for s in suggestions.list_suggestions(RECIPIENT)] == [newer.id, older.id]
        assert [s.id for s in suggestions.list_suggestions(RECIPIENT, status="pending")] == [newer.id]
        assert len(suggestions.list_suggestions(RECIPIENT, limit=1)) == 1

    def test_bad_status(self, suggestions):
        with pytest.raises(ValidationError):
            suggestions.list_suggestions(RECIPIENT, status="archived")
