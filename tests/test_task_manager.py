"""
Unit Tests for the Task Lifecycle Manager

Test coverage for:
- Task creation defaults and validation
- Valid and invalid status transitions
- Progress invariants (completed => 100, cancelled freezes progress)
- Terminal tasks and no-op patches
- Optimistic concurrency (expected updated_at)
- Listing filters and ordering
- Comments
- Notifications and activity records
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from taskboard.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from taskboard.models import Task, TaskPriority, TaskStatus
from taskboard.task_manager import VALID_TRANSITIONS, can_transition
from tests.conftest import task_payload

CREATOR = "user-head"
EDUCATOR = "user-educator"


@pytest.fixture
def tasks(services):
    return services.tasks


def start_task(tasks, **overrides):
    task = tasks.create_task(task_payload(**overrides), actor_id=CREATOR)
    return tasks.update_task(task.id, {"status": "in_progress"}, actor_id=EDUCATOR)


# -----------------------------------------------------------------------------
# Transition Table
# -----------------------------------------------------------------------------
class TestTransitionTable:

    def test_terminal_states_have_no_targets(self):
        assert VALID_TRANSITIONS[TaskStatus.COMPLETED] == []
        assert VALID_TRANSITIONS[TaskStatus.CANCELLED] == []

    def test_reopen_allowed(self):
        allowed, _ = can_transition(TaskStatus.IN_PROGRESS, TaskStatus.TODO)
        assert allowed is True

    def test_todo_cannot_complete_directly(self):
        allowed, message = can_transition(TaskStatus.TODO, TaskStatus.COMPLETED)
        assert allowed is False
        assert "in_progress" in message


# -----------------------------------------------------------------------------
# Creation
# -----------------------------------------------------------------------------
class TestCreateTask:

    def test_defaults(self, tasks, clock):
        task = tasks.create_task(task_payload(), actor_id=CREATOR)

        assert task.status == TaskStatus.TODO
        assert task.priority == TaskPriority.MEDIUM
        assert task.progress == 0
        assert task.category == "General"
        assert task.created_by == CREATOR
        assert task.created_at == clock.now
        assert task.updated_at == clock.now
        assert tasks.get_task(task.id) == task

    def test_progress_always_starts_at_zero(self, tasks):
        task = tasks.create_task(task_payload(progress=60), actor_id=CREATOR)
        assert task.progress == 0

    def test_may_start_in_progress(self, tasks):
        task = tasks.create_task(task_payload(status="in_progress"), actor_id=CREATOR)
        assert task.status == TaskStatus.IN_PROGRESS

    @pytest.mark.parametrize("status", ["completed", "cancelled"])
    def test_cannot_start_terminal(self, tasks, store, status):
        with pytest.raises(ValidationError) as exc_info:
            tasks.create_task(task_payload(status=status), actor_id=CREATOR)
        assert exc_info.value.fields == ["status"]
        assert store.count(Task.collection) == 0

    def test_reports_every_invalid_field(self, tasks, store):
        with pytest.raises(ValidationError) as exc_info:
            tasks.create_task({"priority": "critical", "due_date": "next week"}, actor_id=CREATOR)

        fields = set(exc_info.value.fields)
        assert {"title", "assigned_to", "priority", "due_date"} <= fields
        assert store.count(Task.collection) == 0

    def test_empty_assignees_rejected(self, tasks):
        with pytest.raises(ValidationError) as exc_info:
            tasks.create_task(task_payload(assigned_to=[]), actor_id=CREATOR)
        assert "assigned_to" in exc_info.value.fields

    def test_title_length_limit(self, tasks):
        with pytest.raises(ValidationError):
            tasks.create_task(task_payload(title="x" * 256), actor_id=CREATOR)
        task = tasks.create_task(task_payload(title="x" * 255), actor_id=CREATOR)
        assert len(task.title) == 255

    def test_records_activity(self, services, tasks):
        task = tasks.create_task(task_payload(), actor_id=CREATOR)

        entries = services.activity.query(target_id=task.id)
        assert [a.type for a in entries] == ["task_created"]
        assert entries[0].user_id == CREATOR

    def test_notifies_assignees_except_creator(self, tasks, recorder):
        tasks.create_task(task_payload(assigned_to=[EDUCATOR, CREATOR]), actor_id=CREATOR)

        assigned = recorder.for_event("task_assigned")
        assert len(assigned) == 1
        assert assigned[0].recipients == [EDUCATOR]


# -----------------------------------------------------------------------------
# Status Transitions and Progress
# -----------------------------------------------------------------------------
class TestUpdateTask:

    def test_grade_finals_completion_forces_progress(self, services, tasks):
        task = tasks.create_task(task_payload(title="Grade finals"), actor_id=CREATOR)
        task = tasks.update_task(task.id, {"status": "in_progress", "progress": 40}, actor_id=EDUCATOR)
        assert task.progress == 40

        task = tasks.update_task(task.id, {"status": "completed"}, actor_id=EDUCATOR)

        assert task.status == TaskStatus.COMPLETED
        assert task.progress == 100
        latest = services.activity.query(type="task_updated", target_id=task.id, limit=1)[0]
        assert latest.metadata["changes"]["status"] == {"from": "in_progress", "to": "completed"}
        assert latest.metadata["changes"]["progress"] == {"from": 40, "to": 100}

    def test_completion_ignores_patched_progress(self, tasks):
        task = start_task(tasks)
        task = tasks.update_task(task.id, {"status": "completed", "progress": 30}, actor_id=EDUCATOR)
        assert task.progress == 100

    def test_cancel_keeps_previous_progress(self, tasks):
        task = start_task(tasks)
        task = tasks.update_task(task.id, {"progress": 70}, actor_id=EDUCATOR)

        task = tasks.update_task(task.id, {"status": "cancelled", "progress": 10}, actor_id=CREATOR)

        assert task.status == TaskStatus.CANCELLED
        assert task.progress == 70

    def test_invalid_transition_leaves_task_unchanged(self, tasks):
        task = tasks.create_task(task_payload(), actor_id=CREATOR)

        with pytest.raises(InvalidTransitionError) as exc_info:
            tasks.update_task(task.id, {"status": "completed"}, actor_id=EDUCATOR)

        assert exc_info.value.current["status"] == "todo"
        assert tasks.get_task(task.id) == task

    def test_reopen_in_progress_task(self, tasks):
        task = start_task(tasks)
        task = tasks.update_task(task.id, {"status": "todo"}, actor_id=EDUCATOR)
        assert task.status == TaskStatus.TODO

    def test_terminal_task_is_frozen(self, tasks):
        task = start_task(tasks)
        task = tasks.update_task(task.id, {"status": "completed"}, actor_id=EDUCATOR)

        with pytest.raises(InvalidTransitionError) as exc_info:
            tasks.update_task(task.id, {"title": "Renamed"}, actor_id=CREATOR)
        assert "title" in exc_info.value.message

        with pytest.raises(InvalidTransitionError):
            tasks.update_task(task.id, {"status": "in_progress"}, actor_id=CREATOR)

        assert tasks.get_task(task.id).title == task.title

    def test_terminal_task_accepts_identical_patch(self, tasks):
        task = start_task(tasks)
        task = tasks.update_task(task.id, {"status": "completed"}, actor_id=EDUCATOR)

        same = tasks.update_task(task.id, {"status": "completed", "title": task.title}, actor_id=CREATOR)
        assert same == task

    def test_noop_patch_changes_nothing(self, services, tasks, clock):
        task = tasks.create_task(task_payload(priority="high"), actor_id=CREATOR)
        clock.advance(minutes=5)

        same = tasks.update_task(task.id, {"priority": "high", "title": task.title}, actor_id=CREATOR)

        assert same.updated_at == task.updated_at
        assert services.activity.query(type="task_updated") == []

    def test_updated_at_strictly_increases_with_frozen_clock(self, tasks):
        task = tasks.create_task(task_payload(), actor_id=CREATOR)
        task = tasks.update_task(task.id, {"status": "in_progress"}, actor_id=EDUCATOR)
        stamps = [task.created_at, task.updated_at]
        for progress in (10, 20, 30):
            task = tasks.update_task(task.id, {"progress": progress}, actor_id=EDUCATOR)
            stamps.append(task.updated_at)

        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)

    def test_created_fields_not_patchable(self, tasks):
        task = tasks.create_task(task_payload(), actor_id=CREATOR)
        with pytest.raises(ValidationError) as exc_info:
            tasks.update_task(task.id, {"created_by": EDUCATOR, "id": "other"}, actor_id=CREATOR)
        assert set(exc_info.value.fields) == {"created_by", "id"}

    def test_progress_out_of_range(self, tasks):
        task = start_task(tasks)
        with pytest.raises(ValidationError):
            tasks.update_task(task.id, {"progress": 101}, actor_id=EDUCATOR)

    def test_missing_task(self, tasks):
        with pytest.raises(NotFoundError):
            tasks.update_task("task-missing", {"title": "x"}, actor_id=CREATOR)

    def test_round_trip_through_store(self, tasks, store):
        task = tasks.create_task(
            task_payload(
                due_date="2025-03-12T15:00:00Z",
                tags=["exams", "grade-10"],
                estimated_hours=2.5,
                metadata={"room": "B12"},
            ),
            actor_id=CREATOR,
        )
        assert Task.from_dict(store.get(Task.collection, task.id)) == task
        assert tasks.get_task(task.id).due_date.isoformat() == "2025-03-12T15:00:00"


# -----------------------------------------------------------------------------
# Optimistic Concurrency
# -----------------------------------------------------------------------------
class TestOptimisticConcurrency:

    def test_matching_expected_updated_at(self, tasks):
        task = start_task(tasks)
        updated = tasks.update_task(
            task.id, {"progress": 50}, actor_id=EDUCATOR,
            expected_updated_at=task.updated_at.isoformat(),
        )
        assert updated.progress == 50

    def test_stale_update_conflicts(self, tasks):
        task = start_task(tasks)
        seen = task.updated_at

        tasks.update_task(task.id, {"progress": 50}, actor_id=EDUCATOR, expected_updated_at=seen)
        with pytest.raises(ConflictError) as exc_info:
            tasks.update_task(task.id, {"title": "Other edit"}, actor_id=CREATOR, expected_updated_at=seen)

        assert exc_info.value.current["progress"] == 50
        assert tasks.get_task(task.id).title != "Other edit"

    def test_concurrent_stale_updates_only_one_wins(self, tasks):
        task = start_task(tasks)
        seen = task.updated_at

        def attempt(progress):
            try:
                tasks.update_task(task.id, {"progress": progress}, actor_id=EDUCATOR, expected_updated_at=seen)
                return "ok"
            except ConflictError:
                return "conflict"

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(attempt, [25, 75]))

        assert sorted(results) == ["conflict", "ok"]
        assert tasks.get_task(task.id).progress in (25, 75)

    def test_bad_expected_updated_at(self, tasks):
        task = start_task(tasks)
        with pytest.raises(ValidationError) as exc_info:
            tasks.update_task(task.id, {"progress": 5}, actor_id=EDUCATOR, expected_updated_at="yesterday")
        assert exc_info.value.fields == ["expected_updated_at"]


# -----------------------------------------------------------------------------
# Listing
# -----------------------------------------------------------------------------
class TestListTasks:

    def test_most_recently_updated_first(self, tasks, clock):
        first = tasks.create_task(task_payload(title="First"), actor_id=CREATOR)
        clock.advance(minutes=1)
        second = tasks.create_task(task_payload(title="Second"), actor_id=CREATOR)
        clock.advance(minutes=1)
        tasks.update_task(first.id, {"status": "in_progress"}, actor_id=EDUCATOR)

        assert [t.title for t in tasks.list_tasks()] == ["First", "Second"]
        assert second.id in [t.id for t in tasks.list_tasks()]

    def test_filters(self, tasks):
        mine = tasks.create_task(task_payload(assigned_to=["user-a"]), actor_id="user-b")
        theirs = tasks.create_task(task_payload(assigned_to=["user-b"]), actor_id="user-a")
        done = start_task(tasks)
        tasks.update_task(done.id, {"status": "completed"}, actor_id=EDUCATOR)

        assert [t.id for t in tasks.list_tasks("assigned", user_id="user-a")] == [mine.id]
        assert [t.id for t in tasks.list_tasks("created", user_id="user-a")] == [theirs.id]
        assert [t.id for t in tasks.list_tasks("completed")] == [done.id]
        assert len(tasks.list_tasks("all")) == 3
        assert [t.id for t in tasks.list_tasks(status="completed")] == [done.id]

    def test_limit(self, tasks):
        for i in range(4):
            tasks.create_task(task_payload(title=f"Task {i}"), actor_id=CREATOR)
        assert len(tasks.list_tasks(limit=2)) == 2

    def test_unknown_filter(self, tasks):
        with pytest.raises(ValidationError) as exc_info:
            tasks.list_tasks("overdue")
        assert exc_info.value.fields == ["filter"]

    def test_assigned_requires_user(self, tasks):
        with pytest.raises(ValidationError):
            tasks.list_tasks("assigned")


# -----------------------------------------------------------------------------
# Comments
# -----------------------------------------------------------------------------
class TestComments:

    def test_add_and_list_newest_first(self, tasks, clock):
        task = tasks.create_task(task_payload(), actor_id=CREATOR)
        tasks.add_comment(task.id, "Slides are uploaded", user_id=EDUCATOR)
        clock.advance(minutes=2)
        tasks.add_comment(task.id, "Thanks!", user_id=CREATOR)

        assert [c.content for c in tasks.list_comments(task.id)] == ["Thanks!", "Slides are uploaded"]

    def test_comment_on_missing_task(self, tasks):
        with pytest.raises(NotFoundError):
            tasks.add_comment("task-missing", "Hello", user_id=EDUCATOR)

    def test_blank_comment_rejected(self, tasks):
        task = tasks.create_task(task_payload(), actor_id=CREATOR)
        with pytest.raises(ValidationError):
            tasks.add_comment(task.id, "   ", user_id=EDUCATOR)

    def test_only_author_may_edit(self, tasks, clock):
        task = tasks.create_task(task_payload(), actor_id=CREATOR)
        comment = tasks.add_comment(task.id, "Draft", user_id=EDUCATOR)

        with pytest.raises(PermissionDeniedError):
            tasks.edit_comment(comment.id, "Hijacked", user_id=CREATOR)

        clock.advance(minutes=1)
        edited = tasks.edit_comment(comment.id, "Final", user_id=EDUCATOR)
        assert edited.content == "Final"
        assert edited.updated_at > comment.updated_at

    def test_comment_notifies_everyone_but_author(self, tasks, recorder):
        task = tasks.create_task(task_payload(assigned_to=[EDUCATOR, "user-counsellor"]), actor_id=CREATOR)
        tasks.add_comment(task.id, "Room changed to B12", user_id=EDUCATOR)

        comment_notice = recorder.for_event("task_comment")[0]
        assert comment_notice.recipients == ["user-counsellor", CREATOR]


# -----------------------------------------------------------------------------
# Notifications
# -----------------------------------------------------------------------------
class TestTaskNotifications:

    def test_status_change_notifies_creator(self, tasks, recorder):
        task = tasks.create_task(task_payload(), actor_id=CREATOR)
        tasks.update_task(task.id, {"status": "in_progress"}, actor_id=EDUCATOR)

        changed = recorder.for_event("task_status_changed")
        assert len(changed) == 1
        assert changed[0].recipients == [CREATOR]
        assert changed[0].metadata == {"from": "todo", "to": "in_progress"}

    def test_new_assignee_notified(self, tasks, recorder):
        task = tasks.create_task(task_payload(), actor_id=CREATOR)
        tasks.update_task(task.id, {"assigned_to": [EDUCATOR, "user-librarian"]}, actor_id=CREATOR)

        assigned = recorder.for_event("task_assigned")
        assert assigned[-1].recipients == ["user-librarian"]

    def test_failing_channel_does_not_fail_mutation(self, services, tasks, notifier):
        def broken(notification):
            raise RuntimeError("SMTP down")

        notifier._channels = {"broken": broken}
        task = tasks.create_task(task_payload(), actor_id=CREATOR)
        task = tasks.update_task(task.id, {"status": "in_progress"}, actor_id=EDUCATOR)

        assert tasks.get_task(task.id).status == TaskStatus.IN_PROGRESS
        assert services.activity.query(type="task_updated")
