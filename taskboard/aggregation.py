"""
Aggregation Engine - Derived Views

Computes dashboard statistics, team statistics, the progress series, the
task distribution and per-member analytics from point-in-time reads of
the store.

IMPORTANT: This module ONLY reads data. It does not create, update or
delete entities and never appends to the activity log. Views are
recomputed on every call and never persisted.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional

from .config import DUE_SOON_HOURS, RECENT_ACTIVITY_DAYS, RECENT_JOIN_DAYS
from .models import (
    DashboardStats,
    MemberAnalytics,
    ProgressPoint,
    Task,
    TaskDistribution,
    TaskPriority,
    TaskStatus,
    TeamStats,
    User,
    UserRole,
    percentage,
    utcnow,
)
from .schema import validate_progress_period
from .store import EntityStore

logger = logging.getLogger("aggregation")

# Role -> TeamStats attribute
ROLE_COUNTERS: Dict[UserRole, str] = {
    UserRole.ADMINISTRATOR: "administrators",
    UserRole.MANAGEMENT: "management",
    UserRole.EDUCATOR: "educators",
    UserRole.SUPPORT_STAFF: "support_staff",
}


class AggregationEngine:
    """
    Read-only aggregation over tasks and users.

    Each method performs a single scan of the relevant collection, so a
    result reflects one snapshot of the store.
    """

    def __init__(self, store: EntityStore, clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._clock = clock

    def _tasks(self, user_id: Optional[str] = None) -> List[Task]:
        if user_id is None:
            docs = self._store.query(Task.collection)
        else:
            docs = self._store.query(
                Task.collection,
                lambda d: user_id in d.get("assigned_to", []) or d.get("created_by") == user_id,
            )
        return [Task.from_dict(d) for d in docs]

    # -------------------------------------------------------------------------
    # Dashboard
    # -------------------------------------------------------------------------

    def compute_dashboard_stats(
        self,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DashboardStats:
        """
        Task counters for the dashboard.

        With user_id, only tasks the user is assigned to or created count.
        due_soon counts open tasks due within the next DUE_SOON_HOURS.
        """
        now = now or self._clock()
        horizon = now + timedelta(hours=DUE_SOON_HOURS)

        stats = DashboardStats(total_tasks=0, in_progress=0, completed=0, due_soon=0)
        for task in self._tasks(user_id):
            stats.total_tasks += 1
            if task.status == TaskStatus.IN_PROGRESS:
                stats.in_progress += 1
            elif task.status == TaskStatus.COMPLETED:
                stats.completed += 1
            if not task.is_terminal and task.due_date is not None and now <= task.due_date <= horizon:
                stats.due_soon += 1
        return stats

    def compute_team_stats(self, now: Optional[datetime] = None) -> TeamStats:
        """Member counts by role and activity. Inactive users count in total_members."""
        now = now or self._clock()
        joined_after = now - timedelta(days=RECENT_JOIN_DAYS)

        stats = TeamStats(
            total_members=0,
            active_members=0,
            administrators=0,
            management=0,
            educators=0,
            support_staff=0,
            recent_joins=0,
        )
        for doc in self._store.query(User.collection):
            user = User.from_dict(doc)
            stats.total_members += 1
            if user.is_active:
                stats.active_members += 1
            counter = ROLE_COUNTERS.get(user.role)
            if counter:
                setattr(stats, counter, getattr(stats, counter) + 1)
            if user.created_at is not None and joined_after <= user.created_at <= now:
                stats.recent_joins += 1
        return stats

    def compute_progress_series(self, period_days: int, now: Optional[datetime] = None) -> List[ProgressPoint]:
        """
        One point per UTC calendar day for the trailing window, oldest first.

        A task lands on the day of its updated_at, in the bucket of its
        current status. Cancelled tasks are excluded.
        """
        period_days = validate_progress_period(period_days)
        today = (now or self._clock()).date()
        first_day = today - timedelta(days=period_days - 1)

        points: Dict[date, ProgressPoint] = {}
        for offset in range(period_days):
            day = first_day + timedelta(days=offset)
            points[day] = ProgressPoint(date=day.isoformat())

        for task in self._tasks():
            if task.status == TaskStatus.CANCELLED or task.updated_at is None:
                continue
            point = points.get(task.updated_at.date())
            if point is None:
                continue
            if task.status == TaskStatus.COMPLETED:
                point.completed += 1
            elif task.status == TaskStatus.IN_PROGRESS:
                point.in_progress += 1
            else:
                point.todo += 1

        return list(points.values())

    def compute_task_distribution(self) -> TaskDistribution:
        """Task counts by priority and status, plus the completion rate."""
        by_priority = {p.value: 0 for p in TaskPriority}
        by_status = {s.value: 0 for s in TaskStatus}
        tasks = self._tasks()
        for task in tasks:
            by_priority[task.priority.value] += 1
            by_status[task.status.value] += 1
        return TaskDistribution(
            total_tasks=len(tasks),
            by_priority=by_priority,
            by_status=by_status,
            completion_rate=percentage(by_status[TaskStatus.COMPLETED.value], len(tasks)),
        )

    def compute_member_analytics(self, now: Optional[datetime] = None) -> List[MemberAnalytics]:
        """
        Per-member workload for management, ordered by name.

        Administrators are excluded. A task counts for every member it is
        assigned to. overdue_tasks are open tasks whose due_date has passed;
        recent_activity counts tasks updated within RECENT_ACTIVITY_DAYS.
        """
        now = now or self._clock()
        active_since = now - timedelta(days=RECENT_ACTIVITY_DAYS)
        tasks = self._tasks()

        analytics: List[MemberAnalytics] = []
        for doc in self._store.query(User.collection):
            user = User.from_dict(doc)
            if user.role == UserRole.ADMINISTRATOR:
                continue
            member = MemberAnalytics(
                user_id=user.id,
                user_name=user.full_name,
                total_tasks=0,
                completed_tasks=0,
                in_progress_tasks=0,
                overdue_tasks=0,
                recent_activity=0,
            )
            for task in tasks:
                if user.id not in task.assigned_to:
                    continue
                member.total_tasks += 1
                if task.status == TaskStatus.COMPLETED:
                    member.completed_tasks += 1
                elif task.status == TaskStatus.IN_PROGRESS:
                    member.in_progress_tasks += 1
                if not task.is_terminal and task.due_date is not None and task.due_date < now:
                    member.overdue_tasks += 1
                if task.updated_at is not None and task.updated_at > active_since:
                    member.recent_activity += 1
            analytics.append(member)

        analytics.sort(key=lambda m: (m.user_name.lower(), m.user_id))
        return analytics


logger.info("Aggregation Engine module loaded (READ-ONLY)")
