"""
Calendar

School calendar events (meetings, deadlines, reminders) and the upcoming
task deadlines view.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from .activity_log import ActivityLog
from .errors import NotFoundError, ValidationError
from .models import CalendarEvent, CalendarEventType, Task, new_id, utcnow
from .schema import CalendarEventPatch, InsertCalendarEvent, validate_calendar_event_input
from .store import EntityStore

logger = logging.getLogger("calendar_events")

DEFAULT_UPCOMING_DAYS = 7


class CalendarService:

    def __init__(
        self,
        store: EntityStore,
        activity_log: ActivityLog,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._activity = activity_log
        self._clock = clock

    def create_event(self, data: Union[InsertCalendarEvent, Dict[str, Any]], actor_id: str) -> CalendarEvent:
        fields = validate_calendar_event_input(data)
        with self._store.atomic():
            now = self._clock()
            event = CalendarEvent(
                id=new_id(CalendarEvent.id_prefix),
                title=fields["title"],
                start_date=fields["start_date"],
                end_date=fields["end_date"],
                created_by=actor_id,
                type=fields.get("type", CalendarEventType.EVENT),
                all_day=fields.get("all_day", False),
                description=fields.get("description"),
                location=fields.get("location"),
                attendees=fields.get("attendees", []),
                created_at=now,
                updated_at=now,
            )
            self._store.put(CalendarEvent.collection, event.id, event.to_dict())
            self._activity.append(
                type="event_created",
                user_id=actor_id,
                target_id=event.id,
                description=f"Scheduled '{event.title}'",
                metadata={"type": event.type.value, "start_date": event.start_date.isoformat()},
            )
        logger.info(f"Calendar event created: {event.id} '{event.title}'")
        return event

    def get_event(self, event_id: str) -> CalendarEvent:
        data = self._store.get(CalendarEvent.collection, event_id)
        if data is None:
            raise NotFoundError("CalendarEvent", event_id)
        return CalendarEvent.from_dict(data)

    def update_event(
        self,
        event_id: str,
        patch: Union[CalendarEventPatch, Dict[str, Any]],
        actor_id: Optional[str] = None,
    ) -> CalendarEvent:
        """Partial update. The resulting event must still end at or after its start."""
        fields = validate_calendar_event_input(patch, partial=True)
        with self._store.atomic():
            event = self.get_event(event_id)
            changed = [name for name, value in fields.items() if getattr(event, name) != value]
            if not changed:
                return event
            for name in changed:
                setattr(event, name, fields[name])
            if event.end_date < event.start_date:
                raise ValidationError.single("end_date", "must not be before start_date")

            event.updated_at = self._clock()
            self._store.put(CalendarEvent.collection, event.id, event.to_dict())
            self._activity.append(
                type="event_updated",
                user_id=actor_id or event.created_by,
                target_id=event.id,
                description=f"Updated '{event.title}'",
                metadata={"fields": sorted(changed)},
            )
        return event

    def list_events(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[CalendarEvent]:
        """Events overlapping [start, end], ordered by start_date."""
        events = [CalendarEvent.from_dict(d) for d in self._store.query(CalendarEvent.collection)]
        if start is not None:
            events = [e for e in events if e.end_date >= start]
        if end is not None:
            events = [e for e in events if e.start_date <= end]
        events.sort(key=lambda e: e.start_date)
        return events

    def events_for_task_due_dates(
        self,
        now: Optional[datetime] = None,
        days: int = DEFAULT_UPCOMING_DAYS,
    ) -> List[Task]:
        """Open tasks due within the next `days` days, soonest first."""
        if isinstance(days, bool) or not isinstance(days, int) or days < 1:
            raise ValidationError.single("days", "must be a positive integer")
        now = now or self._clock()
        horizon = now + timedelta(days=days)

        tasks = []
        for doc in self._store.query(Task.collection):
            task = Task.from_dict(doc)
            if task.is_terminal or task.due_date is None:
                continue
            if now <= task.due_date <= horizon:
                tasks.append(task)
        tasks.sort(key=lambda t: t.due_date)
        return tasks
