"""
Task Board Domain Model

Entity types for the task board core: users, tasks, comments, AI
suggestions, activities, calendar events and system settings, plus the
derived value objects returned by the aggregation engine.

Entities are plain dataclasses. They carry no behaviour beyond
serialization; lifecycle rules live in the managers and input validation
lives in schema.py.

Serialized form (store documents, API payloads):
- enums as their string values
- datetimes as ISO-8601 strings (naive UTC)
- lists as JSON arrays
"""

import uuid
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, ClassVar, Tuple, Type

from .config import DEFAULT_TASK_CATEGORY, DEFAULT_SUGGESTION_CATEGORY


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------
class UserRole(str, Enum):
    """Staff roles in the institution."""
    ADMINISTRATOR = "Administrator"
    MANAGEMENT = "Management"
    EDUCATOR = "Educator"
    SUPPORT_STAFF = "Support Staff"


class TaskStatus(str, Enum):
    """Task lifecycle states. COMPLETED and CANCELLED are terminal."""
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class SuggestionStatus(str, Enum):
    """AI suggestion states. ACCEPTED and DISMISSED are terminal."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DISMISSED = "dismissed"


class CalendarEventType(str, Enum):
    MEETING = "meeting"
    DEADLINE = "deadline"
    EVENT = "event"
    REMINDER = "reminder"


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})
TERMINAL_SUGGESTION_STATUSES = frozenset({SuggestionStatus.ACCEPTED, SuggestionStatus.DISMISSED})


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id(prefix: str) -> str:
    """Generate an opaque entity id, e.g. 'task-3f2a9c1b7d4e'."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime) to naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _to_primitive(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_to_primitive(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_primitive(v) for k, v in value.items()}
    return value


# -----------------------------------------------------------------------------
# Record Base
# -----------------------------------------------------------------------------
class Record:
    """
    Serialization shared by all persisted entities.

    Subclasses declare which fields hold datetimes and which hold enums so
    from_dict() can rebuild typed values from the stored form.
    """

    collection: ClassVar[str] = ""
    id_prefix: ClassVar[str] = ""
    datetime_fields: ClassVar[Tuple[str, ...]] = ("created_at", "updated_at")
    enum_fields: ClassVar[Dict[str, Type[Enum]]] = {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {k: _to_primitive(v) for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Create the entity from its serialized form. Unknown keys are ignored."""
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            value = data[f.name]
            if f.name in cls.datetime_fields:
                value = parse_datetime(value)
            elif f.name in cls.enum_fields and value is not None:
                value = cls.enum_fields[f.name](value)
            elif isinstance(value, tuple):
                value = list(value)
            kwargs[f.name] = value
        return cls(**kwargs)


# -----------------------------------------------------------------------------
# Entities
# -----------------------------------------------------------------------------
@dataclass
class User(Record):
    """
    A staff member.

    Users are never hard-deleted. Deactivation sets is_active=False and the
    record stays visible to team statistics.
    """
    collection: ClassVar[str] = "users"
    id_prefix: ClassVar[str] = "user"
    enum_fields: ClassVar[Dict[str, Type[Enum]]] = {"role": UserRole}

    id: str
    email: str
    first_name: str
    last_name: str
    role: UserRole = UserRole.EDUCATOR
    department: Optional[str] = None
    is_active: bool = True
    profile_image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class Task(Record):
    """
    A unit of assigned work.

    Owned exclusively by the task lifecycle manager. Invariants:
    - completed => progress == 100
    - cancelled freezes progress at its value before cancellation
    - assigned_to is never empty
    """
    collection: ClassVar[str] = "tasks"
    id_prefix: ClassVar[str] = "task"
    datetime_fields: ClassVar[Tuple[str, ...]] = ("due_date", "created_at", "updated_at")
    enum_fields: ClassVar[Dict[str, Type[Enum]]] = {
        "status": TaskStatus,
        "priority": TaskPriority,
    }

    id: str
    title: str
    created_by: str
    assigned_to: List[str]
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[datetime] = None
    progress: int = 0
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    tags: List[str] = field(default_factory=list)
    attachments: List[str] = field(default_factory=list)
    category: str = DEFAULT_TASK_CATEGORY
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES


@dataclass
class TaskComment(Record):
    collection: ClassVar[str] = "task_comments"
    id_prefix: ClassVar[str] = "comment"

    id: str
    task_id: str
    user_id: str
    content: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class AiSuggestion(Record):
    """
    A work suggestion produced by the external recommendation generator.

    confidence and category are opaque inputs: they are stored and shown,
    never recomputed here.
    """
    collection: ClassVar[str] = "ai_suggestions"
    id_prefix: ClassVar[str] = "sugg"
    datetime_fields: ClassVar[Tuple[str, ...]] = ("created_at", "updated_at", "resolved_at")
    enum_fields: ClassVar[Dict[str, Type[Enum]]] = {
        "status": SuggestionStatus,
        "priority": TaskPriority,
    }

    id: str
    user_id: str
    title: str
    description: str
    confidence: float
    reasoning: str = ""
    category: str = DEFAULT_SUGGESTION_CATEGORY
    priority: TaskPriority = TaskPriority.MEDIUM
    status: SuggestionStatus = SuggestionStatus.PENDING
    task_id: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SUGGESTION_STATUSES


@dataclass
class Activity(Record):
    """Append-only history entry. Never mutated or deleted."""
    collection: ClassVar[str] = "activities"
    id_prefix: ClassVar[str] = "act"
    datetime_fields: ClassVar[Tuple[str, ...]] = ("created_at",)

    id: str
    type: str
    user_id: str
    description: str
    target_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None


@dataclass
class CalendarEvent(Record):
    collection: ClassVar[str] = "calendar_events"
    id_prefix: ClassVar[str] = "event"
    datetime_fields: ClassVar[Tuple[str, ...]] = ("start_date", "end_date", "created_at", "updated_at")
    enum_fields: ClassVar[Dict[str, Type[Enum]]] = {"type": CalendarEventType}

    id: str
    title: str
    start_date: datetime
    end_date: datetime
    created_by: str
    type: CalendarEventType = CalendarEventType.EVENT
    all_day: bool = False
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class SystemSetting(Record):
    """Flat key-value operational toggle. key is unique."""
    collection: ClassVar[str] = "system_settings"
    id_prefix: ClassVar[str] = "setting"
    datetime_fields: ClassVar[Tuple[str, ...]] = ("updated_at",)

    id: str
    key: str
    value: Any
    category: str
    updated_by: str
    updated_at: Optional[datetime] = None


@dataclass
class Department(Record):
    """School department. name is unique (case-insensitive)."""
    collection: ClassVar[str] = "departments"
    id_prefix: ClassVar[str] = "dept"

    id: str
    name: str
    description: Optional[str] = None
    head_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# -----------------------------------------------------------------------------
# Derived Views (never persisted)
# -----------------------------------------------------------------------------
def percentage(count: int, total: int) -> int:
    """round(count / total * 100), defined as 0 when total is 0."""
    if total == 0:
        return 0
    return round(count / total * 100)


@dataclass
class DashboardStats:
    total_tasks: int
    in_progress: int
    completed: int
    due_soon: int

    def percentages(self) -> Dict[str, int]:
        return {
            "in_progress": percentage(self.in_progress, self.total_tasks),
            "completed": percentage(self.completed, self.total_tasks),
            "due_soon": percentage(self.due_soon, self.total_tasks),
        }

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["percentages"] = self.percentages()
        return result


@dataclass
class TeamStats:
    total_members: int
    active_members: int
    administrators: int
    management: int
    educators: int
    support_staff: int
    recent_joins: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProgressPoint:
    """One calendar day of the progress series."""
    date: str  # YYYY-MM-DD
    completed: int = 0
    in_progress: int = 0
    todo: int = 0

    @property
    def total(self) -> int:
        return self.completed + self.in_progress + self.todo

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["total"] = self.total
        return result


@dataclass
class TaskDistribution:
    total_tasks: int
    by_priority: Dict[str, int]
    by_status: Dict[str, int]
    completion_rate: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MemberAnalytics:
    """Workload of one non-administrator staff member."""
    user_id: str
    user_name: str
    total_tasks: int
    completed_tasks: int
    in_progress_tasks: int
    overdue_tasks: int
    recent_activity: int

    @property
    def completion_rate(self) -> int:
        return percentage(self.completed_tasks, self.total_tasks)

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["completion_rate"] = self.completion_rate
        return result
