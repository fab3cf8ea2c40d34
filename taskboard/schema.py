"""
Task Board Input Schema

Pydantic models for every entity accepted by the core. The same models are
the request bodies of the HTTP API, and the managers validate plain dicts
against them before touching the store, so a rejected payload can never be
partially applied.

Each validate_* helper returns only the keys present in the input (enums
coerced, datetimes parsed to naive UTC, id lists de-duplicated) or raises
ValidationError carrying one issue per offending field. Managers apply
defaults; patches therefore keep "absent" and "set to None" distinct.
"""

import json
from datetime import datetime
from typing import Annotated, Any, Dict, Iterable, List, Optional, Type, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StrictBool,
    ValidationInfo,
    field_validator,
)
from pydantic import ValidationError as PydanticValidationError

from .config import (
    PROGRESS_PERIODS,
    SETTING_CATEGORY_MAX_LENGTH,
    SETTING_KEY_MAX_LENGTH,
    TITLE_MAX_LENGTH,
)
from .errors import ValidationError
from .models import (
    CalendarEventType,
    SuggestionStatus,
    TaskPriority,
    TaskStatus,
    UserRole,
    parse_datetime,
)

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
LABEL_MAX_LENGTH = 100

# Request locations FastAPI prepends to error locs
REQUEST_LOCATIONS = ("body", "query", "path", "header")


# -----------------------------------------------------------------------------
# Field Types
# -----------------------------------------------------------------------------
def _not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


def _as_number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("must be a number")
    return float(value)


def _whole_number(value: Any) -> Any:
    if isinstance(value, (bool, str)):
        raise ValueError("must be a number")
    return value


def _as_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if value == "" or not isinstance(value, (str, datetime)):
        raise ValueError("must be an ISO-8601 datetime")
    try:
        return parse_datetime(value)
    except ValueError:
        raise ValueError("must be an ISO-8601 datetime")


def _dedupe(items: List[str]) -> List[str]:
    unique: List[str] = []
    for item in items:
        if item not in unique:
            unique.append(item)
    return unique


def _lower_email(value: str) -> str:
    return value.strip().lower()


NonBlank = Annotated[str, AfterValidator(_not_blank)]
Title = Annotated[NonBlank, Field(max_length=TITLE_MAX_LENGTH)]
Label = Annotated[NonBlank, Field(max_length=LABEL_MAX_LENGTH)]
Email = Annotated[str, Field(max_length=TITLE_MAX_LENGTH, pattern=EMAIL_PATTERN), AfterValidator(_lower_email)]
Timestamp = Annotated[datetime, BeforeValidator(_as_timestamp)]
Hours = Annotated[float, BeforeValidator(_as_number), Field(ge=0, allow_inf_nan=False)]
Confidence = Annotated[float, BeforeValidator(_as_number), Field(ge=0.0, le=1.0, allow_inf_nan=False)]
Progress = Annotated[int, BeforeValidator(_whole_number), Field(ge=0, le=100)]
IdList = Annotated[List[NonBlank], AfterValidator(_dedupe)]
Assignees = Annotated[IdList, Field(min_length=1)]


class BaseSchema(BaseModel):
    """Base for every input model: unknown fields are rejected."""
    model_config = ConfigDict(extra="forbid")


# -----------------------------------------------------------------------------
# Tasks
# -----------------------------------------------------------------------------
class InsertTask(BaseSchema):
    """New task. progress is accepted but a new task always starts at 0."""
    title: Title
    assigned_to: Assignees
    description: Optional[str] = None
    status: TaskStatus = None
    priority: TaskPriority = None
    due_date: Optional[Timestamp] = None
    progress: Progress = None
    estimated_hours: Optional[Hours] = None
    actual_hours: Optional[Hours] = None
    tags: IdList = None
    attachments: List[NonBlank] = None
    category: Label = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("status")
    @classmethod
    def new_task_starts_open(cls, value: TaskStatus) -> TaskStatus:
        if value not in (TaskStatus.TODO, TaskStatus.IN_PROGRESS):
            raise ValueError("a new task must start as todo or in_progress")
        return value


class TaskPatch(BaseSchema):
    """Partial task update. Identity and timestamps are not patchable."""
    title: Title = None
    assigned_to: Assignees = None
    description: Optional[str] = None
    status: TaskStatus = None
    priority: TaskPriority = None
    due_date: Optional[Timestamp] = None
    progress: Progress = None
    estimated_hours: Optional[Hours] = None
    actual_hours: Optional[Hours] = None
    tags: IdList = None
    attachments: List[NonBlank] = None
    category: Label = None
    metadata: Optional[Dict[str, Any]] = None


class InsertComment(BaseSchema):
    content: NonBlank


# -----------------------------------------------------------------------------
# Users
# -----------------------------------------------------------------------------
class InsertUser(BaseSchema):
    email: Email
    first_name: Label
    last_name: Label
    role: UserRole = None
    department: Optional[Annotated[str, Field(max_length=LABEL_MAX_LENGTH)]] = None
    is_active: StrictBool = None
    profile_image_url: Optional[str] = None


class UserPatch(BaseSchema):
    email: Email = None
    first_name: Label = None
    last_name: Label = None
    role: UserRole = None
    department: Optional[Annotated[str, Field(max_length=LABEL_MAX_LENGTH)]] = None
    is_active: StrictBool = None
    profile_image_url: Optional[str] = None


class InsertDepartment(BaseSchema):
    name: Label
    description: Optional[str] = None
    head_id: Optional[str] = None


class DepartmentPatch(BaseSchema):
    name: Label = None
    description: Optional[str] = None
    head_id: Optional[str] = None


# -----------------------------------------------------------------------------
# AI Suggestions
# -----------------------------------------------------------------------------
class InsertSuggestion(BaseSchema):
    """One suggestion as emitted by the recommendation generator."""
    title: Title
    description: NonBlank
    confidence: Confidence
    reasoning: str = None
    category: Label = None
    priority: TaskPriority = None


class _SuggestionStatusQuery(BaseSchema):
    status: SuggestionStatus


# -----------------------------------------------------------------------------
# Activities
# -----------------------------------------------------------------------------
class InsertActivity(BaseSchema):
    type: Label
    user_id: NonBlank
    description: str
    target_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


# -----------------------------------------------------------------------------
# Calendar Events
# -----------------------------------------------------------------------------
def _check_end_date(value: Optional[datetime], info: ValidationInfo) -> Optional[datetime]:
    start = info.data.get("start_date")
    if value is not None and start is not None and value < start:
        raise ValueError("must not be before start_date")
    return value


class InsertCalendarEvent(BaseSchema):
    title: Title
    start_date: Timestamp
    end_date: Timestamp
    description: Optional[str] = None
    all_day: StrictBool = None
    type: CalendarEventType = None
    location: Optional[Annotated[str, Field(max_length=TITLE_MAX_LENGTH)]] = None
    attendees: IdList = None

    @field_validator("end_date")
    @classmethod
    def end_not_before_start(cls, value: Optional[datetime], info: ValidationInfo) -> Optional[datetime]:
        return _check_end_date(value, info)


class CalendarEventPatch(BaseSchema):
    title: Title = None
    start_date: Timestamp = None
    end_date: Timestamp = None
    description: Optional[str] = None
    all_day: StrictBool = None
    type: CalendarEventType = None
    location: Optional[Annotated[str, Field(max_length=TITLE_MAX_LENGTH)]] = None
    attendees: IdList = None

    @field_validator("end_date")
    @classmethod
    def end_not_before_start(cls, value: Optional[datetime], info: ValidationInfo) -> Optional[datetime]:
        return _check_end_date(value, info)


# -----------------------------------------------------------------------------
# System Settings
# -----------------------------------------------------------------------------
class InsertSetting(BaseSchema):
    key: Annotated[NonBlank, Field(max_length=SETTING_KEY_MAX_LENGTH)]
    value: Any
    category: Annotated[NonBlank, Field(max_length=SETTING_CATEGORY_MAX_LENGTH)]

    @field_validator("value")
    @classmethod
    def value_is_serializable(cls, value: Any) -> Any:
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            raise ValueError("must be JSON-serializable")
        return value


# -----------------------------------------------------------------------------
# Error Mapping
# -----------------------------------------------------------------------------
def _field_name(loc: Iterable[Union[str, int]]) -> str:
    parts = [p for p in loc if p not in REQUEST_LOCATIONS]
    # An item of a list field is reported against the field itself
    while parts and isinstance(parts[-1], int):
        parts.pop()
    name = ""
    for part in parts:
        if isinstance(part, int):
            name += f"[{part}]"
        else:
            name += f".{part}" if name else str(part)
    return name or "_root"


def _issue_message(field: str, error: Dict[str, Any]) -> str:
    kind = error.get("type")
    if kind == "missing":
        return "is required"
    if kind == "extra_forbidden":
        return "unknown field"
    if kind in ("model_type", "model_attributes_type", "dict_type") and field == "_root":
        return "expected an object"
    if "input" in error and error["input"] is None:
        return "must not be null"
    if kind == "value_error" and "error" in error.get("ctx", {}):
        return str(error["ctx"]["error"])
    return error.get("msg", "invalid value")


def issues_from_errors(errors: Iterable[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Map pydantic error dicts onto ValidationError issues, one per field."""
    issues: List[Dict[str, str]] = []
    seen = set()
    for error in errors:
        field = _field_name(error.get("loc", ()))
        if field in seen:
            continue
        seen.add(field)
        issues.append({"field": field, "message": _issue_message(field, error)})
    return issues


def _validate(schema: Type[BaseSchema], data: Any) -> Dict[str, Any]:
    if isinstance(data, schema):
        model = data
    else:
        try:
            model = schema.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(issues_from_errors(e.errors()))
    return model.model_dump(exclude_unset=True)


# -----------------------------------------------------------------------------
# Validators used by the managers
# -----------------------------------------------------------------------------
def validate_task_input(data: Union[InsertTask, Dict[str, Any]]) -> Dict[str, Any]:
    return _validate(InsertTask, data)


def validate_task_patch(patch: Union[TaskPatch, Dict[str, Any]]) -> Dict[str, Any]:
    return _validate(TaskPatch, patch)


def validate_comment_input(data: Dict[str, Any]) -> Dict[str, Any]:
    return _validate(InsertComment, data)


def validate_user_input(data: Union[InsertUser, Dict[str, Any]]) -> Dict[str, Any]:
    return _validate(InsertUser, data)


def validate_user_patch(patch: Union[UserPatch, Dict[str, Any]]) -> Dict[str, Any]:
    return _validate(UserPatch, patch)


def validate_department_input(data: Union[InsertDepartment, Dict[str, Any]]) -> Dict[str, Any]:
    return _validate(InsertDepartment, data)


def validate_department_patch(patch: Union[DepartmentPatch, Dict[str, Any]]) -> Dict[str, Any]:
    return _validate(DepartmentPatch, patch)


def validate_suggestion_input(data: Union[InsertSuggestion, Dict[str, Any]]) -> Dict[str, Any]:
    return _validate(InsertSuggestion, data)


def validate_suggestion_status(value: Any) -> SuggestionStatus:
    return _validate(_SuggestionStatusQuery, {"status": value})["status"]


def validate_activity_input(data: Dict[str, Any]) -> Dict[str, Any]:
    return _validate(InsertActivity, data)


def validate_calendar_event_input(
    data: Union[InsertCalendarEvent, CalendarEventPatch, Dict[str, Any]],
    partial: bool = False,
) -> Dict[str, Any]:
    return _validate(CalendarEventPatch if partial else InsertCalendarEvent, data)


def validate_setting_input(data: Dict[str, Any]) -> Dict[str, Any]:
    return _validate(InsertSetting, data)


def validate_progress_period(period_days: Any) -> int:
    if isinstance(period_days, bool) or period_days not in PROGRESS_PERIODS:
        allowed = ", ".join(str(p) for p in PROGRESS_PERIODS)
        raise ValidationError.single("period", f"must be one of: {allowed}")
    return int(period_days)
