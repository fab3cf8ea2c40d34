"""
Task Board HTTP API

FastAPI routes for tasks, comments, dashboards and management analytics,
AI suggestions, the activity feed, users and departments, the calendar
and system settings.

The acting user is supplied by the identity provider in front of this
service as the X-User-Id header. Core errors are returned as the error's
to_dict() under "detail":

- VALIDATION_FAILED  -> 400
- FORBIDDEN          -> 403
- NOT_FOUND          -> 404
- INVALID_TRANSITION -> 409
- CONFLICT           -> 409
- INTERNAL           -> 500
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import Field

from .errors import NotFoundError, PermissionDeniedError, TaskboardError, ValidationError
from .config import SETTING_CATEGORY_MAX_LENGTH
from .models import UserRole, parse_datetime
from .schema import (
    BaseSchema,
    CalendarEventPatch,
    DepartmentPatch,
    InsertCalendarEvent,
    InsertComment,
    InsertDepartment,
    InsertSuggestion,
    InsertTask,
    InsertUser,
    TaskPatch,
    UserPatch,
)
from .services import TaskboardServices, get_services

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
logger = logging.getLogger("taskboard_api")

# -----------------------------------------------------------------------------
# Router Setup
# -----------------------------------------------------------------------------
router = APIRouter(prefix="/api", tags=["Task Board"])

ERROR_STATUS_CODES: Dict[str, int] = {
    ValidationError.code: 400,
    PermissionDeniedError.code: 403,
    "NOT_FOUND": 404,
    "INVALID_TRANSITION": 409,
    "CONFLICT": 409,
    "INTERNAL": 500,
}


def _http_error(error: TaskboardError) -> HTTPException:
    status_code = ERROR_STATUS_CODES.get(error.code, 500)
    if status_code >= 500:
        logger.error(f"{error.code}: {error.message} {error.details}")
    return HTTPException(status_code=status_code, detail=error.to_dict())


def get_actor(x_user_id: Optional[str] = Header(None)) -> str:
    """Acting user id from the X-User-Id header."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=401,
            detail={"error": True, "code": "UNAUTHENTICATED", "message": "X-User-Id header is required"},
        )
    return x_user_id.strip()


def _require_role(services: TaskboardServices, actor: str, *roles: UserRole) -> None:
    """The acting user must be an active user holding one of roles."""
    try:
        user = services.users.get_user(actor)
    except NotFoundError:
        user = None
    if user is None or not user.is_active or user.role not in roles:
        raise PermissionDeniedError(
            f"Access denied. {' or '.join(r.value for r in roles)} role required.",
            details={"user_id": actor},
        )


def _require_admin(services: TaskboardServices, actor: str) -> None:
    _require_role(services, actor, UserRole.ADMINISTRATOR)


def _parse_query_datetime(name: str, value: Optional[str]):
    try:
        return parse_datetime(value)
    except ValueError:
        raise ValidationError.single(name, "must be an ISO-8601 datetime")


# -----------------------------------------------------------------------------
# Request Models
# -----------------------------------------------------------------------------
class TaskUpdateRequest(TaskPatch):
    """Partial task update plus the updated_at the client last saw."""
    expected_updated_at: Optional[str] = None


class SuggestionBatchRequest(BaseSchema):
    """Suggestions emitted by the recommendation generator for one user."""
    user_id: Optional[str] = None
    suggestions: List[InsertSuggestion] = Field(default_factory=list)


class SettingRequest(BaseSchema):
    value: Any
    category: str = Field(..., min_length=1, max_length=SETTING_CATEGORY_MAX_LENGTH)


# -----------------------------------------------------------------------------
# Tasks
# -----------------------------------------------------------------------------
@router.post("/tasks", status_code=201)
async def create_task(
    request: InsertTask,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        return services.tasks.create_task(request, actor_id=actor).to_dict()
    except TaskboardError as e:
        raise _http_error(e)


@router.get("/tasks")
async def list_tasks(
    filter: str = Query("all", description="all | assigned | created | completed"),
    status: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=0),
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    """List tasks, most recently updated first. assigned/created apply to the acting user."""
    try:
        tasks = services.tasks.list_tasks(filter=filter, user_id=actor, status=status, limit=limit)
    except TaskboardError as e:
        raise _http_error(e)
    return {"tasks": [t.to_dict() for t in tasks], "count": len(tasks)}


@router.get("/tasks/{task_id}")
async def get_task(
    task_id: str,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        return services.tasks.get_task(task_id).to_dict()
    except TaskboardError as e:
        raise _http_error(e)


@router.patch("/tasks/{task_id}")
async def update_task(
    task_id: str,
    request: TaskUpdateRequest,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    patch = request.model_dump(exclude_unset=True, exclude={"expected_updated_at"})
    expected = request.expected_updated_at
    try:
        task = services.tasks.update_task(task_id, patch, actor_id=actor, expected_updated_at=expected)
    except TaskboardError as e:
        raise _http_error(e)
    return task.to_dict()


# -----------------------------------------------------------------------------
# Comments
# -----------------------------------------------------------------------------
@router.get("/tasks/{task_id}/comments")
async def list_comments(
    task_id: str,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        comments = services.tasks.list_comments(task_id)
    except TaskboardError as e:
        raise _http_error(e)
    return {"comments": [c.to_dict() for c in comments], "count": len(comments)}


@router.post("/tasks/{task_id}/comments", status_code=201)
async def add_comment(
    task_id: str,
    request: InsertComment,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        return services.tasks.add_comment(task_id, request.content, user_id=actor).to_dict()
    except TaskboardError as e:
        raise _http_error(e)


@router.patch("/comments/{comment_id}")
async def edit_comment(
    comment_id: str,
    request: InsertComment,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        return services.tasks.edit_comment(comment_id, request.content, user_id=actor).to_dict()
    except TaskboardError as e:
        raise _http_error(e)


# -----------------------------------------------------------------------------
# Dashboard (Read-Only)
# -----------------------------------------------------------------------------
@router.get("/dashboard/stats")
async def dashboard_stats(
    scope: str = Query("all", description="all | mine"),
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    if scope not in ("all", "mine"):
        raise _http_error(ValidationError.single("scope", "must be one of: all, mine"))
    user_id = actor if scope == "mine" else None
    return services.aggregation.compute_dashboard_stats(user_id=user_id).to_dict()


@router.get("/dashboard/progress")
async def dashboard_progress(
    period: int = Query(7, description="7 | 30 | 90"),
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        points = services.aggregation.compute_progress_series(period)
    except TaskboardError as e:
        raise _http_error(e)
    return {"period": period, "points": [p.to_dict() for p in points]}


@router.get("/dashboard/distribution")
async def dashboard_distribution(
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    return services.aggregation.compute_task_distribution().to_dict()


@router.get("/team/stats")
async def team_stats(
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    return services.aggregation.compute_team_stats().to_dict()


@router.get("/management/analytics")
async def member_analytics(
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    """Per-member workload. Management or Administrator only."""
    try:
        _require_role(services, actor, UserRole.MANAGEMENT, UserRole.ADMINISTRATOR)
    except TaskboardError as e:
        raise _http_error(e)
    members = services.aggregation.compute_member_analytics()
    return {"members": [m.to_dict() for m in members], "count": len(members)}


# -----------------------------------------------------------------------------
# AI Suggestions
# -----------------------------------------------------------------------------
@router.post("/suggestions", status_code=201)
async def record_suggestions(
    request: SuggestionBatchRequest,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        suggestions = services.suggestions.record_suggestions(request.user_id or actor, request.suggestions)
    except TaskboardError as e:
        raise _http_error(e)
    return {"suggestions": [s.to_dict() for s in suggestions], "count": len(suggestions)}


@router.get("/suggestions")
async def list_suggestions(
    status: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=0),
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    """The acting user's suggestions, newest first."""
    try:
        suggestions = services.suggestions.list_suggestions(user_id=actor, status=status, limit=limit)
    except TaskboardError as e:
        raise _http_error(e)
    return {"suggestions": [s.to_dict() for s in suggestions], "count": len(suggestions)}


@router.post("/suggestions/{suggestion_id}/accept")
async def accept_suggestion(
    suggestion_id: str,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        task, suggestion = services.suggestions.accept_suggestion(suggestion_id, actor_id=actor)
    except TaskboardError as e:
        raise _http_error(e)
    return {"task": task.to_dict(), "suggestion": suggestion.to_dict()}


@router.post("/suggestions/{suggestion_id}/dismiss")
async def dismiss_suggestion(
    suggestion_id: str,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        return services.suggestions.dismiss_suggestion(suggestion_id, actor_id=actor).to_dict()
    except TaskboardError as e:
        raise _http_error(e)


# -----------------------------------------------------------------------------
# Activity Feed (Read-Only)
# -----------------------------------------------------------------------------
@router.get("/activity")
async def activity_feed(
    type: Optional[str] = None,
    user_id: Optional[str] = None,
    target_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    entries = services.activity.query(type=type, user_id=user_id, target_id=target_id, limit=limit)
    return {"activities": [a.to_dict() for a in entries], "count": len(entries)}


@router.get("/notifications")
async def recent_notifications(
    limit: int = Query(50, ge=1, le=200),
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    """Notifications recently dispatched to the acting user."""
    notifications = services.notifier.get_recent_notifications(recipient=actor, limit=limit)
    return {"notifications": notifications, "count": len(notifications)}


# -----------------------------------------------------------------------------
# Users
# -----------------------------------------------------------------------------
@router.get("/users")
async def list_users(
    role: Optional[str] = None,
    active_only: bool = False,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        role_filter = UserRole(role) if role else None
    except ValueError:
        raise _http_error(ValidationError.single(
            "role", f"must be one of: {', '.join(r.value for r in UserRole)}"
        ))
    users = services.users.list_users(role=role_filter, active_only=active_only)
    return {"users": [u.to_dict() for u in users], "count": len(users)}


@router.post("/users", status_code=201)
async def create_user(
    request: InsertUser,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        return services.users.create_user(request, actor_id=actor).to_dict()
    except TaskboardError as e:
        raise _http_error(e)


@router.get("/users/{user_id}")
async def get_user(
    user_id: str,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        return services.users.get_user(user_id).to_dict()
    except TaskboardError as e:
        raise _http_error(e)


@router.patch("/users/{user_id}")
async def update_user(
    user_id: str,
    request: UserPatch,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    """Admin edit of a user's profile, role or activation."""
    try:
        _require_admin(services, actor)
        return services.users.update_user(user_id, request, actor_id=actor).to_dict()
    except TaskboardError as e:
        raise _http_error(e)


# -----------------------------------------------------------------------------
# Departments (Administrator only)
# -----------------------------------------------------------------------------
@router.get("/admin/departments")
async def list_departments(
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        _require_admin(services, actor)
    except TaskboardError as e:
        raise _http_error(e)
    departments = services.departments.list_departments()
    return {"departments": [d.to_dict() for d in departments], "count": len(departments)}


@router.post("/admin/departments", status_code=201)
async def create_department(
    request: InsertDepartment,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        _require_admin(services, actor)
        return services.departments.create_department(request, actor_id=actor).to_dict()
    except TaskboardError as e:
        raise _http_error(e)


@router.patch("/admin/departments/{department_id}")
async def update_department(
    department_id: str,
    request: DepartmentPatch,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        _require_admin(services, actor)
        return services.departments.update_department(department_id, request, actor_id=actor).to_dict()
    except TaskboardError as e:
        raise _http_error(e)


@router.delete("/admin/departments/{department_id}")
async def delete_department(
    department_id: str,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        _require_admin(services, actor)
        services.departments.delete_department(department_id, actor_id=actor)
    except TaskboardError as e:
        raise _http_error(e)
    return {"message": "Department deleted successfully", "id": department_id}


# -----------------------------------------------------------------------------
# Calendar
# -----------------------------------------------------------------------------
@router.get("/calendar/events")
async def list_events(
    start: Optional[str] = None,
    end: Optional[str] = None,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        events = services.calendar.list_events(
            start=_parse_query_datetime("start", start),
            end=_parse_query_datetime("end", end),
        )
    except TaskboardError as e:
        raise _http_error(e)
    return {"events": [e.to_dict() for e in events], "count": len(events)}


@router.post("/calendar/events", status_code=201)
async def create_event(
    request: InsertCalendarEvent,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        return services.calendar.create_event(request, actor_id=actor).to_dict()
    except TaskboardError as e:
        raise _http_error(e)


@router.get("/calendar/upcoming")
async def upcoming_deadlines(
    days: int = Query(7, ge=1, le=90),
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    """Open tasks due within the next `days` days."""
    tasks = services.calendar.events_for_task_due_dates(days=days)
    return {"tasks": [t.to_dict() for t in tasks], "count": len(tasks)}


@router.get("/calendar/events/{event_id}")
async def get_event(
    event_id: str,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        return services.calendar.get_event(event_id).to_dict()
    except TaskboardError as e:
        raise _http_error(e)


@router.patch("/calendar/events/{event_id}")
async def update_event(
    event_id: str,
    request: CalendarEventPatch,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        return services.calendar.update_event(event_id, request, actor_id=actor).to_dict()
    except TaskboardError as e:
        raise _http_error(e)


# -----------------------------------------------------------------------------
# System Settings
# -----------------------------------------------------------------------------
@router.get("/settings")
async def list_settings(
    category: Optional[str] = None,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        settings = services.settings.list(category=category)
    except TaskboardError as e:
        raise _http_error(e)
    return {"settings": [s.to_dict() for s in settings], "count": len(settings)}


@router.put("/settings/{key}")
async def put_setting(
    key: str,
    request: SettingRequest,
    actor: str = Depends(get_actor),
    services: TaskboardServices = Depends(get_services),
):
    try:
        _require_admin(services, actor)
        setting = services.settings.put(key, request.value, request.category, updated_by=actor)
    except TaskboardError as e:
        raise _http_error(e)
    return setting.to_dict()


logger.info("Task Board API router loaded")
