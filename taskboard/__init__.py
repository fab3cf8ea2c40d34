"""
School Operations Task Board Core

Domain core for the school-operations task tracking dashboard.
Handles task management, derived progress statistics and AI work
suggestions for staff.

Components:
- models / schema: entity types and pydantic input models
- store: pluggable entity persistence (in-memory, JSON files)
- activity_log: append-only audit trail of mutations
- task_manager: task creation, status state machine, comments
- aggregation: dashboard, team, progress-series and member views (read-only)
- suggestion_engine: AI suggestion accept/dismiss lifecycle
- user_directory (users, departments), calendar_events, settings_store:
  supporting records
- notification_engine: fire-and-forget notification dispatch
- api / main: FastAPI surface over the logical operations

The core holds no UI, authentication or real-time transport logic.
Those collaborators read from or write into the core through the
operations exposed here.
"""

__version__ = "1.2.0"
