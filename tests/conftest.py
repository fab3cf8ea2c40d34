"""
Pytest configuration for the task board tests.

This module provides:
1. An isolated environment (memory store, temp data dir) set before imports
2. A controllable clock
3. Fully wired services with a synchronous, recording notification engine
4. A FastAPI TestClient bound to those services
"""

import os
import tempfile
from datetime import datetime, timedelta
from typing import List

import pytest

# Set up test environment before imports
os.environ["TASKBOARD_DATA_DIR"] = tempfile.mkdtemp(prefix="taskboard-test-")
os.environ["TASKBOARD_STORE"] = "memory"
os.environ["TASKBOARD_WEBHOOK_URL"] = ""

from taskboard.models import UserRole
from taskboard.notification_engine import Notification, NotificationEngine
from taskboard.services import build_services, set_services
from taskboard.store import InMemoryStore


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
START_TIME = datetime(2025, 3, 10, 9, 0, 0)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingChannel:
    """Notification channel that keeps everything it is handed."""

    def __init__(self):
        self.notifications: List[Notification] = []

    def __call__(self, notification: Notification) -> bool:
        self.notifications.append(notification)
        return True

    def events(self) -> List[str]:
        return [n.event.value for n in self.notifications]

    def for_event(self, event: str) -> List[Notification]:
        return [n for n in self.notifications if n.event.value == event]


def task_payload(**overrides):
    """Minimal valid create-task payload."""
    payload = {
        "title": "Prepare lab safety briefing",
        "assigned_to": ["user-educator"],
    }
    payload.update(overrides)
    return payload


# -----------------------------------------------------------------------------
# Common Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def recorder():
    return RecordingChannel()


@pytest.fixture
def notifier(recorder):
    engine = NotificationEngine(synchronous=True)
    engine.register_channel("recorder", recorder)
    return engine


@pytest.fixture
def services(store, notifier, clock):
    return build_services(store=store, notifier=notifier, clock=clock)


@pytest.fixture
def admin(services):
    return services.users.create_user({
        "email": "principal@beacon.edu",
        "first_name": "Ada",
        "last_name": "Okafor",
        "role": UserRole.ADMINISTRATOR.value,
    })


@pytest.fixture
def client(services):
    from fastapi.testclient import TestClient
    from taskboard.main import app

    set_services(services)
    with TestClient(app) as test_client:
        yield test_client
    set_services(None)
