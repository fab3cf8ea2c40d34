"""
Unit Tests for the User Directory
"""

import pytest

from taskboard.errors import NotFoundError, ValidationError
from taskboard.models import UserRole


def user_data(email="teacher@beacon.edu", **overrides):
    data = {"email": email, "first_name": "Grace", "last_name": "Mensah"}
    data.update(overrides)
    return data


@pytest.fixture
def users(services):
    return services.users


class TestUserDirectory:

    def test_create_defaults(self, users):
        user = users.create_user(user_data())

        assert user.role == UserRole.EDUCATOR
        assert user.is_active is True
        assert user.full_name == "Grace Mensah"
        assert users.get_user(user.id) == user

    def test_duplicate_email_case_insensitive(self, users):
        users.create_user(user_data())
        with pytest.raises(ValidationError) as exc_info:
            users.create_user(user_data(email="Teacher@Beacon.edu"))
        assert exc_info.value.fields == ["email"]

    def test_update_records_changes(self, services, users, admin):
        user = users.create_user(user_data())

        updated = users.update_user(user.id, {"role": "Management", "department": "Science"}, actor_id=admin.id)

        assert updated.role == UserRole.MANAGEMENT
        entry = services.activity.query(type="user_updated")[0]
        assert entry.user_id == admin.id
        assert entry.metadata["changes"]["role"] == {"from": "Educator", "to": "Management"}

    def test_noop_update(self, services, users):
        user = users.create_user(user_data())
        users.update_user(user.id, {"first_name": "Grace"})
        assert services.activity.query(type="user_updated") == []

    def test_deactivate_keeps_user_listed(self, users):
        user = users.create_user(user_data())
        users.deactivate_user(user.id)

        assert [u.id for u in users.list_users()] == [user.id]
        assert users.list_users(active_only=True) == []

    def test_list_newest_first_and_role_filter(self, users, clock):
        first = users.create_user(user_data("a@beacon.edu"))
        clock.advance(minutes=1)
        second = users.create_user(user_data("b@beacon.edu", role="Support Staff"))

        assert [u.id for u in users.list_users()] == [second.id, first.id]
        assert [u.id for u in users.list_users(role=UserRole.SUPPORT_STAFF)] == [second.id]

    def test_missing_user(self, users):
        with pytest.raises(NotFoundError):
            users.update_user("user-missing", {"first_name": "X"})


@pytest.fixture
def departments(services):
    return services.departments


class TestDepartmentDirectory:

    def test_create_and_list_by_name(self, services, departments, admin):
        science = departments.create_department({"name": "Science", "description": "Labs"}, actor_id=admin.id)
        arts = departments.create_department({"name": "Arts"}, actor_id=admin.id)

        assert [d.id for d in departments.list_departments()] == [arts.id, science.id]
        assert departments.get_department(science.id).description == "Labs"
        assert services.activity.query(type="department_created")[0].target_id == arts.id

    def test_name_unique_case_insensitive(self, departments, admin):
        science = departments.create_department({"name": "Science"}, actor_id=admin.id)
        maths = departments.create_department({"name": "Mathematics"}, actor_id=admin.id)

        with pytest.raises(ValidationError) as exc_info:
            departments.create_department({"name": "science "}, actor_id=admin.id)
        assert exc_info.value.fields == ["name"]

        with pytest.raises(ValidationError):
            departments.update_department(maths.id, {"name": "SCIENCE"}, actor_id=admin.id)

        renamed = departments.update_department(science.id, {"name": "Sciences"}, actor_id=admin.id)
        assert renamed.name == "Sciences"

    def test_noop_update(self, services, departments, admin):
        science = departments.create_department({"name": "Science"}, actor_id=admin.id)
        departments.update_department(science.id, {"name": "Science"}, actor_id=admin.id)
        assert services.activity.query(type="department_updated") == []

    def test_delete(self, departments, admin):
        science = departments.create_department({"name": "Science"}, actor_id=admin.id)

        departments.delete_department(science.id, actor_id=admin.id)

        assert departments.list_departments() == []
        with pytest.raises(NotFoundError):
            departments.delete_department(science.id, actor_id=admin.id)

    def test_blank_name_rejected(self, departments, admin):
        with pytest.raises(ValidationError):
            departments.create_department({"name": "  "}, actor_id=admin.id)
