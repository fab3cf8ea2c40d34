"""
User Directory

Staff account records: provisioning, admin edits and soft deactivation.
Users are never hard-deleted; deactivated users stay in listings and in
team statistics. Departments are kept here too.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from .activity_log import ActivityLog
from .errors import NotFoundError, ValidationError
from .models import Department, User, UserRole, new_id, utcnow
from .schema import (
    DepartmentPatch,
    InsertDepartment,
    InsertUser,
    UserPatch,
    validate_department_input,
    validate_department_patch,
    validate_user_input,
    validate_user_patch,
)
from .store import EntityStore

logger = logging.getLogger("user_directory")


class UserDirectory:

    def __init__(
        self,
        store: EntityStore,
        activity_log: ActivityLog,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._activity = activity_log
        self._clock = clock

    def _find_by_email(self, email: str) -> Optional[User]:
        matches = self._store.query(User.collection, lambda d: d.get("email") == email)
        return User.from_dict(matches[0]) if matches else None

    def create_user(self, data: Union[InsertUser, Dict[str, Any]], actor_id: Optional[str] = None) -> User:
        """Provision a user. Emails are unique (case-insensitive)."""
        fields = validate_user_input(data)
        with self._store.atomic():
            if self._find_by_email(fields["email"]) is not None:
                raise ValidationError.single("email", "is already registered")
            now = self._clock()
            user = User(
                id=new_id(User.id_prefix),
                email=fields["email"],
                first_name=fields["first_name"],
                last_name=fields["last_name"],
                role=fields.get("role", UserRole.EDUCATOR),
                department=fields.get("department"),
                is_active=fields.get("is_active", True),
                profile_image_url=fields.get("profile_image_url"),
                created_at=now,
                updated_at=now,
            )
            self._store.put(User.collection, user.id, user.to_dict())
            self._activity.append(
                type="user_created",
                user_id=actor_id or user.id,
                target_id=user.id,
                description=f"{user.full_name} joined as {user.role.value}",
                metadata={"role": user.role.value},
            )
        logger.info(f"User created: {user.id} ({user.role.value})")
        return user

    def get_user(self, user_id: str) -> User:
        data = self._store.get(User.collection, user_id)
        if data is None:
            raise NotFoundError("User", user_id)
        return User.from_dict(data)

    def update_user(
        self,
        user_id: str,
        patch: Union[UserPatch, Dict[str, Any]],
        actor_id: Optional[str] = None,
    ) -> User:
        """Apply an admin edit (name, role, department, activation)."""
        fields = validate_user_patch(patch)
        with self._store.atomic():
            user = self.get_user(user_id)
            if "email" in fields and fields["email"] != user.email:
                existing = self._find_by_email(fields["email"])
                if existing is not None and existing.id != user_id:
                    raise ValidationError.single("email", "is already registered")

            changes = {}
            for name, value in fields.items():
                old = getattr(user, name)
                if old != value:
                    changes[name] = {
                        "from": old.value if isinstance(old, UserRole) else old,
                        "to": value.value if isinstance(value, UserRole) else value,
                    }
                    setattr(user, name, value)
            if not changes:
                return user

            user.updated_at = self._clock()
            self._store.put(User.collection, user.id, user.to_dict())
            self._activity.append(
                type="user_updated",
                user_id=actor_id or user.id,
                target_id=user.id,
                description=f"Updated {user.full_name}",
                metadata={"changes": changes},
            )
        logger.info(f"User updated: {user_id} ({', '.join(changes)})")
        return user

    def deactivate_user(self, user_id: str, actor_id: Optional[str] = None) -> User:
        return self.update_user(user_id, {"is_active": False}, actor_id=actor_id)

    def list_users(self, role: Optional[UserRole] = None, active_only: bool = False) -> List[User]:
        """Users, newest first."""
        users = [User.from_dict(d) for d in self._store.query(User.collection)]
        if role is not None:
            users = [u for u in users if u.role == role]
        if active_only:
            users = [u for u in users if u.is_active]
        users.sort(key=lambda u: u.created_at or datetime.min, reverse=True)
        return users


class DepartmentDirectory:
    """
    Department records managed by administrators.

    Names are unique (case-insensitive). Deleting a department does not
    touch users whose department field still names it.
    """

    def __init__(
        self,
        store: EntityStore,
        activity_log: ActivityLog,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._activity = activity_log
        self._clock = clock

    def _check_name_free(self, name: str, department_id: Optional[str] = None) -> None:
        wanted = name.strip().lower()
        for doc in self._store.query(Department.collection):
            if doc["name"].strip().lower() == wanted and doc["id"] != department_id:
                raise ValidationError.single("name", "is already taken by another department")

    def create_department(
        self,
        data: Union[InsertDepartment, Dict[str, Any]],
        actor_id: str,
    ) -> Department:
        fields = validate_department_input(data)
        with self._store.atomic():
            self._check_name_free(fields["name"])
            now = self._clock()
            department = Department(
                id=new_id(Department.id_prefix),
                name=fields["name"],
                description=fields.get("description"),
                head_id=fields.get("head_id"),
                created_at=now,
                updated_at=now,
            )
            self._store.put(Department.collection, department.id, department.to_dict())
            self._activity.append(
                type="department_created",
                user_id=actor_id,
                target_id=department.id,
                description=f"Created department '{department.name}'",
            )
        logger.info(f"Department created: {department.id} '{department.name}'")
        return department

    def get_department(self, department_id: str) -> Department:
        data = self._store.get(Department.collection, department_id)
        if data is None:
            raise NotFoundError("Department", department_id)
        return Department.from_dict(data)

    def update_department(
        self,
        department_id: str,
        patch: Union[DepartmentPatch, Dict[str, Any]],
        actor_id: str,
    ) -> Department:
        fields = validate_department_patch(patch)
        with self._store.atomic():
            department = self.get_department(department_id)
            if "name" in fields:
                self._check_name_free(fields["name"], department_id)
            changed = [name for name, value in fields.items() if getattr(department, name) != value]
            if not changed:
                return department
            for name in changed:
                setattr(department, name, fields[name])

            department.updated_at = self._clock()
            self._store.put(Department.collection, department.id, department.to_dict())
            self._activity.append(
                type="department_updated",
                user_id=actor_id,
                target_id=department.id,
                description=f"Updated department '{department.name}'",
                metadata={"fields": sorted(changed)},
            )
        return department

    def delete_department(self, department_id: str, actor_id: str) -> None:
        with self._store.atomic():
            department = self.get_department(department_id)
            self._store.delete(Department.collection, department_id)
            self._activity.append(
                type="department_deleted",
                user_id=actor_id,
                target_id=department_id,
                description=f"Deleted department '{department.name}'",
            )
        logger.info(f"Department deleted: {department_id} '{department.name}'")

    def list_departments(self) -> List[Department]:
        """Departments ordered by name."""
        departments = [Department.from_dict(d) for d in self._store.query(Department.collection)]
        departments.sort(key=lambda d: d.name.lower())
        return departments


logger.info("User Directory module loaded")
