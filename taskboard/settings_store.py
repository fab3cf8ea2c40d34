"""
System Settings

Flat key-value operational toggles (institution details, notification
switches, security policy). Keys are unique; put() upserts.

The first read against an empty settings collection seeds it from the
YAML defaults file (SETTINGS_FILE).
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from .activity_log import ActivityLog
from .config import SETTINGS_FILE
from .errors import InternalError, NotFoundError, ValidationError
from .models import SystemSetting, new_id, utcnow
from .schema import validate_setting_input
from .store import EntityStore

logger = logging.getLogger("settings_store")

SYSTEM_USER = "system"


def read_defaults(file_path: Path) -> List[Dict[str, Any]]:
    """Read the defaults file into validated {key, value, category} entries."""
    if not file_path.exists():
        logger.warning(f"Settings defaults file not found: {file_path}")
        return []
    try:
        with open(file_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise InternalError(f"Cannot read settings defaults {file_path}", cause=e)

    if not isinstance(data, dict):
        raise InternalError(f"Settings defaults {file_path} must map category -> settings")

    entries = []
    for category, values in data.items():
        if not isinstance(values, dict):
            raise InternalError(f"Settings category '{category}' in {file_path} must be a mapping")
        for key, value in values.items():
            entries.append(validate_setting_input({
                "key": str(key),
                "value": value,
                "category": str(category),
            }))
    return entries


class SettingsStore:

    def __init__(
        self,
        store: EntityStore,
        activity_log: ActivityLog,
        defaults_file: Optional[Path] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._activity = activity_log
        self._defaults_file = Path(defaults_file) if defaults_file else SETTINGS_FILE
        self._clock = clock
        self._seeded = False

    def _ensure_seeded(self) -> None:
        if self._seeded:
            return
        with self._store.atomic():
            if self._seeded:
                return
            if self._store.count(SystemSetting.collection) == 0:
                now = self._clock()
                entries = read_defaults(self._defaults_file)
                for entry in entries:
                    setting = SystemSetting(
                        id=new_id(SystemSetting.id_prefix),
                        key=entry["key"],
                        value=entry["value"],
                        category=entry["category"],
                        updated_by=SYSTEM_USER,
                        updated_at=now,
                    )
                    self._store.put(SystemSetting.collection, setting.id, setting.to_dict())
                logger.info(f"Seeded {len(entries)} default settings from {self._defaults_file}")
            self._seeded = True

    def _find(self, key: str) -> Optional[SystemSetting]:
        matches = self._store.query(SystemSetting.collection, lambda d: d.get("key") == key)
        return SystemSetting.from_dict(matches[0]) if matches else None

    def get(self, key: str) -> SystemSetting:
        self._ensure_seeded()
        setting = self._find(key)
        if setting is None:
            raise NotFoundError("SystemSetting", key)
        return setting

    def put(self, key: str, value: Any, category: str, updated_by: str) -> SystemSetting:
        """Insert or replace the setting stored under key."""
        fields = validate_setting_input({"key": key, "value": value, "category": category})
        if not updated_by:
            raise ValidationError.single("updated_by", "is required")

        self._ensure_seeded()
        with self._store.atomic():
            setting = self._find(fields["key"])
            previous = setting.value if setting is not None else None
            if setting is None:
                setting = SystemSetting(
                    id=new_id(SystemSetting.id_prefix),
                    key=fields["key"],
                    value=fields["value"],
                    category=fields["category"],
                    updated_by=updated_by,
                )
            else:
                setting.value = fields["value"]
                setting.category = fields["category"]
                setting.updated_by = updated_by
            setting.updated_at = self._clock()
            self._store.put(SystemSetting.collection, setting.id, setting.to_dict())
            self._activity.append(
                type="setting_updated",
                user_id=updated_by,
                target_id=setting.key,
                description=f"Set {setting.category}.{setting.key}",
                metadata={"from": previous, "to": setting.value},
            )
        logger.info(f"Setting {setting.key} updated by {updated_by}")
        return setting

    def list(self, category: Optional[str] = None) -> List[SystemSetting]:
        """Settings ordered by category, then key."""
        self._ensure_seeded()
        settings = [SystemSetting.from_dict(d) for d in self._store.query(SystemSetting.collection)]
        if category is not None:
            settings = [s for s in settings if s.category == category]
        settings.sort(key=lambda s: (s.category, s.key))
        return settings

    def as_mapping(self) -> Dict[str, Dict[str, Any]]:
        """Nested category -> key -> value view, as the admin settings page reads it."""
        grouped: Dict[str, Dict[str, Any]] = {}
        for setting in self.list():
            grouped.setdefault(setting.category, {})[setting.key] = setting.value
        return grouped
