"""
Activity Log - Append-Only Audit Trail

Every mutation in the core records one Activity here. This is the only
way components record history.

CONSTRAINTS:
- APPEND-ONLY: there is no update or delete operation
- Entries are stored in append order (created_at ascending)
- Queries return the most recent entries first, for UI feeds
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .models import Activity, new_id, utcnow
from .schema import validate_activity_input
from .store import EntityStore

logger = logging.getLogger("activity_log")


class ActivityLog:
    """Append-only activity record backed by an EntityStore log collection."""

    def __init__(self, store: EntityStore, clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._clock = clock

    def append(
        self,
        type: str,
        user_id: str,
        description: str,
        target_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Activity:
        """Validate and append one entry. Returns the stored Activity."""
        data = validate_activity_input({
            "type": type,
            "user_id": user_id,
            "description": description,
            "target_id": target_id,
            "metadata": metadata or {},
        })
        activity = Activity(
            id=new_id(Activity.id_prefix),
            type=data["type"],
            user_id=data["user_id"],
            description=data["description"],
            target_id=data.get("target_id"),
            metadata=data.get("metadata") or {},
            created_at=self._clock(),
        )
        self._store.append(Activity.collection, activity.to_dict())
        logger.debug(f"Activity {activity.type} by {activity.user_id} on {activity.target_id}")
        return activity

    def query(
        self,
        type: Optional[str] = None,
        user_id: Optional[str] = None,
        target_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Activity]:
        """
        Read entries matching every given filter, most recent first.

        Entries with equal created_at keep reverse append order.
        """
        entries = []
        for data in reversed(self._store.iter_log(Activity.collection)):
            if type and data.get("type") != type:
                continue
            if user_id and data.get("user_id") != user_id:
                continue
            if target_id and data.get("target_id") != target_id:
                continue
            entries.append(Activity.from_dict(data))

        # Stable sort keeps reverse append order for ties
        entries.sort(key=lambda a: a.created_at, reverse=True)
        if limit is not None:
            entries = entries[:limit]
        return entries


logger.info("Activity Log module loaded (APPEND-ONLY)")
