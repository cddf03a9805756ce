import logging
import uuid
from typing import List, Optional

from ..models.activity import ActivityLog
from ..utils.clock import get_local_time
from .exceptions import PersistenceError

logger = logging.getLogger(__name__)


class ActivityLogger:
    """Audit trail of order mutations.

    Entries go to the ``activity_logs`` table when a Supabase client is given,
    otherwise they are kept in ``entries``.
    """

    def __init__(self, client=None):
        self.client = client
        self.entries: List[ActivityLog] = []

    def log_activity(
        self,
        user_id: str,
        action: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None,
        user_role: Optional[str] = None,
        resource: str = "order",
    ) -> ActivityLog:
        """Log user activity"""
        activity = ActivityLog(
            id=uuid.uuid4().hex,
            user_id=user_id,
            user_role=user_role,
            action=action,
            resource=resource,
            resource_id=resource_id,
            details=details,
            created_at=get_local_time(),
        )
        logger.info("%s %s %s by %s", action, resource, resource_id, user_id)

        if self.client is None:
            self.entries.append(activity)
            return activity

        try:
            self.client.table("activity_logs").insert(activity.model_dump(mode="json")).execute()
        except Exception as e:
            logger.error("Could not write activity log for %s %s: %s", resource, resource_id, e)
            raise PersistenceError(f"Activity log write failed: {e}") from e
        return activity

    def for_resource(self, resource_id: str) -> List[ActivityLog]:
        if self.client is None:
            return [a for a in self.entries if a.resource_id == resource_id]
        result = self.client.table("activity_logs").select("*").eq("resource_id", resource_id).order("created_at").execute()
        return [ActivityLog.model_validate(row) for row in result.data]
