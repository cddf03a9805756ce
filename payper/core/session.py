import uuid
from typing import Optional, Dict

from ..config import settings
from ..services.redis import RedisClient, redis_client
from ..utils.clock import get_local_time, now_ms
from .cache import CacheKeys


class SessionManager:
    """Staff login sessions and customer ordering leases, both kept in Redis.

    A customer lease is bound to one table and lasts ``SESSION_TIMEOUT_MINUTES``
    from the moment it was started. It never lapses while the table it is bound
    to has an active order; the caller tells ``is_customer_session_valid``
    whether that is the case.
    """

    def __init__(self, redis: RedisClient = redis_client, timeout_minutes: int = None):
        self.redis = redis
        self.timeout_ms = (timeout_minutes or settings.SESSION_TIMEOUT_MINUTES) * 60 * 1000
        self.token_ttl = settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60

    # Staff sessions

    def create_session(self, user_id: str, user_data: dict, token: str) -> str:
        session_key = CacheKeys.USER_SESSION.format(user_id=user_id, token_prefix=token[:8])

        session_data = {
            "user_id": user_id,
            "email": user_data.get("email") or "",
            "role": user_data.get("role") or "",
            "created_at": get_local_time().isoformat(),
        }

        self.redis.hset(session_key, session_data)
        self.redis.expire(session_key, self.token_ttl)
        self.redis.set(CacheKeys.ACTIVE_SESSION.format(token=token), user_id, self.token_ttl)
        self.redis.set(CacheKeys.USER_PROFILE.format(user_id=user_id), user_data, self.token_ttl)

        return session_key

    def validate_token(self, token: str) -> Optional[Dict]:
        """Return the cached staff profile for a bearer token, refreshing its expiry."""
        token_key = CacheKeys.ACTIVE_SESSION.format(token=token)
        user_id = self.redis.get(token_key)
        if not user_id:
            return None
        self.redis.expire(token_key, self.token_ttl)
        profile = self.redis.get(CacheKeys.USER_PROFILE.format(user_id=user_id))
        if isinstance(profile, dict) and "id" in profile:
            return profile
        return None

    def destroy_session(self, user_id: str, token: str):
        self.redis.delete(
            CacheKeys.USER_SESSION.format(user_id=user_id, token_prefix=token[:8]),
            CacheKeys.ACTIVE_SESSION.format(token=token),
        )

    # Customer leases

    def start_customer_session(self, table_id: str) -> Dict:
        session_id = uuid.uuid4().hex
        lease = {"session_id": session_id, "table_id": table_id, "start_time": now_ms()}
        self.redis.set(CacheKeys.CUSTOMER_SESSION.format(session_id=session_id), lease, self.token_ttl)
        return lease

    def get_customer_session(self, session_id: str) -> Optional[Dict]:
        lease = self.redis.get(CacheKeys.CUSTOMER_SESSION.format(session_id=session_id))
        return lease if isinstance(lease, dict) else None

    def is_customer_session_valid(self, session_id: str, table_id: str, has_active_order: bool = False) -> bool:
        lease = self.get_customer_session(session_id)
        if not lease or lease.get("table_id") != table_id:
            return False
        if has_active_order:
            return True
        return now_ms() - int(lease["start_time"]) <= self.timeout_ms

    def rebind_customer_session(self, session_id: str, table_id: str) -> Optional[Dict]:
        """Move a lease to the table its order was switched to."""
        lease = self.get_customer_session(session_id)
        if not lease:
            return None
        lease["table_id"] = table_id
        self.redis.set(CacheKeys.CUSTOMER_SESSION.format(session_id=session_id), lease, self.token_ttl)
        return lease

    def end_customer_session(self, session_id: str):
        self.redis.delete(CacheKeys.CUSTOMER_SESSION.format(session_id=session_id))


session_manager = SessionManager()
