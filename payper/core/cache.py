class CacheKeys:
    """Centralized Redis key management"""

    # Staff auth
    USER_SESSION = "session:{user_id}:{token_prefix}"
    ACTIVE_SESSION = "active_session:{token}"
    USER_PROFILE = "profile:{user_id}"

    # Customer ordering lease
    CUSTOMER_SESSION = "customer_session:{session_id}"
