import time
from datetime import datetime

import pytz

from ..config import settings

RESTAURANT_TZ = pytz.timezone(settings.TIMEZONE)


def get_local_time() -> datetime:
    return datetime.utcnow().replace(tzinfo=pytz.UTC).astimezone(RESTAURANT_TZ)


def now_ms() -> int:
    """Epoch milliseconds, the unit of ``Order.timestamp``."""
    return int(time.time() * 1000)


def from_ms(timestamp: int) -> datetime:
    return datetime.fromtimestamp(timestamp / 1000, tz=pytz.UTC).astimezone(RESTAURANT_TZ)
