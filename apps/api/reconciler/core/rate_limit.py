"""Per-client rate limits on webhook routes (slowapi)."""

import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from reconciler.core.config import settings

IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")

# In-memory storage: limits are per worker process
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=not IS_TESTING and settings.RATE_LIMIT_WEBHOOK > 0,
)

WEBHOOK_LIMIT = f"{max(settings.RATE_LIMIT_WEBHOOK, 1)}/minute"
