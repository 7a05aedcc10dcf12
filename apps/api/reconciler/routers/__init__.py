"""API routers."""

from reconciler.routers.leads import router as leads_router
from reconciler.routers.webhooks import router as webhooks_router

__all__ = [
    "leads_router",
    "webhooks_router",
]
