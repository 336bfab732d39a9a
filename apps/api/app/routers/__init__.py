"""API routers."""

from app.routers.availability import router as availability_router
from app.routers.internal import router as internal_router
from app.routers.meetings import router as meetings_router
from app.routers.pipelines import router as pipelines_router
from app.routers.slots import router as slots_router
from app.routers.webhooks import router as webhooks_router

__all__ = [
    "availability_router",
    "internal_router",
    "meetings_router",
    "pipelines_router",
    "slots_router",
    "webhooks_router",
]
