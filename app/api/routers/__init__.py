"""
app/api/routers package marker.
"""

from app.api.routers.ingestions import router as ingestions_router
from app.api.routers.metrics import router as metrics_router
from app.api.routers.uploads import router as uploads_router

__all__ = [
    "ingestions_router",
    "metrics_router",
    "uploads_router",
]
