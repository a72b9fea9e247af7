"""FastAPI routers."""

from app.routers.health import router as health_router
from app.routers.lab_uploads import router as lab_uploads_router

__all__ = ["health_router", "lab_uploads_router"]
