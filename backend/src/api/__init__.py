# API routes module
# Contains all API endpoint definitions

from .browser_routes import router as browser_router
from .file_routes import router as file_router
from .health_routes import bp_router
from .health_routes import router as health_router
from .profile_routes import router as profile_router

__all__ = ["bp_router", "browser_router", "file_router", "health_router", "profile_router"]
