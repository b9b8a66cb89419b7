"""Carbon Registry - API Routers"""
from .auth import router as auth_router
from .users import router as users_router
from .projects import router as projects_router
from .verifications import router as verifications_router
from .credits import router as credits_router
from .distributions import router as distributions_router
from .dashboard import router as dashboard_router

__all__ = [
    "auth_router",
    "users_router",
    "projects_router",
    "verifications_router",
    "credits_router",
    "distributions_router",
    "dashboard_router",
]
