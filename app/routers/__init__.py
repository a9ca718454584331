"""
API routers package.
"""
from app.routers.health import router as health_router
from app.routers.keys import router as keys_router
from app.routers.links import router as links_router
from app.routers.pastes import router as pastes_router

__all__ = ["health_router", "keys_router", "links_router", "pastes_router"]
