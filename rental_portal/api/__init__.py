"""API Routes Module"""
from .auth_routes import limiter, portal_router


def include_routers(app):
    """Include all routers in the FastAPI app"""
    app.include_router(portal_router)


__all__ = ['include_routers', 'portal_router', 'limiter']
