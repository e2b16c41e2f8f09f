"""
API Routers package.

Each module contains a FastAPI router for a specific domain.
"""

from .reconcile import router as reconcile_router

__all__ = [
    "reconcile_router",
]
