"""Counsel Engine - API Routers"""
from .counsel import router as counsel_router
from .counselors import router as counselors_router
from .scheduler import router as scheduler_router

__all__ = [
    "counsel_router",
    "counselors_router",
    "scheduler_router",
]
