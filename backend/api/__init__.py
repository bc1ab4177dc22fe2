"""
PartsConnect API Routers
FastAPI router modules for the parts marketplace.
"""
from backend.api import health, matches

__all__ = [
    "health",
    "matches",
]
