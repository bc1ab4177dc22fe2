"""
PartsConnect Celery Tasks

Task Modules:
    - matching: auto-match sweep
    - notifications: match notification emails

Queue Priorities:
    - critical: match notifications
    - high: auto-match sweeps
    - normal: everything else

Usage:
    from backend.tasks import matching

    matching.run_auto_match_sweep.delay(actor_id="...")
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from backend.tasks import matching, notifications

# Task modules are discovered by Celery via the include list in celery_app.py
__all__ = [
    "matching",
    "notifications",
]
