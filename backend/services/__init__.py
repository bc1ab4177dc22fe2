"""
Backend services for business logic shared by the API and workers.
"""

from backend.services.audit import SEVERITIES, SecurityEventLog

__all__ = [
    # Audit service
    "SecurityEventLog",
    "SEVERITIES",
]
