"""
CREDIT RAIL - API Module

Production FastAPI server implementing:
- Credit status and grants
- Check-and-deduct gating for costed operations
- Usage statistics
- Admin overview
"""

from .server import app, create_app

__all__ = ["app", "create_app"]
