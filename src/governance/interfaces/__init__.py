"""
Governance Interfaces Layer
===========================

Interface adapters (controllers) for RN assignment governance.

Contains:
- Controllers: FastAPI route handlers

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from governance.interfaces.controllers import governance_router

__all__ = ["governance_router"]
