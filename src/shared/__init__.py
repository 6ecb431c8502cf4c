"""
Shared Kernel Module
====================

Shared infrastructure used by the governance bounded context: structured
logging and the HTTP middleware / exception handlers.

DO NOT add governance business logic to the shared kernel.
"""

__version__ = "1.0.0"
