"""
RN Governance Module
====================

Bounded context for RN assignment governance and SLA tracking.

Responsibilities:
- Scope every assignment of a case to an RN in an epoch
- Rebuild lifecycle state by replaying governance events
- Compute acceptance, notification and outreach deadlines
- Gate supervisor actions (assign, unassign, reassign, nudge, acknowledgment)
- Repair legacy assignments that predate governance events
"""

__version__ = "1.0.0"
