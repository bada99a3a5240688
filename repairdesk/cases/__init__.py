"""
Repair Case Module
==================

Bounded Context owning the repair case aggregate.

Responsibilities:
- Case lifecycle invariants (completion timestamp, escalation ladder)
- Workflow reference state (none, running, completed, failed)
- Append-only escalation audit trail and case timeline
"""

__version__ = "1.0.0"
