"""
Repair Case Core
================

SLA tracking, escalation, technician assignment and workflow orchestration
for repair cases.

Bounded contexts:
- cases: the Case aggregate, its escalation history and timeline
- sla: compliance evaluation, escalation ladder, periodic sweep
- assignment: technician scoring, auto-assignment, rebalancing
- workflow: reconciliation with the external workflow orchestrator
"""

__version__ = "1.0.0"
