"""
Workflow Integration Module
===========================

Bounded Context linking repair cases to the external workflow orchestrator.

Responsibilities:
- Start workflows and report step completions, with bounded retries
- Map orchestrator steps to case statuses
- Apply orchestrator events (failures, completion, escalation, assignment)
- Validate and perform case completion
"""

__version__ = "1.0.0"
