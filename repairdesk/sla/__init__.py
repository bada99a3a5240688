"""
SLA Monitoring Module
=====================

Bounded Context for Service Level Agreement monitoring and escalation.

Responsibilities:
- Evaluate cases for response and resolution compliance
- Compute SLA penalties
- Walk each case up its escalation ladder, one level at a time
- Run the periodic SLA sweep
- Hot-reload the SLA catalog via watchdog
"""

__version__ = "1.0.0"
