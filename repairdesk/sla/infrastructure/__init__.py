"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA monitoring:
- External: YAML SLA catalog with hot reload, sweep scheduler
"""

from repairdesk.sla.infrastructure.external import (
    ConfigFileHandler,
    SLAConfigManager,
    SLAScheduler,
)

__all__ = [
    "ConfigFileHandler",
    "SLAConfigManager",
    "SLAScheduler",
]
