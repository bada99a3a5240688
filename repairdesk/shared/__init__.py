"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded contexts
(cases, SLA monitoring, technician assignment, workflow integration).

Architecture Pattern: Modular Monolith
- Each module (cases, sla, assignment, workflow) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add business logic from the bounded contexts to the shared kernel.
"""

__version__ = "1.0.0"
