"""
Technician Assignment Module
============================

Bounded Context for matching cases to technicians.

Responsibilities:
- Score technicians on skills, workload, availability and location
- Auto-assign under the per-technician case cap
- Suggest reassignments away from overloaded technicians
"""

__version__ = "1.0.0"
