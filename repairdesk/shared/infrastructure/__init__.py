"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Logging setup
- Notification delivery
"""
