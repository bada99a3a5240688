"""
Infrastructure Layer
=====================

Cross-context technical concerns:
- Database connection management
"""
