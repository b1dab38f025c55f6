"""
Infrastructure Layer
=====================

Cross-module technical concerns:
- Database connection management
"""
