"""
streak_sync - Reconcile local organizations and members with Streak pipelines.
"""

__version__ = "0.1.0"
