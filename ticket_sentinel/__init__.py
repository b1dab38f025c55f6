"""Ticket Sentinel: inactivity timers for support ticket channels."""

__version__ = "1.0.0"
