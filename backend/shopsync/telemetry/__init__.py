"""
Telemetry Module
================

Error tracking for the shopsync API and workers.

Usage:
    from shopsync.telemetry import init_sentry, capture_exception
"""

from shopsync.telemetry.sentry import init_sentry, capture_exception

__all__ = [
    "init_sentry",
    "capture_exception",
]
