"""
Telemetry Module
================

Observability for the view-through attribution service.

Components:
- sentry.py: Error tracking

Environment Variables:
- SENTRY_DSN: Sentry project DSN

Usage:
    from viewthrough.telemetry import init_observability, capture_exception

    init_observability()
"""

from viewthrough.telemetry.sentry import (
    init_sentry,
    capture_exception,
)


def init_observability() -> dict:
    """
    Initialize all observability tools.

    Should be called once during application or worker startup.

    Returns:
        Dict with status of each tool initialization, e.g. {"sentry": False}
    """
    return {
        "sentry": init_sentry(),
    }


__all__ = [
    "init_observability",
    "init_sentry",
    "capture_exception",
]
