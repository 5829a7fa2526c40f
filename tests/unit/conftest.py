"""
Pytest configuration for unit tests.

Disables telemetry so provider spans use the no-op tracer.
"""

import os


def pytest_configure(config):
    """Configure telemetry for unit tests."""
    os.environ["PORTAL_TELEMETRY_ENABLED"] = "false"
