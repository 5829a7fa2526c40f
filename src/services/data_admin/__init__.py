"""
Data Administration Service

Administrative surface over the portal data layer: provider switching,
whole-database export/import and template snapshots.
Supports an HTTP/REST transport and a command-line interface.

Usage:
    # As a service
    python -m src.services.data_admin serve --port 8090

    # Programmatic
    from src.services.data_admin import create_app
"""

__version__ = "0.1.0"

from src.portal_data.config import DataAdminConfig

from .transports.http import create_app, run_http_server

__all__ = [
    "DataAdminConfig",
    "create_app",
    "run_http_server",
]
