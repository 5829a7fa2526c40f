"""
Data Administration Service - CLI Entry Point

Usage:
    python -m src.services.data_admin [command] [options]

Examples:
    # Start HTTP server
    python -m src.services.data_admin serve --port 8090

    # Export every table to a file
    python -m src.services.data_admin export --output backup.json
"""

from .cli import app

if __name__ == "__main__":
    app(prog_name="portal-data")
