"""
Whole-store export and import against the active provider.
"""

from src.portal_data.transfer.engine import EXPORT_FILE_PREFIX, TransferEngine

__all__ = [
    "EXPORT_FILE_PREFIX",
    "TransferEngine",
]
