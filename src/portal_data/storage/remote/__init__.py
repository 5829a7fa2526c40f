"""
Remote Table-Store Backend

Provider for hosted table-stores reached over an authenticated REST API.
"""

from src.portal_data.storage.remote.client import RemoteTableClient
from src.portal_data.storage.remote.provider import RemoteTableProvider

__all__ = [
    "RemoteTableClient",
    "RemoteTableProvider",
]
