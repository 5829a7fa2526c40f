"""
In-Memory Storage Backend

Default provider. No external dependencies required - also used by fast, isolated tests.
"""

from src.portal_data.storage.memory.provider import MemoryProvider

__all__ = [
    "MemoryProvider",
]
