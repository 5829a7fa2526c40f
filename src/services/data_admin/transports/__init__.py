"""
Transport implementations for the data administration service.

Supports:
- HTTP/REST (FastAPI)
"""
