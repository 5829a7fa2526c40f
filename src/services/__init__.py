"""Runnable services built on portal_data."""
