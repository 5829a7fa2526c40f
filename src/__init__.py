"""Portal data administration: switchable data providers, export/import and templates."""

__version__ = "0.1.0"
