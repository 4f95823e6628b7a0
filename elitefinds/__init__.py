"""
Elite Finds: stock and revenue tracker for a reselling business.
Document store (SQLite locally, PostgreSQL when configured) behind a small
Flask JSON API.
"""

__version__ = "1.0.0"
