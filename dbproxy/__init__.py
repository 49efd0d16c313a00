"""Database query proxy.

A small HTTP service that forwards raw SQL to a single supervised PostgreSQL
connection, reports health, and serves a prebuilt static application.
"""

__version__ = "1.0.0"
