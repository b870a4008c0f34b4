"""Cluster installer shared package.

This package contains components used across the installer:
- models: Pydantic data models
- database: SQLAlchemy ORM models
- config: Configuration management
- observability: Structured logging
"""

__version__ = "0.1.0"
