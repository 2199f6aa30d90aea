"""Presentation layer for Almanac CalDAV Server."""

from .app import AsyncExecutor, create_app

__all__ = ['AsyncExecutor', 'create_app']
