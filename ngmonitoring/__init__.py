"""Monitoring server core: TOML configuration, SQLite document store and HTTP configuration service."""

__version__ = "0.1.0"