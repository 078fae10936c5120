"""Configuration package for the folio service."""

from .settings import AppSettings, get_settings

__all__ = ["AppSettings", "get_settings"]
