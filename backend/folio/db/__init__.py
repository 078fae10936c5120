"""Database package: declarative base, engine wrapper and portfolio locks."""

from .base import Base
from .database import Database

__all__ = ["Base", "Database"]
