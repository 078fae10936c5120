"""Async services over an ``AsyncSession``."""
