"""Alembic revisions for the folio schema."""
