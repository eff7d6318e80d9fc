"""Persistence helpers: SQLModel tables, migrations and image files."""
