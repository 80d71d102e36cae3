"""Declarative base shared by all frailearn tables."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy.orm import DeclarativeBase


def new_id() -> str:
    """Primary key generator (text UUIDs keep SQLite and PostgreSQL compatible)."""
    return str(uuid4())


class Base(DeclarativeBase):
    pass
