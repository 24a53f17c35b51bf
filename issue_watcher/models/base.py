"""
Declarative base for the SQLAlchemy ORM.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""

    pass


__all__ = ["Base"]
