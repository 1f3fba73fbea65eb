"""SQLAlchemy declarative base and the tracker's table models.

The models are the declared schema for the service: they drive table creation
at startup and the column-name map used to translate PostgreSQL's lowercase
result keys back into the camelCase names used throughout the API. Queries
themselves are plain parameterized SQL issued through
:class:`contribution_tracker.core.db.Database`.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


# Re-export the models so callers can import them via
# ``from contribution_tracker.models import User``.
from .contribution import Contribution
from .tenant import Tenant, User


__all__ = [
    "Base",
    "Contribution",
    "Tenant",
    "User",
]
