"""SQLAlchemy declarative base and common utilities."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class VersionMixin:
    """Optimistic locking via a version counter.

    Models using this mixin gain a ``version`` column that starts at 1
    and is incremented on every update.  Callers that read a row and
    later write it back pass the version they saw; ``check_version()``
    rejects the write when another session got there first.
    """

    version: Mapped[int] = mapped_column(Integer, default=1, server_default="1", nullable=False)

    def check_version(self, expected):
        """Raise ConcurrentModification if *expected* doesn't match current version."""
        from vendrun.core.errors import ConcurrentModification

        if expected is not None and expected != self.version:
            raise ConcurrentModification(type(self).__name__, self.id, expected, self.version)

    def increment_version(self) -> None:
        """Increment the version counter after a successful update."""
        self.version = (self.version or 0) + 1
