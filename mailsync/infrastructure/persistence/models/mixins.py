"""
SQLAlchemy mixins for common model patterns.

    - CuidMixin: CUID string primary key
    - TimestampMixin: created_at / updated_at
"""
from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, declared_attr, mapped_column
from sqlalchemy.sql import func

from mailsync.shared.utils.generators import generate_cuid


class CuidMixin:
    """
    Mixin for models using CUID as primary key.

    Usage:
        class MyModel(CuidMixin, Base):
            __tablename__ = "my_model"
    """

    @declared_attr
    def id(cls) -> Mapped[str]:
        return mapped_column(String, primary_key=True, default=generate_cuid)


class TimestampMixin:
    """
    Mixin for timestamp tracking.

    Note: Uses timezone-aware DateTime for consistency
    """

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True), server_default=func.now(), nullable=False
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            server_default=func.now(),
            onupdate=func.now(),
            nullable=False,
        )


class BaseModel(CuidMixin, TimestampMixin):
    """CUID primary key plus timestamps, the shape of every MailSync table."""

    __abstract__ = True
