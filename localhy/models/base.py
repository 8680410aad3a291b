from sqlalchemy import Column, DateTime, func
from sqlalchemy.orm import declarative_base, declared_attr

Base = declarative_base()


class TimestampMixin:
    """created_at / updated_at columns"""

    @declared_attr
    def created_at(cls):
        return Column(DateTime(timezone=True), server_default=func.now())

    @declared_attr
    def updated_at(cls):
        return Column(
            DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
        )


class CreatedAtMixin:
    """Append-only tables only get an immutable created_at"""

    @declared_attr
    def created_at(cls):
        return Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class BaseModel(Base, TimestampMixin):
    """Base class for mutable tables"""

    __abstract__ = True

    def dict(self):
        """Convert the row to a dictionary"""
        return {
            column.name: getattr(self, column.name) for column in self.__table__.columns
        }
