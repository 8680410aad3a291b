from abc import ABC
from typing import TypeVar, Generic, Optional, Dict, Any, Type
from sqlalchemy.orm import Session
from pydantic import BaseModel

T = TypeVar("T")
SchemaType = TypeVar("SchemaType", bound=BaseModel)


class BaseRepository(Generic[T, SchemaType], ABC):
    """Base class for repositories - always hands back Pydantic schemas"""

    def __init__(
        self, model_class: Type[T], schema_class: Type[SchemaType], db: Session
    ):
        self.model_class = model_class
        self.schema_class = schema_class
        self.db = db

    def _to_schema(self, model_instance: Any) -> Optional[SchemaType]:
        """SQLAlchemy model -> Pydantic schema (from_attributes)"""
        if model_instance is None:
            return None
        return self.schema_class.model_validate(model_instance)

    def _filtered(self, filters: Optional[Dict[str, Any]] = None):
        query = self.db.query(self.model_class)
        for key, value in (filters or {}).items():
            if hasattr(self.model_class, key):
                query = query.filter(getattr(self.model_class, key) == value)
        return query

    def get_by_id(self, id: Any) -> Optional[SchemaType]:
        model_instance = (
            self.db.query(self.model_class)
            .filter(getattr(self.model_class, "id") == id)
            .first()
        )
        return self._to_schema(model_instance)

    def add(self, commit: bool = True, **kwargs) -> T:
        """Insert and flush; returns the model so callers can keep working in
        the same transaction when commit=False."""
        instance = self.model_class(**kwargs)
        self.db.add(instance)
        try:
            self.db.flush()
            if commit:
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return instance

    def create(self, commit: bool = True, **kwargs) -> Optional[SchemaType]:
        return self._to_schema(self.add(commit=commit, **kwargs))

    def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        return self._filtered(filters).count()
