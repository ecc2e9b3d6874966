"""
Base repository with common CRUD operations.
"""

from typing import Generic, Type, TypeVar

from sqlalchemy.orm import Session

from claude_story.models.db import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Generic repository bound to one model class and one session."""

    def __init__(self, model: Type[ModelType], session: Session):
        self.model = model
        self.session = session

    def create(self, **kwargs) -> ModelType:
        """
        Create and flush a new instance.

        Args:
            **kwargs: Field values

        Returns:
            Created instance (primary key populated)
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        self.session.flush()
        return instance

    def count(self) -> int:
        """Count all rows of the model."""
        return self.session.query(self.model).count()
