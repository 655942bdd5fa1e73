"""Base repository pattern implementation.

This module provides a generic SQLAlchemy repository that the
domain-specific repositories build on.
"""

from typing import Any, Generic, TypeVar, cast

from sqlalchemy import func, select
from sqlalchemy.orm import Session

ModelType = TypeVar("ModelType")


class BaseRepository(Generic[ModelType]):
    """Generic repository with the lookups every table needs.

    Example:
        ```python
        class ChatUserRepository(BaseRepository[ChatUser]):
            def __init__(self, db: Session):
                super().__init__(db, ChatUser)

            def find_by_email(self, email: str) -> ChatUser | None:
                return self.db.scalars(
                    select(self.model).where(self.model.email == email)
                ).first()
        ```
    """

    def __init__(self, db: Session, model: type[ModelType]):
        """Initialize repository with database session and model class.

        Args:
            db: SQLAlchemy session.
            model: The model class this repository operates on.
        """
        self.db = db
        self.model = model

    def get_by_id(self, entity_id: Any, *, refresh: bool = False) -> ModelType | None:
        """Get a single entity by primary key.

        Args:
            entity_id: The primary key of the entity.
            refresh: Reload the row even if the session already holds it.

        Returns:
            The entity if found, None otherwise.
        """
        result = self.db.get(self.model, entity_id, populate_existing=refresh)
        return cast(ModelType | None, result)

    def count(self, *criteria: Any) -> int:
        """Count entities matching optional filter criteria."""
        stmt = select(func.count()).select_from(self.model)  # type: ignore[arg-type]
        if criteria:
            stmt = stmt.where(*criteria)
        result: int = self.db.scalar(stmt) or 0
        return result
