"""
Base repository with standardized CRUD operations, transaction management and error handling.

Provides the foundation for all domain repositories.
"""

from typing import Any, Dict, Generic, Optional, Type, TypeVar
from contextlib import contextmanager

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError, IntegrityError

from fee_settlement.db.base import Base
from fee_settlement.core.logging import get_logger
from fee_settlement.core.exceptions import (
    BaseAppException,
    EntityAlreadyExistsError,
    RepositoryError,
    ResourceNotFoundError,
)

logger = get_logger(__name__)

# Type variable for model classes
ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base repository with standardized operations.

    Provides CRUD operations, transaction management, and error handling
    for all domain repositories.
    """

    def __init__(self, model: Type[ModelType], db: Session):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            db: Database session
        """
        self.model = model
        self.db = db

    # ==================== Transaction Management ====================

    @contextmanager
    def transaction(self):
        """
        Transaction context manager with automatic rollback.

        Application exceptions raised inside the block are re-raised
        unchanged after the rollback; database errors become RepositoryError.

        Usage:
            with repository.transaction():
                repository.create(entity, commit=False)
        """
        try:
            yield self.db
            self.db.commit()
        except BaseAppException:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Transaction rollback: {str(e)}", exc_info=True)
            raise RepositoryError(f"Transaction failed: {str(e)}") from e
        except Exception:
            self.db.rollback()
            raise

    def commit(self):
        """Commit current transaction."""
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RepositoryError(f"Commit failed: {str(e)}") from e

    def rollback(self):
        """Rollback current transaction."""
        self.db.rollback()

    # ==================== Create Operations ====================

    def create(self, entity: ModelType, commit: bool = True) -> ModelType:
        """
        Persist a new entity.

        Args:
            entity: Entity to create
            commit: Whether to commit immediately (otherwise flush only)

        Returns:
            Created entity

        Raises:
            EntityAlreadyExistsError: If a unique constraint is violated
        """
        try:
            self.db.add(entity)
            if commit:
                self.db.commit()
                self.db.refresh(entity)
            else:
                self.db.flush()
            logger.debug(f"Created {self.model.__name__} with id: {getattr(entity, 'id', None)}")
            return entity
        except IntegrityError as e:
            self.db.rollback()
            raise EntityAlreadyExistsError(
                f"{self.model.__name__} already exists",
                table=self.model.__tablename__,
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RepositoryError(f"Create failed: {str(e)}") from e

    # ==================== Read Operations ====================

    def get_by_id(self, entity_id: Any) -> Optional[ModelType]:
        """Get entity by primary key."""
        return self.db.get(self.model, entity_id)

    def get_or_raise(self, entity_id: Any) -> ModelType:
        """
        Get entity by primary key or raise.

        Raises:
            ResourceNotFoundError: If no entity has that id
        """
        entity = self.get_by_id(entity_id)
        if entity is None:
            raise ResourceNotFoundError(self.model.__name__, str(entity_id))
        return entity

    # ==================== Update Operations ====================

    def update(self, entity: ModelType, data: Dict[str, Any], commit: bool = True) -> ModelType:
        """
        Apply attribute changes to an entity.

        Args:
            entity: Entity to update
            data: Attribute values to set
            commit: Whether to commit immediately

        Returns:
            Updated entity
        """
        for key, value in data.items():
            if not hasattr(entity, key):
                raise RepositoryError(f"{self.model.__name__} has no attribute '{key}'")
            setattr(entity, key, value)
        try:
            if commit:
                self.db.commit()
                self.db.refresh(entity)
            else:
                self.db.flush()
            return entity
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RepositoryError(f"Update failed: {str(e)}") from e
