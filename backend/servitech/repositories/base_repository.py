# backend/servitech/repositories/base_repository.py
"""
Generic data access for ServiTech models.

Repositories translate SQLAlchemy failures into ``RepositoryException`` and
never commit; the owning service decides the transaction boundary. State
transitions go through ``compare_and_set`` so two writers racing on the same
row cannot both win.
"""

from contextlib import contextmanager
import logging
from typing import Any, Generic, Iterator, Optional, Type, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..database.session_utils import get_dialect_name

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """CRUD helpers shared by every model repository."""

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def dialect_name(self) -> str:
        return get_dialect_name(self.db)

    @contextmanager
    def _storage_errors(self, action: str) -> Iterator[None]:
        name = self.model.__name__
        try:
            yield
        except IntegrityError as exc:
            self.logger.error(f"Integrity error while {action} {name}: {exc}", exc_info=True)
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as exc:
            self.logger.error(f"Storage error while {action} {name}: {exc}")
            raise RepositoryException(f"Failed {action} {name}: {exc}") from exc

    def get_by_id(self, id: str, *, for_update: bool = False) -> Optional[T]:
        """Primary-key lookup; ``for_update`` row-locks on PostgreSQL."""
        stmt = select(self.model).where(self.model.id == id)
        if for_update and self.dialect_name == "postgresql":
            stmt = stmt.with_for_update()
        with self._storage_errors("loading"):
            return self.db.execute(stmt).scalars().first()

    def create(self, **kwargs: Any) -> T:
        return self.add(self.model(**kwargs))

    def add(self, entity: T) -> T:
        """Stage ``entity`` and flush so constraint violations surface here, not at commit."""
        with self._storage_errors("creating"):
            self.db.add(entity)
            self.db.flush()
        return entity

    def flush(self) -> None:
        self.db.flush()

    def exists(self, **criteria: Any) -> bool:
        stmt = select(self.model.id).where(*self._equals(criteria)).limit(1)
        with self._storage_errors("checking"):
            return self.db.execute(stmt).first() is not None

    def find_one_by(self, **criteria: Any) -> Optional[T]:
        stmt = select(self.model).where(*self._equals(criteria)).limit(1)
        with self._storage_errors("finding"):
            return self.db.execute(stmt).scalars().first()

    def compare_and_set(self, id: str, expected_state: str, **values: Any) -> bool:
        """
        ``UPDATE ... SET values WHERE id = :id AND state = :expected_state``.

        Returns True when the row moved, False when it is gone or its state
        changed underneath us.
        """
        stmt = (
            update(self.model)
            .where(self.model.id == id, self.model.state == expected_state)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._storage_errors("updating"):
            result = self.db.execute(stmt)

        moved = (result.rowcount or 0) == 1
        if moved:
            self._expire_cached(id)
        return moved

    def _equals(self, criteria: dict[str, Any]) -> list[Any]:
        return [getattr(self.model, column) == value for column, value in criteria.items()]

    def _expire_cached(self, id: str) -> None:
        """Drop the identity-map copy of a row changed by a bulk UPDATE."""
        entity = self.db.identity_map.get(self.db.identity_key(self.model, id))
        if entity is not None:
            self.db.expire(entity)
