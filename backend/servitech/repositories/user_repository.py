# backend/servitech/repositories/user_repository.py
"""User Repository: lookups for the SQL-backed identity directory."""

from datetime import datetime, timezone
import logging
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.user import User
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository[User]):
    def __init__(self, db: Session):
        super().__init__(db, User)

    def get_by_email(self, email: str) -> Optional[User]:
        """Case-insensitive email lookup."""
        try:
            stmt = select(User).where(func.lower(User.email) == email.strip().lower())
            return self.db.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting user by email: {str(e)}")
            raise RepositoryException(f"Failed to retrieve user: {str(e)}")

    def set_active(self, user_id: str, active: bool) -> bool:
        try:
            result = self.db.execute(
                update(User)
                .where(User.id == user_id)
                .values(is_active=active, updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating user {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to update user: {str(e)}")
        changed = (result.rowcount or 0) == 1
        if changed:
            self._expire_cached(user_id)
        return changed
