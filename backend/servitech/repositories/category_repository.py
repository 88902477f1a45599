# backend/servitech/repositories/category_repository.py
"""Category Repository."""

from sqlalchemy.orm import Session

from ..models.category import Category
from .base_repository import BaseRepository


class CategoryRepository(BaseRepository[Category]):
    def __init__(self, db: Session):
        super().__init__(db, Category)

    def is_active_slug(self, slug: str) -> bool:
        return self.exists(slug=slug, is_active=True)
