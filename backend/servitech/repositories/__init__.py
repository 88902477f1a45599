# backend/servitech/repositories/__init__.py
"""
Repository layer for ServiTech.

Repositories own data access only; services decide transaction boundaries.
"""

from .advisory_repository import AdvisoryRepository
from .base_repository import BaseRepository
from .category_repository import CategoryRepository
from .conflict_checker_repository import ConflictCheckerRepository
from .factory import RepositoryFactory
from .payment_repository import PaymentRepository
from .user_repository import UserRepository

__all__ = [
    "AdvisoryRepository",
    "BaseRepository",
    "CategoryRepository",
    "ConflictCheckerRepository",
    "PaymentRepository",
    "RepositoryFactory",
    "UserRepository",
]
