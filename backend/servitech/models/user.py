# backend/servitech/models/user.py
"""
Party directory table backing the default identity directory.

Accounts are managed elsewhere; the engine only needs email, display name,
roles and the active flag to validate bookings.
"""

from enum import Enum
from typing import List

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..database import Base
from .types import StringArrayType, TimestampMixin


class RoleName(str, Enum):
    CLIENT = "cliente"
    EXPERT = "experto"
    ADMIN = "admin"


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    roles: Mapped[List[str]] = mapped_column(StringArrayType(), nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def has_role(self, role: RoleName) -> bool:
        return role.value in (self.roles or [])

    def __repr__(self) -> str:
        return f"<User {self.id} {self.email} roles={self.roles}>"
