# backend/servitech/services/directory.py
"""
Identity and category directories.

Account and catalog management live outside the engine; the engine only
needs to resolve parties and check category keys. The Protocols are the
seam, the SQL classes are the default implementations over the
``users`` and ``categories`` tables.
"""

from dataclasses import dataclass
from typing import FrozenSet, Optional, Protocol

from sqlalchemy.orm import Session

from ..models.user import RoleName, User
from ..repositories import RepositoryFactory


@dataclass(frozen=True)
class Party:
    id: str
    email: str
    display_name: str
    roles: FrozenSet[str]
    is_active: bool = True

    def has_role(self, role: RoleName) -> bool:
        return role.value in self.roles

    @property
    def is_admin(self) -> bool:
        return self.has_role(RoleName.ADMIN)


class IdentityDirectory(Protocol):
    def resolve_by_email(self, email: str) -> Optional[Party]:
        ...

    def resolve_by_id(self, party_id: str) -> Optional[Party]:
        ...

    def deactivate(self, party_id: str) -> bool:
        ...


class CategoryDirectory(Protocol):
    def exists(self, category: str) -> bool:
        ...


def _to_party(user: User) -> Party:
    return Party(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        roles=frozenset(user.roles or []),
        is_active=bool(user.is_active),
    )


class SqlIdentityDirectory:
    def __init__(self, db: Session):
        self.users = RepositoryFactory.create_user_repository(db)

    def resolve_by_email(self, email: str) -> Optional[Party]:
        user = self.users.get_by_email(email)
        return _to_party(user) if user else None

    def resolve_by_id(self, party_id: str) -> Optional[Party]:
        user = self.users.get_by_id(party_id)
        return _to_party(user) if user else None

    def deactivate(self, party_id: str) -> bool:
        return self.users.set_active(party_id, False)


class SqlCategoryDirectory:
    def __init__(self, db: Session):
        self.categories = RepositoryFactory.create_category_repository(db)

    def exists(self, category: str) -> bool:
        return self.categories.is_active_slug(category)
