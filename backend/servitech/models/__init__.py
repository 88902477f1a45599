"""ORM models. Importing this package registers every table on ``Base.metadata``."""

from .advisory import Advisory
from .category import Category
from .payment import Payment
from .user import User

__all__ = ["Advisory", "Category", "Payment", "User"]
