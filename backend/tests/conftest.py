# backend/tests/conftest.py
"""
Shared fixtures: a throwaway SQLite database per test, a frozen clock,
seeded parties and a publisher that records instead of dispatching.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Any, List

import pytest
from sqlalchemy.orm import Session, sessionmaker

from servitech.core.clock import FixedClock
from servitech.core.config import settings
from servitech.database import Base, build_engine
import servitech.models  # noqa: F401
from servitech.models.category import Category
from servitech.models.user import RoleName, User
from servitech.repositories import RepositoryFactory
from servitech.services.advisory_service import AdvisoryRequest, AdvisoryService
from servitech.services.payment_service import PaymentService
from tests.helpers.scheduling import CATEGORY, NOW, RecordingPublisher


@pytest.fixture
def engine(tmp_path):
    # File-backed so concurrent sessions each get their own connection
    engine = build_engine(f"sqlite:///{tmp_path / 'servitech-test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def config():
    return settings.model_copy(update={"notifications_enabled": False})


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


def _make_user(db: Session, email: str, first_name: str, roles: List[str], **extra: Any) -> User:
    user = RepositoryFactory.create_user_repository(db).create(
        email=email, first_name=first_name, last_name="Prueba", roles=roles, **extra
    )
    db.commit()
    return user


@pytest.fixture
def client(db) -> User:
    return _make_user(db, "laura@cliente.co", "Laura", [RoleName.CLIENT.value])


@pytest.fixture
def expert(db) -> User:
    return _make_user(db, "andres@experto.co", "Andrés", [RoleName.EXPERT.value])


@pytest.fixture
def other_expert(db) -> User:
    return _make_user(db, "camila@experto.co", "Camila", [RoleName.EXPERT.value])


@pytest.fixture
def dual_role(db) -> User:
    return _make_user(
        db, "mateo@servitech.co", "Mateo", [RoleName.CLIENT.value, RoleName.EXPERT.value]
    )


@pytest.fixture
def admin(db) -> User:
    return _make_user(db, "admin@servitech.co", "Admin", [RoleName.ADMIN.value])


@pytest.fixture
def stranger(db) -> User:
    return _make_user(db, "sofia@cliente.co", "Sofía", [RoleName.CLIENT.value])


@pytest.fixture
def category(db) -> Category:
    category = RepositoryFactory.create_category_repository(db).create(
        slug=CATEGORY, name="Desarrollo web"
    )
    db.commit()
    return category


@pytest.fixture
def payment_service(db, clock, config) -> PaymentService:
    return PaymentService(db, clock=clock, config=config)


@pytest.fixture
def advisory_service(db, clock, config, publisher) -> AdvisoryService:
    return AdvisoryService(db, clock=clock, config=config, publisher=publisher)


@pytest.fixture
def make_request(client, expert, category, clock):
    """Build an AdvisoryRequest; defaults to tomorrow 10:00 UTC for one hour."""

    def _make(
        start: Any = None,
        duration: int = 60,
        *,
        client_email: str = None,
        expert_email: str = None,
        key: str = None,
    ) -> AdvisoryRequest:
        if start is None:
            start = (clock.now() + timedelta(days=1)).replace(hour=10, minute=0)
        return AdvisoryRequest(
            client_email=client_email or client.email,
            expert_email=expert_email or expert.email,
            start_time=start,
            duration_minutes=duration,
            category=category.slug,
            title="Revisión de arquitectura",
            idempotency_key=key,
        )

    return _make


@pytest.fixture
def book(advisory_service, make_request):
    """Hold a payment and book an advisory in one step; returns the PaymentConfirmation."""

    def _book(start: Any = None, duration: int = 60, *, capture: bool = True, **request_kwargs: Any):
        return advisory_service.book_with_payment(
            make_request(start, duration, **request_kwargs),
            amount=Decimal("100000.00"),
            method="pse",
            capture=capture,
        )

    return _book

