"""Engine construction and session binding."""

from sqlalchemy import text
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool
import pytest

from servitech.database import SessionLocal, build_engine, init_session_factory
from servitech.database.session_utils import get_dialect_name


@pytest.mark.unit
def test_memory_sqlite_uses_static_pool():
    engine = build_engine("sqlite://")
    assert isinstance(engine.pool, StaticPool)


@pytest.mark.unit
def test_sqlite_enforces_foreign_keys(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'fk.db'}")
    with engine.connect() as connection:
        assert connection.execute(text("PRAGMA foreign_keys")).scalar() == 1


@pytest.mark.unit
def test_init_session_factory_binds_given_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'bind.db'}")
    factory = init_session_factory(engine)
    assert factory is SessionLocal
    with factory() as session:
        assert session.get_bind() is engine
        assert get_dialect_name(session) == "sqlite"


@pytest.mark.unit
def test_unbound_session_falls_back_to_default():
    with Session() as session:
        assert get_dialect_name(session, default="postgresql") == "postgresql"
