from __future__ import annotations

import os
import tempfile
from datetime import timedelta
from typing import Generator, Any

os.environ.setdefault("FINBOARD_CSRF_ENABLED", "false")
os.environ.setdefault("FINBOARD_LOG_LEVEL", "WARNING")

import pytest
from sqlalchemy.orm import sessionmaker

from finboard.core.database import Base, build_engine, get_db
from finboard.core.deps import get_current_user
from finboard.core.rate_limit import account_deletion_limiter, data_export_limiter
from finboard.main import app
from finboard import models
from finboard.services.stock_prices import reset_stock_api_state

DEMO_EMAIL = "demo@example.com"


@pytest.fixture(scope="session")
def test_db_url() -> Generator[str, Any, Any]:
    # Temp-file SQLite so the developer's database is never touched
    fd, path = tempfile.mkstemp(prefix="finboard_test_", suffix=".sqlite3")
    os.close(fd)
    url = f"sqlite:///{path}"
    yield url
    for suffix in ("", "-wal", "-shm"):
        try:
            os.remove(path + suffix)
        except OSError:
            pass


@pytest.fixture(scope="session")
def engine(test_db_url: str):
    eng = build_engine(test_db_url)
    Base.metadata.create_all(eng)
    return eng


def make_user(session, email: str, *, display_name: str | None = None, trial_days: int = 14) -> models.User:
    """Add a user with a trialing subscription and a SELF account."""
    user = models.User(email=email, display_name=display_name)
    session.add(user)
    session.flush()
    session.add(
        models.Subscription(
            user_id=user.id,
            status=models.SubscriptionStatus.TRIALING,
            trial_ends_at=models.utcnow_naive() + timedelta(days=trial_days),
        )
    )
    session.add(models.Account(user_id=user.id, name="Personal", type=models.AccountType.SELF))
    session.commit()
    return user


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Any, Any, Any]:
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSessionLocal()
    # Seed: demo user (1) with a live trial and one SELF account
    make_user(session, DEMO_EMAIL, display_name="Demo")

    try:
        yield session
    finally:
        session.close()
        with engine.connect() as conn:
            if engine.dialect.name == "sqlite":
                conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
            for tbl in reversed(Base.metadata.sorted_tables):
                conn.execute(tbl.delete())
            # SQLite ignores PRAGMA foreign_keys inside a transaction, so commit first
            conn.commit()
            if engine.dialect.name == "sqlite":
                conn.exec_driver_sql("PRAGMA foreign_keys=ON")
            conn.commit()


@pytest.fixture()
def demo_user(db_session) -> models.User:
    return db_session.query(models.User).filter(models.User.email == DEMO_EMAIL).one()


@pytest.fixture()
def demo_account(db_session, demo_user) -> models.Account:
    return (
        db_session.query(models.Account)
        .filter(models.Account.user_id == demo_user.id)
        .order_by(models.Account.id)
        .first()
    )


def _override_user(session, user_id: int) -> None:
    """Act as ``user_id`` for every request until overridden again."""

    def _current_user_override():
        return session.get(models.User, user_id)

    app.dependency_overrides[get_current_user] = _current_user_override


@pytest.fixture(autouse=True)
def override_dependency(db_session, demo_user):
    # FastAPI DI override
    def _get_db_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db_override
    _override_user(db_session, demo_user.id)
    data_export_limiter.reset()
    account_deletion_limiter.reset()
    reset_stock_api_state()
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def act_as(db_session):
    def _act_as(user: models.User) -> None:
        _override_user(db_session, user.id)

    return _act_as


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c
