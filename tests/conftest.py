"""
Shared fixtures: an in-memory SQLite database per test and a session bound
to it. Factories live in factories.py.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from config.database import Base  # noqa: E402

# Register every table on Base.metadata
import modules.admin.models  # noqa: E402,F401
import modules.cart.models  # noqa: E402,F401
import modules.catalog.models  # noqa: E402,F401
import modules.order.models  # noqa: E402,F401
import modules.reward.models  # noqa: E402,F401
import modules.user.models  # noqa: E402,F401
import modules.voucher.models  # noqa: E402,F401


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite: separate connections per session, for race tests."""
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()
