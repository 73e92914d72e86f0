import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["REDIS_URL"] = ""

import pytest
from sqlalchemy.pool import StaticPool

from wordledger.db.migrations import run_migrations
from wordledger.db.session import build_engine, build_session_factory


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    run_migrations(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = build_session_factory(engine)()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
