import os

# Keep every test on an in-memory database, whatever .env says.
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import meterhub.models  # noqa: F401
from meterhub.core.database import Base
from meterhub.services.store import MeterStore


DEFAULT_SETTINGS = {"warning_threshold": 25.0, "alert_threshold": 30.0}


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return MeterStore(session_factory, default_settings=DEFAULT_SETTINGS)
