from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from evento_sync import db as dbmod
from evento_sync.core import config as configmod
from evento_sync.db import Base, get_engine
from evento_sync.main import app
from tests.helpers import FakeClock


@pytest.fixture(autouse=True)
def _reset_settings_and_db_caches() -> None:
    configmod.get_settings.cache_clear()
    dbmod.get_engine.cache_clear()
    dbmod.get_sessionmaker.cache_clear()
    yield
    configmod.get_settings.cache_clear()
    dbmod.get_engine.cache_clear()
    dbmod.get_sessionmaker.cache_clear()


@pytest.fixture(autouse=True)
def reset_db(_reset_settings_and_db_caches) -> None:
    Base.metadata.drop_all(bind=get_engine())
    Base.metadata.create_all(bind=get_engine())


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
