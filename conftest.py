from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from circulation.api import create_app
from circulation.config import settings
from circulation.database import SQLiteStorage
from circulation.library import Library
from circulation.storage import MemoryStorage


class FakeClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    # Keep tests independent of the developer's .env and of each other
    monkeypatch.setattr(settings, "api_key", None)
    monkeypatch.setenv("LIB_CLI_OUTPUT", "plain")


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 10, 9, 0, 0))


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        store = MemoryStorage()
    else:
        store = SQLiteStorage(str(tmp_path / f"test_{request.node.name}.db"))
    yield store
    store.close()


@pytest.fixture
def lib(storage, clock):
    library = Library(storage, clock=clock)
    yield library
    library.close()


@pytest.fixture
def client(lib):
    return TestClient(create_app(lib))
