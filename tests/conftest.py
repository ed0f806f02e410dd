import pathlib
import sys

import pytest
from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from reporthub.main import create_app
from reporthub.providers import build_default_registry
from reporthub.repositories import InMemoryDatabase
from reporthub.service import ReportService, service
from reporthub.settings import HubSettings


@pytest.fixture(autouse=True)
def reset_service():
    service.reset()
    yield


@pytest.fixture
def database() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture
def registry(database: InMemoryDatabase):
    return build_default_registry(database.collection)


@pytest.fixture
def hub(registry, database: InMemoryDatabase) -> ReportService:
    return ReportService(registry, settings=HubSettings.from_env({}), database=database)


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app())
