"""Pytest configuration and fixtures."""
from typing import Callable

import httpx
import pytest

from commute_eta.database import create_db_engine, create_session_factory, init_db
from commute_eta.route_store import RouteStore, TerminalStore
from commute_eta.settings import Settings
from fakes import FakeUpstream


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        data_go_kr_api_key="test-data-key",
        seoul_opendata_api_key="test-seoul-key",
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
    )


@pytest.fixture
def session_factory(settings):
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def route_store(session_factory) -> RouteStore:
    return RouteStore(session_factory)


@pytest.fixture
def terminal_store(session_factory) -> TerminalStore:
    return TerminalStore(session_factory)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def make_client(upstream) -> Callable[[], httpx.AsyncClient]:
    """MockTransport 로 upstream 에 연결된 AsyncClient 를 만든다."""
    def factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    return factory
