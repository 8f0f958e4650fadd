"""Pytest fixtures."""

from typing import Callable, Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from zai_adapter.core import create_pipeline
from zai_adapter.main import app
from tests.helpers import FakeUpstream, make_settings


@pytest.fixture
def upstream() -> FakeUpstream:
    """Fake upstream shared by the test client."""
    return FakeUpstream()


@pytest.fixture
def make_client(upstream: FakeUpstream) -> Iterator[Callable[..., TestClient]]:
    """Build a test client whose pipeline talks to the fake upstream."""

    def _make(**overrides) -> TestClient:
        settings = make_settings(**overrides)
        http = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
        app.state.pipeline = create_pipeline(settings, http)
        return TestClient(app)

    yield _make
    app.state.pipeline = None


@pytest.fixture
def client(make_client: Callable[..., TestClient]) -> TestClient:
    """Create test client with default settings."""
    return make_client()
