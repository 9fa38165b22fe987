"""Shared pytest fixtures for the FormFlow automation engine test suite.

Provides:
- In-memory async SQLite database (no PostgreSQL needed for tests)
- A fresh, unfrozen action registry per test
- In-memory automation service factory
- FastAPI test client (httpx.AsyncClient) wired to the in-memory service
- Workflow definition builders
"""

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("LEASE_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")

from actions.registry import ActionRegistry  # noqa: E402
from db.database import create_session_factory, init_db  # noqa: E402
from services.automation_service import AutomationService  # noqa: E402
from workflow.engine import Interpreter  # noqa: E402
from workflow.ledger import InMemorySyncLedger  # noqa: E402
from workflow.retry_strategies import RetryCoordinator  # noqa: E402
from workflow.store import InMemoryExecutionStore  # noqa: E402


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database with every table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

class RecordingSleep:
    """Stand-in for asyncio.sleep that records the requested durations."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def registry():
    """Registry with the built-in actions; tests may register more."""
    return ActionRegistry()


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def make_service(registry, fake_sleep):
    """Build an in-memory service; keyword arguments go to the Interpreter."""

    def factory(**interpreter_kwargs) -> AutomationService:
        executions = InMemoryExecutionStore()
        ledger = InMemorySyncLedger()
        interpreter_kwargs.setdefault("sleep", fake_sleep)
        interpreter = Interpreter(
            registry, executions, ledger, RetryCoordinator(), **interpreter_kwargs
        )
        return AutomationService.in_memory(
            executions=executions,
            ledger=ledger,
            registry=registry,
            interpreter=interpreter,
        )

    return factory


@pytest.fixture
def service(make_service):
    return make_service()


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def app(service):
    """FastAPI app whose routes use the in-memory service."""
    from app.dependencies import get_service
    from app.main import create_app

    test_app = create_app()
    test_app.dependency_overrides[get_service] = lambda: service
    yield test_app
    test_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac


# ---------------------------------------------------------------------------
# Workflow definitions
# ---------------------------------------------------------------------------

def linear_definition(*middle: dict, end_output: dict = None) -> dict:
    """start -> middle[0] -> ... -> done"""
    nodes = [{"id": "start", "type": "start"}, *middle]
    nodes.append({"id": "done", "type": "end", "config": {"output": end_output or {}}})
    ids = [n["id"] for n in nodes]
    connections = [{"from": a, "to": b} for a, b in zip(ids, ids[1:])]
    return {"nodes": nodes, "connections": connections}


@pytest.fixture
def build_linear():
    return linear_definition


@pytest.fixture
def age_definition():
    """Adults get a greeting logged; minors go straight to the end."""
    return {
        "nodes": [
            {"id": "start", "type": "start"},
            {
                "id": "check_age",
                "type": "condition",
                "config": {"conditions": [{"field": "age", "operator": "greater_than", "value": 18}]},
            },
            {
                "id": "welcome",
                "type": "action",
                "action_id": "log",
                "config": {"message": "Welcome {{submission.name}}", "output_variable": "greeting"},
            },
            {
                "id": "done",
                "type": "end",
                "config": {"output": {"email": "{{submission.email}}", "greeting": "{{greeting.message}}"}},
            },
        ],
        "connections": [
            {"from": "start", "to": "check_age"},
            {"from": "check_age", "to": "welcome", "output_index": 0},
            {"from": "check_age", "to": "done", "output_index": 1},
            {"from": "welcome", "to": "done"},
        ],
    }
