"""
Pytest configuration and shared fixtures
"""
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable, List

import pytest
import pytest_asyncio

from automation_engine.core import RetryPolicy, WorkflowCatalog, WorkflowEngine, WorkflowParser
from automation_engine.integrations import EventBus, RecordingMessageDispatcher
from automation_engine.storage import DatabaseManager, InMemoryRunStore, RunStore, SQLAlchemyRunStore


pytest_plugins = ('pytest_asyncio',)


class FrozenClock:
    """Clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSleep:
    """Sleep replacement that records requested delays"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def recorder() -> RecordingMessageDispatcher:
    return RecordingMessageDispatcher()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def memory_store() -> InMemoryRunStore:
    return InMemoryRunStore()


@pytest.fixture
def parser() -> WorkflowParser:
    return WorkflowParser()


@pytest.fixture
def default_catalog() -> WorkflowCatalog:
    return WorkflowCatalog.default()


@pytest.fixture
def make_engine(clock, sleep, recorder, event_bus, memory_store, default_catalog) -> Callable[..., WorkflowEngine]:
    """Build an engine on the frozen clock; keyword arguments override the defaults"""
    def _make(catalog: WorkflowCatalog = None, store: RunStore = None, **kwargs) -> WorkflowEngine:
        options = dict(
            message_dispatcher=recorder,
            event_bus=event_bus,
            retry_policy=RetryPolicy(max_attempts=5, initial_delay=1.0, backoff_factor=2.0, max_delay=60.0),
            clock=clock,
            sleep=sleep,
            owner_id="test-worker",
        )
        options.update(kwargs)
        return WorkflowEngine(
            catalog=catalog if catalog is not None else default_catalog,
            store=store if store is not None else memory_store,
            **options
        )
    return _make


@pytest.fixture
def engine(make_engine) -> WorkflowEngine:
    return make_engine()


@pytest_asyncio.fixture
async def sqlite_db(tmp_path) -> AsyncGenerator[DatabaseManager, None]:
    """File-backed SQLite database, removed with tmp_path"""
    db_manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path}/runs.db")
    await db_manager.initialize()

    yield db_manager

    await db_manager.close()


@pytest.fixture
def sqlite_store(sqlite_db) -> SQLAlchemyRunStore:
    return SQLAlchemyRunStore(sqlite_db)


def workflow_dict(nodes, connections, workflow_id="test_flow", **extra) -> dict:
    """Minimal workflow document around the given nodes and connections"""
    data = {
        "id": workflow_id,
        "name": extra.pop("name", "Test Flow"),
        "nodes": nodes,
        "connections": connections,
    }
    data.update(extra)
    return {"workflow": data}


def trigger_node(name="Webhook", path="test") -> dict:
    return {"name": name, "kind": "trigger", "parameters": {"path": path}}


def send_node(name, to='{{ $node["Webhook"].phone }}', message="hello", **parameters) -> dict:
    return {"name": name, "kind": "action", "parameters": {"to": to, "message": message, **parameters}}


@pytest.fixture
def send_once_workflow(parser):
    """Webhook -> Send"""
    return parser.parse(workflow_dict(
        [trigger_node(path="send-once"), send_node("Send", message='Hi {{ $node["Webhook"].name }}')],
        [{"from": "Webhook", "to": "Send"}],
        workflow_id="send_once",
    ))


@pytest.fixture
def fan_out_workflow(parser):
    """Webhook -> Tag -> (Send A, Send B, Send C)"""
    return parser.parse(workflow_dict(
        [
            trigger_node(path="fan-out"),
            {"name": "Tag", "kind": "transform", "parameters": {"values": {"phone": '{{ $node["Webhook"].phone }}'}}},
            send_node("Send A", message="a"),
            send_node("Send B", message="b"),
            send_node("Send C", message="c"),
        ],
        [
            {"from": "Webhook", "to": "Tag"},
            {"from": "Tag", "to": "Send A"},
            {"from": "Tag", "to": "Send B"},
            {"from": "Tag", "to": "Send C"},
        ],
        workflow_id="fan_out",
    ))
