import os

# Settings are read once and cached, so point them at throwaway backends
# before anything from app is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CACHE_ENABLED"] = "false"
os.environ["HUGGINGFACE_API_KEY"] = ""

import pytest
import redis

from app.models.entities import Client, PriorityWeights, Task, Worker
from app.models.rules import BusinessRule, CoRun, LoadLimit, PhaseWindow
from app.services.text_generation import TextGenerator
from app.storage.cache import AllocationCache
from app.storage.database import Base, SessionLocal, engine


class FakeRedis:
    """In-memory stand-in for the handful of redis commands the cache uses."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def delete(self, key):
        self.store.pop(key, None)

    def ping(self):
        return True


class UnreachableRedis:
    def _fail(self, *args, **kwargs):
        raise redis.ConnectionError("connection refused")

    get = setex = delete = ping = _fail


class CannedGenerator(TextGenerator):
    """Returns a fixed reply and records the prompts it was given."""

    def __init__(self, reply: str):
        self.reply = reply
        self.prompts = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.reply


@pytest.fixture
def weights():
    """Default 50/50/50 priority weights."""
    return PriorityWeights()


@pytest.fixture
def basic_scenario():
    """One client, one python worker with two phases, one short task."""
    clients = [Client(client_id="C1", client_name="Acme", priority_level=1, requested_task_ids=("T1",))]
    workers = [
        Worker(worker_id="W1", worker_name="Ada", skills=("python",), available_slots=(1, 2), max_load_per_phase=2)
    ]
    tasks = [Task(task_id="T1", task_name="Build API", required_skills=("python",), duration=1)]
    return clients, workers, tasks


@pytest.fixture
def busy_scenario():
    """Three clients, workers in two groups and tasks with mixed skills."""
    clients = [
        Client("C1", "Acme", 5, ("T1", "T2"), group_tag="Premium"),
        Client("C2", "Globex", 2, ("T3", "T4")),
        Client("C3", "Initech", 4, ("T5",), group_tag="Premium"),
    ]
    workers = [
        Worker("W1", "Ada", ("python", "sql"), "Backend", (1, 2, 3), 2, 2),
        Worker("W2", "Grace", ("python",), "Backend", (2, 3, 4), 1, 1),
        Worker("W3", "Linus", ("design",), "Frontend", (1, 4), 2, 1),
    ]
    tasks = [
        Task("T1", "API", ("python",), 1),
        Task("T2", "Reports", ("sql",), 2),
        Task("T3", "Mockups", ("design",), 1),
        Task("T4", "Migration", ("python", "sql"), 1),
        Task("T5", "Review", ("python",), 2),
        Task("T6", "Orphan", ("python",), 1),
    ]
    return clients, workers, tasks


@pytest.fixture
def busy_rules():
    """A phase window, a load limit and a co-run pair over busy_scenario."""
    return [
        BusinessRule(id="window-t1", parameters=PhaseWindow(task_id="T1", allowed_phases=(2, 3))),
        BusinessRule(id="limit-backend", parameters=LoadLimit(worker_group="Backend", max_slots_per_phase=2)),
        BusinessRule(id="pair", parameters=CoRun(tasks=("T2", "T4"))),
    ]


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    """Enabled cache backed by FakeRedis."""
    return AllocationCache(enabled=True, ttl_seconds=60, client=fake_redis)


@pytest.fixture
def db_session():
    """Fresh schema in the shared in-memory database."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def api_client(db_session, cache):
    """TestClient wired to the in-memory database, the fake cache and no remote generator."""
    from fastapi.testclient import TestClient

    from app.api.routes import get_generator
    from app.main import app
    from app.storage.cache import get_cache
    from app.storage.database import get_db

    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_generator] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()
