import asyncio

import pytest
from sqlalchemy.orm import sessionmaker

from database import init_db, make_engine
from exceptions import CredentialRejected, PersistenceError, ServiceUnreachable
from models import ProcessorSettings
from settings_store import SettingsStore

ENDPOINT_A = "https://inference-a.example.com"
ENDPOINT_B = "https://inference-b.example.com"
PREVIOUS = ProcessorSettings(endpoint=ENDPOINT_A, credential="old")

class FakeProbe:
    """
    Accepts the (endpoint, credential) pairs in valid.
    Known endpoints reject other keys; unknown endpoints are unreachable.
    """

    def __init__(self, valid=(), error=None, store=None):
        self.valid = set(valid)
        self.error = error
        self.store = store
        self.calls = []
        self.persisted_during_probe = []

    async def probe(self, endpoint, credential):
        self.calls.append((endpoint, credential))
        if self.store is not None:
            self.persisted_during_probe.append(self.store.get())
        if self.error is not None:
            raise self.error
        if (endpoint, credential) in self.valid:
            return
        if endpoint in {e for e, _ in self.valid}:
            raise CredentialRejected(f"{endpoint} rejected {credential}")
        raise ServiceUnreachable(f"{endpoint} unreachable")

class SlowFailingProbe:
    """Fails every ping after a short delay, so attempts overlap."""

    def __init__(self, delay=0.01):
        self.delay = delay
        self.calls = []

    async def probe(self, endpoint, credential):
        self.calls.append((endpoint, credential))
        await asyncio.sleep(self.delay)
        raise ServiceUnreachable(f"{endpoint} timed out")

class BlockingProbe:
    """Never answers; lets tests cancel a validation that is in flight."""

    def __init__(self):
        self.started = asyncio.Event()
        self.calls = []

    async def probe(self, endpoint, credential):
        self.calls.append((endpoint, credential))
        self.started.set()
        await asyncio.Event().wait()

class FlakyStore(SettingsStore):
    """Fails the set() and get() calls whose 1-based index is in fail_on and fail_get_on."""

    def __init__(self, session_factory, fail_on=(), fail_get_on=()):
        super().__init__(session_factory)
        self.fail_on = set(fail_on)
        self.fail_get_on = set(fail_get_on)
        self.set_calls = 0
        self.get_calls = 0

    def get(self):
        self.get_calls += 1
        if self.get_calls in self.fail_get_on:
            raise PersistenceError("settings unreadable")
        return super().get()

    def set(self, processor_settings):
        self.set_calls += 1
        if self.set_calls in self.fail_on:
            raise PersistenceError("disk full")
        super().set(processor_settings)

@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()

@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture
def store(session_factory):
    store = SettingsStore(session_factory)
    store.set(PREVIOUS)
    return store
