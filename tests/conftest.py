"""Shared pytest fixtures for menubar-policy tests."""

import pytest

from menubar_policy.engine import ReconciliationEngine
from menubar_policy.event_bus import ChangeEventBus
from menubar_policy.settings_store import InMemorySettingsStore

from tests.fixtures.apps import make_app_bundle
from tests.fixtures.engine import ENGINE_IDENTITY
from tests.fixtures.providers import FakeFrontmostAppProvider


@pytest.fixture
def store():
    return InMemorySettingsStore()


@pytest.fixture
def bus():
    bus = ChangeEventBus()
    yield bus
    bus.close()


@pytest.fixture
def reported_errors():
    """Collects everything passed to the engine's error reporter."""
    return []


@pytest.fixture
def capability():
    """Mutable capability predicate: scopes in `denied` need elevated access."""

    class Capability:
        def __init__(self):
            self.denied = set()
            self.calls = []

        def __call__(self, scope):
            self.calls.append(scope)
            return scope not in self.denied

    return Capability()


@pytest.fixture
def make_engine(store, bus, capability, reported_errors):
    """Factory for engines wired to the shared store/bus fixtures."""
    engines = []

    def factory(registry=None):
        engine = ReconciliationEngine(
            store,
            bus,
            capability,
            registry=registry,
            identity=ENGINE_IDENTITY,
            error_reporter=reported_errors.append,
        )
        engines.append(engine)
        return engine

    yield factory


@pytest.fixture
async def engine(make_engine):
    """Running engine focused on com.example.Editor."""
    engine = make_engine()
    await engine.load_initial_state("com.example.Editor")
    await engine.start()
    yield engine
    await engine.stop()


@pytest.fixture
def app_bundle(tmp_path):
    """Factory creating fake .app bundles under tmp_path."""

    def factory(scope, name, icon="AppIcon"):
        return make_app_bundle(tmp_path / "Applications", scope, name, icon)

    return factory


@pytest.fixture
def provider():
    return FakeFrontmostAppProvider()
