"""Test configuration and fixtures."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from propsync import (
    ChangeNotifier,
    FormatterRegistry,
    Settings,
    TenantContext,
    init_propsync,
)


@pytest.fixture
def engine():
    """Fresh in-memory database for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def formatter_registry() -> FormatterRegistry:
    return FormatterRegistry()


@pytest.fixture
def tenants() -> TenantContext:
    return TenantContext()


@pytest.fixture
def wiring(engine, formatter_registry, tenants):
    """Inline-mode wiring with its own notifier so tests never share handlers."""
    return init_propsync(
        engine,
        Settings(),
        notifier=ChangeNotifier(),
        formatters=formatter_registry,
        tenants=tenants,
        configure_logs=False,
    )


@pytest.fixture
def store(wiring):
    return wiring.store


@pytest.fixture
def registry(wiring):
    return wiring.registry


@pytest.fixture
def coordinator(wiring):
    return wiring.coordinator


@pytest.fixture
def selector(wiring):
    return wiring.selector
