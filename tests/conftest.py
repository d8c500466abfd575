"""
Global pytest configuration and fixtures.
"""

import os
from datetime import datetime
from typing import Callable, List

import pytest

from budget_insights.config import Settings
from budget_insights.infrastructure.cache import InMemoryCache
from budget_insights.infrastructure.memory import (
    InMemoryAggregateStore,
    InMemoryAnalyticsStore,
    InMemoryLedger,
)
from budget_insights.models.financial import Transaction
from factories.financial_factory import TransactionFactory

# Every service under test reads time from this clock
FIXED_NOW = datetime(2024, 6, 15, 12, 0, 0)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Test settings configuration."""
    return Settings(
        app_name="budget-insights-test",
        version="1.0.0-test",
        environment="testing",

        # Logging
        log_level="DEBUG",
        log_json=False,

        # Storage
        storage_backend="memory",
        firestore_project_id="test-project",
        use_firestore_emulator=True,
        firestore_emulator_host="localhost:8081",

        # Cache
        redis_url=None,
        cache_default_ttl=300,
        trend_cache_ttl=3600,

        # Views
        view_refresh_lock_ttl=1800,
        view_status_ttl=3600,
        view_refresh_interval=3600,

        # Insights
        insight_validity_days=30,
        pattern_materiality_threshold_cents=1_000_000
    )


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def make_transaction() -> Callable[..., Transaction]:
    """Build a Transaction from factory defaults plus overrides."""
    def _make(**overrides) -> Transaction:
        return Transaction(**TransactionFactory(**overrides))
    return _make


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def analytics_store() -> InMemoryAnalyticsStore:
    return InMemoryAnalyticsStore()


@pytest.fixture
def memory_cache() -> InMemoryCache:
    return InMemoryCache(max_size=100, default_ttl=300)


@pytest.fixture
def aggregate_store(ledger) -> InMemoryAggregateStore:
    return InMemoryAggregateStore(ledger)


@pytest.fixture
def sample_transactions(make_transaction) -> List[Transaction]:
    """A small month of household activity."""
    return [
        make_transaction(
            id="txn_salary",
            amount_cents=300000,
            category_id="cat_salary",
            category_name="Salary",
            merchant="Acme Corp",
            date=datetime(2024, 6, 1, 9, 0)
        ),
        make_transaction(
            id="txn_rent",
            amount_cents=-120000,
            category_id="cat_housing",
            category_name="Housing",
            merchant="Landlord",
            date=datetime(2024, 6, 2, 10, 0)
        ),
        make_transaction(
            id="txn_groceries",
            amount_cents=-8550,
            category_id="cat_food",
            category_name="Food",
            merchant="Grocer",
            date=datetime(2024, 6, 3, 18, 30)
        ),
        make_transaction(
            id="txn_savings_transfer",
            amount_cents=-50000,
            category_id=None,
            category_name=None,
            merchant=None,
            date=datetime(2024, 6, 4, 8, 0),
            transfer_account_id="acc_savings"
        ),
    ]


@pytest.fixture(autouse=True)
def reset_environment():
    """Reset environment variables after each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)


# Pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests (>1s)")
