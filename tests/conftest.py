#!/usr/bin/env python3
"""
Pytest Configuration and Shared Fixtures

Provides shared fixtures and configuration for all tests.
"""

import pytest
import asyncio
import tempfile
import sys
import os
from datetime import datetime
from pathlib import Path

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings
from entitlements.analytics import RecordingAnalyticsSink
from entitlements.clock import FixedClock
from entitlements.engine import EntitlementEngine
from entitlements.models import (
    RemoteEntitlement,
    RemoteLookup,
    PeriodType,
)
from entitlements.remote import RemoteEntitlementProvider
from entitlements.state_store import InMemoryStateStore


# ============================================================================
# ASYNCIO CONFIGURATION
# ============================================================================
# Note: pytest-asyncio is configured with asyncio_mode = "auto" in pyproject.toml
# The event loop is automatically managed per-function by default


# ============================================================================
# FAKE COLLABORATORS
# ============================================================================

class FakeProvider(RemoteEntitlementProvider):
    """Ledger stand-in with a scripted answer, delay or error"""

    def __init__(self, lookup: RemoteLookup = None):
        self.lookup = lookup or RemoteLookup.inactive()
        self.delay: float = 0.0
        self.error: Exception = None
        self.calls = 0

    async def fetch_entitlement(self, user_id: str) -> RemoteLookup:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.lookup

    def answer_active(self, product_id: str, period_type: PeriodType = PeriodType.NORMAL):
        self.error = None
        self.delay = 0.0
        self.lookup = RemoteLookup.active(RemoteEntitlement(
            active=True, product_id=product_id, period_type=period_type,
        ))

    def answer_inactive(self, had_entitlement: bool = False):
        self.error = None
        self.delay = 0.0
        self.lookup = RemoteLookup.inactive(had_entitlement=had_entitlement)

    def go_offline(self):
        self.error = ConnectionError("network unreachable")


class FailingAnalyticsSink(RecordingAnalyticsSink):
    """Sink that raises on every event"""

    def capture(self, event, properties=None):
        raise RuntimeError("analytics backend down")


# ============================================================================
# TEMPORARY DIRECTORIES
# ============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ============================================================================
# ENGINE FIXTURES
# ============================================================================

@pytest.fixture
def test_settings(temp_dir):
    """Settings with the production plan limits and no network access"""
    return Settings(
        STORAGE_DIR=str(temp_dir),
        TRIAL_DURATION_DAYS=3,
        FREE_DAILY_SESSIONS=1,
        TRIAL_DAILY_SESSIONS=10,
        PREMIUM_DAILY_SESSIONS=10,
        REMOTE_TIMEOUT_SECONDS=0.2,
        REVENUECAT_API_KEY=None,
        ANALYTICS_URL=None,
        TIMEZONE=None,
    )


@pytest.fixture
def store():
    """Empty in-memory state store"""
    return InMemoryStateStore()


@pytest.fixture
def provider():
    """Ledger that reports no entitlement"""
    return FakeProvider()


@pytest.fixture
def analytics():
    """Sink that records every event"""
    return RecordingAnalyticsSink()


@pytest.fixture
def clock():
    """Clock frozen on a Monday morning"""
    return FixedClock(datetime(2025, 3, 10, 9, 0, 0))


@pytest.fixture
def engine(store, provider, test_settings, analytics, clock):
    """Engine wired to fakes, signed in as user_123"""
    return EntitlementEngine(
        store=store,
        provider=provider,
        settings=test_settings,
        user_id="user_123",
        analytics=analytics,
        clock=clock,
    )


# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================

def pytest_configure(config):
    """Configure pytest markers"""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may require network)"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (may take several seconds)"
    )
