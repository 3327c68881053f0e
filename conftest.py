"""
Shared test fixtures.

Process-local state (reference cache, throttle counters, live connections,
error counters) outlives the per-test database rollback, so it is reset
around every test.
"""
import pytest


@pytest.fixture(autouse=True)
def reset_process_state():
    from django.core.cache import cache
    from backend.core.ttl_cache import reference_cache
    from backend.monitoring.connections import registry
    from backend.monitoring.errors import error_stats

    reference_cache.clear()
    cache.clear()
    error_stats.reset()
    yield
    reference_cache.clear()
    registry.clear()
    error_stats.reset()
