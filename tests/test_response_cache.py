"""Unit tests for ResponseCache."""
from sources.response_cache import ResponseCache


class FakeClock:

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestResponseCache:

    def test_get_missing_key(self):
        assert ResponseCache().get('missing') is None

    def test_value_expires_after_default_ttl(self):
        clock = FakeClock()
        cache = ResponseCache(default_ttl=300, clock=clock)
        cache.set(('2025-07-01', '2025-07-07', 1, 100), ['page'])

        clock.now = 299
        assert cache.get(('2025-07-01', '2025-07-07', 1, 100)) == ['page']

        clock.now = 300
        assert cache.get(('2025-07-01', '2025-07-07', 1, 100)) is None
        assert len(cache) == 0

    def test_explicit_ttl_overrides_default(self):
        clock = FakeClock()
        cache = ResponseCache(default_ttl=300, clock=clock)
        cache.set('short', 'value', ttl=10)

        clock.now = 11
        assert cache.get('short') is None

    def test_keys_only_lists_live_entries(self):
        clock = FakeClock()
        cache = ResponseCache(default_ttl=60, clock=clock)
        cache.set('old', 1)
        clock.now = 30
        cache.set('new', 2)
        clock.now = 61

        assert cache.keys() == ['new']

    def test_clear(self):
        cache = ResponseCache()
        cache.set('a', 1)
        cache.set('b', 2)

        cache.clear()

        assert len(cache) == 0
        assert cache.get('a') is None
