"""
Integration tests for cached reputation lookups.

These run the real lookup service, cache and feed fetcher together, with
only the HTTP layer mocked.
"""

import json
import threading
import time
import pytest
from unittest.mock import patch, MagicMock
import requests
from ipreputation.cache import MemoryStore, ObjectCache
from ipreputation.fetchers.base import DataFetcher, FetchResult, NOT_FOUND
from ipreputation.fetchers.feed import FeedDataFetcher
from ipreputation.fetchers.null import NullDataFetcher
from ipreputation.lookup import IPReputationLookup, TIMING_METRIC, RESULT_METRIC
from ipreputation.response import IPReputationResponse
from ipreputation.stats import StatsRecorder


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_response(status_code=200, body=None, text=None):
    """Build a mock requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    if text is None:
        text = json.dumps(body) if body is not None else ''
    response.text = text
    response.json.side_effect = lambda: json.loads(text)
    return response


class TestIPReputationLookup:
    """Test cases for IPReputationLookup with the feed backend."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = FakeClock()
        self.store = MemoryStore(clock=self.clock)
        self.cache = ObjectCache(self.store, clock=self.clock, lock_poll_interval=0.01)
        self.stats = StatsRecorder()
        self.fetcher = FeedDataFetcher("http://localhost:6035", timeout=10, connect_timeout=1)
        self.lookup = IPReputationLookup(self.fetcher, self.cache, self.stats)

    def timings(self):
        return self.stats.with_component('IPReputation').samples(TIMING_METRIC)

    def cached_entry(self, ip):
        return self.cache.get_entry(self.lookup.make_key(ip))

    @patch('requests.get')
    def test_found(self, mock_get):
        """Test a known IP returns a response and records one timing."""
        mock_get.return_value = make_response(200, {
            '1.2.3.4': {'risks': ['TUNNEL'], 'tunnels': ['PROXY']}
        })

        result = self.lookup.lookup('1.2.3.4', 'test_found')

        assert isinstance(result, IPReputationResponse)
        assert result.to_dict() == IPReputationResponse.from_raw(
            {'risks': ['TUNNEL'], 'tunnels': ['PROXY']}
        ).to_dict()

        samples = self.timings()
        assert len(samples) == 1
        assert samples[0].labels == {'caller': 'test_found', 'backend': 'feed'}

    @patch('requests.get')
    def test_cached_result_reused(self, mock_get):
        """Test a second lookup within the TTL does not hit the backend."""
        mock_get.return_value = make_response(200, {'1.2.3.4': {'risks': ['TUNNEL']}})

        first = self.lookup.lookup('1.2.3.4', 'test')
        second = self.lookup.lookup('1.2.3.4', 'test')

        assert first == second
        assert mock_get.call_count == 1
        assert len(self.timings()) == 1

    @patch('requests.get')
    def test_cache_key(self, mock_get):
        """Test the cache key is global and uses the normalized IP."""
        mock_get.return_value = make_response(200, {'2001:db8::ab': {'risks': ['TUNNEL']}})

        self.lookup.lookup('2001:DB8:0:0:0:0:0:AB', 'test')

        assert mock_get.call_args[0][0] == "http://localhost:6035/feed/v1/ip/2001:db8::ab"
        assert self.store.get('global:ipreputation-ipoid:2001:db8::ab') is not None

    @patch('ipreputation.fetchers.base.logger')
    @patch('requests.get')
    def test_not_found(self, mock_get, mock_logger):
        """Test a 404 returns None, logs nothing and is cached."""
        mock_get.return_value = make_response(404)

        assert self.lookup.lookup('1.2.3.4', 'test') is None
        assert self.lookup.lookup('1.2.3.4', 'test') is None

        mock_logger.error.assert_not_called()
        assert mock_get.call_count == 1
        assert self.cached_entry('1.2.3.4')['value'] is None
        assert len(self.timings()) == 1

    @patch('ipreputation.fetchers.base.logger')
    @patch('requests.get')
    def test_malformed_json_not_cached(self, mock_get, mock_logger):
        """Test malformed data returns None, logs an error and leaves no negative entry."""
        mock_get.return_value = make_response(200, text='foo')

        assert self.lookup.lookup('1.2.3.4', 'test') is None

        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args[1]['extra']['response'] == 'foo'
        assert self.cached_entry('1.2.3.4') is None
        assert self.timings() == []

        # The next lookup retries the backend
        mock_get.return_value = make_response(200, {'1.2.3.4': {'risks': ['TUNNEL']}})
        assert self.lookup.lookup('1.2.3.4', 'test').get_risks() == ['TUNNEL']
        assert mock_get.call_count == 2

    @patch('requests.get')
    def test_stale_fallback_when_backend_unavailable(self, mock_get):
        """Test expired data is served, with a short TTL, while the backend is down."""
        mock_get.return_value = make_response(200, {'1.2.3.4': {'risks': ['TUNNEL']}})
        self.lookup.lookup('1.2.3.4', 'test')

        self.clock.advance(3601)
        mock_get.return_value = make_response(500, text='Internal Server Error')

        result = self.lookup.lookup('1.2.3.4', 'test')

        assert result is not None
        assert result.get_risks() == ['TUNNEL']
        entry = self.cached_entry('1.2.3.4')
        assert entry['ttl'] == 300
        assert entry['created'] == self.clock.now

        # Within the short TTL the stale value is served from cache
        self.clock.advance(299)
        assert self.lookup.lookup('1.2.3.4', 'test').get_risks() == ['TUNNEL']
        assert mock_get.call_count == 2

        # After it, the backend is retried
        self.clock.advance(2)
        mock_get.return_value = make_response(200, {'1.2.3.4': {'risks': ['CALLBACK_PROXY']}})
        assert self.lookup.lookup('1.2.3.4', 'test').get_risks() == ['CALLBACK_PROXY']
        assert self.cached_entry('1.2.3.4')['ttl'] == 3600

    @patch('requests.get')
    def test_stale_fallback_on_transport_error(self, mock_get):
        mock_get.return_value = make_response(200, {'1.2.3.4': {'risks': ['TUNNEL']}})
        self.lookup.lookup('1.2.3.4', 'test')
        self.clock.advance(3601)
        mock_get.side_effect = requests.exceptions.ConnectTimeout("timed out")

        assert self.lookup.lookup('1.2.3.4', 'test').get_risks() == ['TUNNEL']

    @patch('requests.get')
    def test_not_found_overrides_stale_value(self, mock_get):
        """Test a legitimate not-found is never replaced by stale data."""
        mock_get.return_value = make_response(200, {'1.2.3.4': {'risks': ['TUNNEL']}})
        self.lookup.lookup('1.2.3.4', 'test')

        self.clock.advance(3601)
        mock_get.return_value = make_response(404)

        assert self.lookup.lookup('1.2.3.4', 'test') is None
        assert self.cached_entry('1.2.3.4')['value'] is None

    @patch('requests.get')
    def test_stale_data_evicted_after_retention(self, mock_get):
        """Test there is no fallback once the retention window has passed."""
        mock_get.return_value = make_response(200, {'1.2.3.4': {'risks': ['TUNNEL']}})
        self.lookup.lookup('1.2.3.4', 'test')

        self.clock.advance(72 * 3600 + 1)
        mock_get.return_value = make_response(500, text='error')

        assert self.lookup.lookup('1.2.3.4', 'test') is None

    @patch('requests.get')
    def test_use_cache_false_forces_fetch(self, mock_get):
        """Test bypassing the cache fetches and overwrites a fresh entry."""
        mock_get.return_value = make_response(200, {'1.2.3.4': {'risks': ['TUNNEL']}})
        self.lookup.lookup('1.2.3.4', 'test')

        mock_get.return_value = make_response(200, {'1.2.3.4': {'risks': ['CALLBACK_PROXY']}})
        result = self.lookup.lookup('1.2.3.4', 'test', use_cache=False)

        assert result.get_risks() == ['CALLBACK_PROXY']
        assert mock_get.call_count == 2
        assert self.cached_entry('1.2.3.4')['value']['risks'] == ['CALLBACK_PROXY']
        assert self.lookup.lookup('1.2.3.4', 'test').get_risks() == ['CALLBACK_PROXY']
        assert mock_get.call_count == 2

    @patch('ipreputation.lookup.logger')
    @patch('requests.get')
    def test_invalid_ip(self, mock_get, mock_logger):
        """Test an invalid IP returns None without a backend call."""
        assert self.lookup.lookup('not-an-ip', 'test') is None
        mock_get.assert_not_called()
        mock_logger.warning.assert_called_once()

    def test_result_counter(self):
        with patch('requests.get', return_value=make_response(404)):
            self.lookup.lookup('1.2.3.4', 'test')
        with patch('requests.get', return_value=make_response(500, text='x')):
            self.lookup.lookup('5.6.7.8', 'test')

        stats = self.stats.with_component('IPReputation')
        assert stats.counter(RESULT_METRIC, backend='feed', result='not_found') == 1
        assert stats.counter(RESULT_METRIC, backend='feed', result='unavailable') == 1


class TestLookupWithoutBackend:
    """Test cases for the null backend."""

    def test_no_backend_returns_none_without_timing(self):
        stats = StatsRecorder()
        lookup = IPReputationLookup(NullDataFetcher(), ObjectCache(MemoryStore()), stats)

        with patch('requests.get') as mock_get:
            assert lookup.lookup('1.2.3.4', 'test') is None
            mock_get.assert_not_called()

        assert stats.with_component('IPReputation').samples(TIMING_METRIC) == []
        assert lookup.cache.get_entry(lookup.make_key('1.2.3.4')) is None


class TestLookupFailureIsolation:
    """Test that lookup never raises."""

    def test_fetcher_exception(self):
        fetcher = MagicMock(spec=DataFetcher)
        fetcher.backend_name = 'broken'
        fetcher.fetch.side_effect = RuntimeError("unexpected")
        lookup = IPReputationLookup(fetcher, ObjectCache(MemoryStore()))

        with patch('ipreputation.lookup.logger') as mock_logger:
            assert lookup.lookup('1.2.3.4', 'test') is None
            mock_logger.exception.assert_called_once()

    def test_cache_exception(self):
        fetcher = MagicMock(spec=DataFetcher)
        fetcher.backend_name = 'mock'
        cache = MagicMock(spec=ObjectCache)
        cache.make_global_key.return_value = 'key'
        cache.get_with_set_callback.side_effect = ConnectionError("cache down")
        lookup = IPReputationLookup(fetcher, cache)

        assert lookup.lookup('1.2.3.4', 'test') is None


class SlowFetcher(DataFetcher):
    """Fetcher that blocks long enough for concurrent lookups to overlap."""

    backend_name = 'slow'

    def __init__(self, delay=0.2):
        super().__init__(timeout=5, connect_timeout=1)
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def fetch(self, ip_address, caller):
        with self._lock:
            self.calls += 1
        time.sleep(self.delay)
        if ip_address == '9.9.9.9':
            return NOT_FOUND
        return FetchResult.found({'risks': ['TUNNEL']})


class TestRequestCoalescing:
    """Test that concurrent lookups share one backend request."""

    def test_concurrent_lookups_fetch_once(self):
        fetcher = SlowFetcher()
        stats = StatsRecorder()
        lookup = IPReputationLookup(fetcher, ObjectCache(MemoryStore(), lock_poll_interval=0.01),
                                    stats, lock_tts=5.0)
        results = []

        def worker():
            results.append(lookup.lookup('1.2.3.4', 'test'))

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert fetcher.calls == 1
        assert len(results) == 10
        assert all(r is not None and r.get_risks() == ['TUNNEL'] for r in results)
        assert len(stats.with_component('IPReputation').samples(TIMING_METRIC)) == 1

    def test_concurrent_not_found_fetch_once(self):
        fetcher = SlowFetcher()
        lookup = IPReputationLookup(fetcher, ObjectCache(MemoryStore(), lock_poll_interval=0.01), lock_tts=5.0)
        results = []

        threads = [threading.Thread(target=lambda: results.append(lookup.lookup('9.9.9.9', 'test')))
                   for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert fetcher.calls == 1
        assert results == [None] * 5

    def test_fetch_slower_than_lock_wait_is_not_duplicated(self):
        """Test default settings when the fetch outlasts the lock wait."""
        fetcher = SlowFetcher(delay=1.5)
        lookup = IPReputationLookup(fetcher, ObjectCache(MemoryStore()))
        results = []

        threads = [threading.Thread(target=lambda: results.append(lookup.lookup('1.2.3.4', 'test')))
                   for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert fetcher.calls == 1
        assert len(results) == 5
        assert any(r is not None for r in results)

        # The value stored by the single fetch serves later lookups
        assert lookup.lookup('1.2.3.4', 'test').get_risks() == ['TUNNEL']
        assert fetcher.calls == 1

    @pytest.mark.parametrize("ip", ['1.2.3.4', '5.6.7.8'])
    def test_different_ips_fetch_independently(self, ip):
        fetcher = SlowFetcher()
        lookup = IPReputationLookup(fetcher, ObjectCache(MemoryStore()))

        lookup.lookup(ip, 'test')
        lookup.lookup('8.8.4.4', 'test')

        assert fetcher.calls == 2
