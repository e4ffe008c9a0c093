"""Pytest configuration and fixtures."""

import sys
import time
from pathlib import Path

import pytest
from redis.exceptions import ConnectionError, ResponseError, WatchError

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class FakeRedis:
    """In-process stand-in for a redis.Redis client with decode_responses=True.

    Implements the commands the Redis backend issues. Set ``fail`` to make
    every command raise ConnectionError.
    """

    def __init__(self):
        self.data: dict[str, str] = {}
        self.expiry: dict[str, float] = {}
        self.fail = False
        self.closed = False
        self.commands: list[str] = []

    def _check(self, command: str) -> None:
        self.commands.append(command)
        if self.fail:
            raise ConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    def _live(self, key: str) -> bool:
        deadline = self.expiry.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.data

    def ping(self):
        self._check("PING")
        return True

    def close(self):
        self.closed = True

    def get(self, name):
        self._check("GET")
        return self.data[name] if self._live(name) else None

    def set(self, name, value, ex=None, px=None, nx=False, xx=False, keepttl=False):
        self._check("SET")
        exists = self._live(name)
        if (nx and exists) or (xx and not exists):
            return None
        self.data[name] = str(value)
        if keepttl:
            return True
        self.expiry.pop(name, None)
        if px:
            self.expiry[name] = time.monotonic() + px / 1000
        elif ex:
            self.expiry[name] = time.monotonic() + ex
        return True

    def pexpire(self, name, time_ms):
        self._check("PEXPIRE")
        if not self._live(name):
            return False
        self.expiry[name] = time.monotonic() + time_ms / 1000
        return True

    def pttl(self, name):
        self._check("PTTL")
        if not self._live(name):
            return -2
        if name not in self.expiry:
            return -1
        return int((self.expiry[name] - time.monotonic()) * 1000)

    def exists(self, *names):
        self._check("EXISTS")
        return sum(1 for name in names if self._live(name))

    def delete(self, *names):
        self._check("DEL")
        removed = 0
        for name in names:
            if self._live(name):
                removed += 1
            self.data.pop(name, None)
            self.expiry.pop(name, None)
        return removed

    def incrby(self, name, amount=1):
        self._check("INCRBY")
        current = self.data.get(name, "0") if self._live(name) else "0"
        try:
            number = int(current)
        except ValueError:
            raise ResponseError("value is not an integer or out of range") from None
        if not -(2**63) <= number + amount < 2**63:
            raise ResponseError("increment or decrement would overflow")
        self.data[name] = str(number + amount)
        return number + amount

    def incrbyfloat(self, name, amount=1.0):
        self._check("INCRBYFLOAT")
        current = self.data.get(name, "0") if self._live(name) else "0"
        try:
            number = float(current)
        except ValueError:
            raise ResponseError("value is not a valid float") from None
        self.data[name] = repr(number + amount)
        return number + amount

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def transaction(self, func, *watches, value_from_callable=False, **kwargs):
        """Run func under WATCH, retrying when a watched key changes."""
        while True:
            pipe = FakePipeline(self)
            pipe.watch(*watches)
            try:
                value = func(pipe)
                results = pipe.execute()
            except WatchError:
                continue
            return value if value_from_callable else results


class FakePipeline:
    """Queues FakeRedis commands until execute().

    After watch() commands run immediately until multi(), and execute()
    raises WatchError if a watched key changed in between.
    """

    def __init__(self, client: FakeRedis):
        self._client = client
        self._calls = []
        self._watched: dict[str, str | None] | None = None
        self._immediate = False

    def watch(self, *names):
        self._client.commands.append("WATCH")
        self._watched = {name: self._client.data.get(name) for name in names}
        self._immediate = True

    def multi(self):
        self._client.commands.append("MULTI")
        self._immediate = False

    def __getattr__(self, name):
        method = getattr(self._client, name)
        if self._immediate:
            return method

        def queue(*args, **kwargs):
            self._calls.append((method, args, kwargs))
            return self

        return queue

    def execute(self, raise_on_error=True):
        watched, self._watched = self._watched, None
        if watched and any(self._client.data.get(name) != text for name, text in watched.items()):
            self._calls = []
            raise WatchError("Watched variable changed.")
        results = []
        for method, args, kwargs in self._calls:
            try:
                results.append(method(*args, **kwargs))
            except ResponseError as e:
                if raise_on_error:
                    raise
                results.append(e)
        self._calls = []
        return results


@pytest.fixture
def fake_redis():
    """A fresh in-process Redis stand-in."""
    return FakeRedis()


@pytest.fixture(autouse=True)
def _reset_global_cache():
    """Keep the process-wide cache and settings out of other tests."""
    from tiercache.config.settings import get_settings
    from tiercache.factory import reset_cache

    reset_cache()
    get_settings.cache_clear()
    yield
    reset_cache()
    get_settings.cache_clear()
