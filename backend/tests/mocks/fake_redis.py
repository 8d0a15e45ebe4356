"""
In-memory stand-ins for the Redis client used by the slot cache.

FakeRedis implements the hash commands, key expiry and pipelines the
store relies on, with expiry evaluated against an injectable clock.
FailingRedis raises ConnectionError on every call.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from redis.exceptions import ConnectionError as RedisConnectionError


class FakePipeline:
    def __init__(self, backend: "FakeRedis") -> None:
        self.backend = backend
        self.ops: List[Callable[[], Any]] = []

    def __getattr__(self, name: str):
        command = getattr(self.backend, name)

        def queue(*args, **kwargs) -> "FakePipeline":
            self.ops.append(lambda: command(*args, **kwargs))
            return self

        return queue

    def execute(self) -> List[Any]:
        results = [op() for op in self.ops]
        self.ops = []
        return results


class FakeRedis:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.expire_at: Dict[str, float] = {}
        self.clock = clock

    def _now(self) -> float:
        if self.clock is None:
            return datetime.now().timestamp()
        return self.clock().timestamp()

    def _purge(self, key: str) -> None:
        deadline = self.expire_at.get(key)
        if deadline is not None and deadline <= self._now():
            self.hashes.pop(key, None)
            self.expire_at.pop(key, None)

    def pipeline(self) -> FakePipeline:
        return FakePipeline(self)

    def ping(self) -> bool:
        return True

    def hset(self, key: str, field: Optional[str] = None, value: Any = None, mapping: Optional[dict] = None) -> int:
        self._purge(key)
        items = dict(mapping or {})
        if field is not None:
            items[field] = value
        bucket = self.hashes.setdefault(key, {})
        added = sum(1 for name in items if name not in bucket)
        bucket.update({name: str(val) for name, val in items.items()})
        return added

    def hgetall(self, key: str) -> Dict[str, str]:
        self._purge(key)
        return dict(self.hashes.get(key, {}))

    def hexists(self, key: str, field: str) -> bool:
        self._purge(key)
        return field in self.hashes.get(key, {})

    def hdel(self, key: str, *fields: str) -> int:
        self._purge(key)
        bucket = self.hashes.get(key, {})
        removed = 0
        for name in fields:
            if bucket.pop(name, None) is not None:
                removed += 1
        if key in self.hashes and not bucket:
            self.delete(key)
        return removed

    def expire(self, key: str, seconds: int) -> bool:
        if key not in self.hashes:
            return False
        self.expire_at[key] = self._now() + seconds
        return True

    def expireat(self, key: str, when: int) -> bool:
        if key not in self.hashes:
            return False
        self.expire_at[key] = float(when)
        return True

    def ttl(self, key: str) -> int:
        self._purge(key)
        if key not in self.hashes:
            return -2
        if key not in self.expire_at:
            return -1
        return int(self.expire_at[key] - self._now())

    def exists(self, *keys: str) -> int:
        count = 0
        for key in keys:
            self._purge(key)
            count += key in self.hashes
        return count

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.hashes.pop(key, None) is not None:
                removed += 1
            self.expire_at.pop(key, None)
        return removed

    def flushall(self) -> None:
        self.hashes.clear()
        self.expire_at.clear()


class FailingPipeline:
    def __getattr__(self, name: str):
        def queue(*args, **kwargs) -> "FailingPipeline":
            return self

        return queue

    def execute(self):
        raise RedisConnectionError("Connection refused")


class FailingRedis:
    def pipeline(self) -> FailingPipeline:
        return FailingPipeline()

    def __getattr__(self, name: str):
        def fail(*args, **kwargs):
            raise RedisConnectionError("Connection refused")

        return fail
