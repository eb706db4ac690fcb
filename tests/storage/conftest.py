import pytest

from livesettings.storage import JSONFileStorage, MemoryStorage, RedisStorage, SQLStorage


class FakePipeline:
    """Queues commands and applies them on execute, like a MULTI/EXEC block."""

    def __init__(self, client):
        self.client = client
        self.commands = []

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self.commands.append((name, args, kwargs))
            return self

        return queue

    def execute(self):
        results = [getattr(self.client, name)(*args, **kwargs) for name, args, kwargs in self.commands]
        self.commands = []
        return results


class FakeRedis:
    """In-process stand-in for the redis commands RedisStorage uses."""

    def __init__(self):
        self.hashes = {}
        self.zsets = {}
        self.lists = {}
        self.calls = []

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    # Hashes

    def hset(self, name, key, value):
        self.hashes.setdefault(name, {})[key] = value
        return 1

    def hget(self, name, key):
        self.calls.append("hget")
        return self.hashes.get(name, {}).get(key)

    def hmget(self, name, keys):
        bucket = self.hashes.get(name, {})
        return [bucket.get(key) for key in keys]

    def hgetall(self, name):
        self.calls.append("hgetall")
        return dict(self.hashes.get(name, {}))

    def hdel(self, name, *keys):
        bucket = self.hashes.get(name, {})
        return sum(1 for key in keys if bucket.pop(key, None) is not None)

    # Sorted sets

    def zadd(self, name, mapping):
        self.zsets.setdefault(name, {}).update(mapping)
        return len(mapping)

    def zrem(self, name, *members):
        bucket = self.zsets.get(name, {})
        return sum(1 for member in members if bucket.pop(member, None) is not None)

    def zrangebyscore(self, name, low, high):
        def bound(value):
            text = str(value)
            if text == "+inf":
                return float("inf"), False
            if text.startswith("("):
                return float(text[1:]), True
            return float(text), False

        low_value, exclusive = bound(low)
        high_value, _ = bound(high)
        members = sorted(self.zsets.get(name, {}).items(), key=lambda item: item[1])
        return [
            member
            for member, score in members
            if (score > low_value if exclusive else score >= low_value) and score <= high_value
        ]

    def zrevrange(self, name, start, end, withscores=False):
        self.calls.append("zrevrange")
        members = sorted(self.zsets.get(name, {}).items(), key=lambda item: item[1], reverse=True)
        selected = members[start:None if end == -1 else end + 1]
        if withscores:
            return selected
        return [member for member, _ in selected]

    # Lists

    def lpush(self, name, *values):
        bucket = self.lists.setdefault(name, [])
        for value in values:
            bucket.insert(0, value)
        return len(bucket)

    def rpush(self, name, *values):
        bucket = self.lists.setdefault(name, [])
        bucket.extend(values)
        return len(bucket)

    def lrange(self, name, start, end):
        bucket = self.lists.get(name, [])
        return list(bucket[start:None if end == -1 else end + 1])

    def delete(self, *names):
        removed = 0
        for name in names:
            for store in (self.hashes, self.zsets, self.lists):
                if store.pop(name, None) is not None:
                    removed += 1
        return removed


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture(params=["memory", "sql", "json", "redis"])
def storage(request, tmp_path, redis_client):
    """Every adapter that keeps its own data, for the shared contract tests."""
    if request.param == "memory":
        return MemoryStorage()
    if request.param == "sql":
        return SQLStorage(request.getfixturevalue("db_engine"))
    if request.param == "json":
        return JSONFileStorage(tmp_path / "settings.json")
    return RedisStorage(redis_client)
