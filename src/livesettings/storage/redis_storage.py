"""Redis storage engine.

Layout (``<ns>`` is ``:namespace`` for named namespaces, empty otherwise):

* ``livesettings.settings<ns>`` - hash of key -> setting JSON
* ``livesettings.updated_at<ns>`` - sorted set of key scored by updated_at
* ``livesettings.history<ns>.<key>`` - list of history JSON, newest first
"""

import json
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from livesettings.core import coerce
from livesettings.core.exceptions import StoreUnavailableError
from livesettings.core.history import HistoryItem
from livesettings.core.setting import Setting
from livesettings.storage.base import StorageAdapter

SETTINGS_KEY = "livesettings.settings"
UPDATED_KEY = "livesettings.updated_at"
HISTORY_KEY_PREFIX = "livesettings.history"


class RedisStorage(StorageAdapter):
    """Settings stored in Redis; ``updated_since`` is a sorted-set range scan."""

    # Sorted set scores are doubles; milliseconds survive the round trip
    time_precision = coerce.MILLISECOND

    def __init__(self, client: redis.Redis, namespace: Optional[str] = None) -> None:
        super().__init__(namespace)
        self.client = client

    @classmethod
    def from_url(cls, url: str, namespace: Optional[str] = None, timeout: float = 5.0) -> "RedisStorage":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client, namespace=namespace)

    @contextmanager
    def _redis(self) -> Iterator[redis.Redis]:
        try:
            yield self.client
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError(f"Redis unavailable: {e}") from e

    def _suffix(self) -> str:
        return f":{self.namespace}" if self.namespace else ""

    def _settings_key(self) -> str:
        return SETTINGS_KEY + self._suffix()

    def _updated_key(self) -> str:
        return UPDATED_KEY + self._suffix()

    def _history_key(self, key: str) -> str:
        return f"{HISTORY_KEY_PREFIX}{self._suffix()}.{key}"

    def _load(self, payload) -> Setting:
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        return Setting.from_dict(json.loads(payload), namespace=self.namespace)

    @staticmethod
    def _score(timestamp: datetime) -> float:
        return round(coerce.time(timestamp).timestamp(), 3)

    def all(self) -> List[Setting]:
        with self._redis() as client:
            payloads = client.hgetall(self._settings_key()).values()
        return [self._load(payload) for payload in payloads]

    def updated_since(self, timestamp: datetime) -> List[Setting]:
        with self._redis() as client:
            keys = client.zrangebyscore(self._updated_key(), f"({self._score(timestamp)}", "+inf")
            if not keys:
                return []
            payloads = client.hmget(self._settings_key(), keys)
        return [self._load(payload) for payload in payloads if payload]

    def last_updated_at(self) -> Optional[datetime]:
        with self._redis() as client:
            result = client.zrevrange(self._updated_key(), 0, 0, withscores=True)
        if not result:
            return None
        score = result[0][1]
        return coerce.with_precision(
            datetime.fromtimestamp(round(float(score), 3), tz=timezone.utc), self.time_precision
        )

    def find_by_key(self, key: str) -> Optional[Setting]:
        with self._redis() as client:
            payload = client.hget(self._settings_key(), key)
        if not payload:
            return None
        setting = self._load(payload)
        return None if setting.deleted else setting

    def _write(self, setting: Setting, previous_key: Optional[str]) -> None:
        with self._redis() as client:
            pipe = client.pipeline(transaction=True)
            if previous_key and previous_key != setting.key:
                pipe.hdel(self._settings_key(), previous_key)
                pipe.zrem(self._updated_key(), previous_key)
            pipe.hset(self._settings_key(), setting.key, json.dumps(setting.to_dict()))
            pipe.zadd(self._updated_key(), {setting.key: self._score(setting.updated_at)})
            pipe.execute()

    def create_history(
        self,
        key: str,
        value: Optional[str] = None,
        changed_by: Optional[str] = None,
        deleted: bool = False,
        created_at: Optional[datetime] = None,
    ) -> None:
        item = HistoryItem(
            key=key, value=value, changed_by=changed_by, deleted=deleted, created_at=created_at
        )
        with self._redis() as client:
            client.lpush(self._history_key(key), item.model_dump_json(exclude={"key"}))

    def history(self, key: str, limit: Optional[int] = None, offset: int = 0) -> List[HistoryItem]:
        if limit is not None and limit <= 0:
            return []
        end = -1 if limit is None else offset + limit - 1
        with self._redis() as client:
            payloads = client.lrange(self._history_key(key), offset, end)
        return [HistoryItem(key=key, **json.loads(payload)) for payload in payloads]

    def redact_history(self, key: str) -> None:
        history_key = self._history_key(key)
        with self._redis() as client:
            payloads = client.lrange(history_key, 0, -1)
            if not payloads:
                return
            redacted = []
            for payload in payloads:
                entry = json.loads(payload)
                entry["value"] = None
                redacted.append(json.dumps(entry))
            pipe = client.pipeline(transaction=True)
            pipe.delete(history_key)
            pipe.rpush(history_key, *redacted)
            pipe.execute()
