"""Request scoped memoization of setting reads.

Wrap a unit of work (an HTTP request, a queued job) in a scope and every
setting it reads keeps the value it had on first read, even if the cache
refreshes halfway through::

    with context():
        if settings.enabled("new_checkout"):
            ...

Scopes live in a ``ContextVar`` so each thread and each asyncio task that
opens one gets its own. Tasks spawned inside a scope start out sharing it.
"""

import random
import uuid
from contextvars import ContextVar, Token
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from loguru import logger

ContextKey = Tuple[str, str]
Maximum = Union[int, float, range, None]

_MISSING = object()

_current: ContextVar[Optional["RequestContext"]] = ContextVar("livesettings_context", default=None)


def draw(rng: Any, maximum: Maximum = None) -> Union[int, float]:
    """Draw from ``rng`` the way ``rand(maximum)`` is documented.

    An int gives an int in ``[0, maximum)``, a float a float in
    ``[0, maximum)``, a range one of its members and None a float in
    ``[0, 1)``. ``rng`` is a ``random.Random`` or the ``random`` module.
    """
    if maximum is None:
        return rng.random()
    if isinstance(maximum, range):
        return rng.choice(maximum)
    if isinstance(maximum, bool):
        raise TypeError("maximum must be an int, float or range")
    if isinstance(maximum, int):
        return rng.randrange(maximum)
    if isinstance(maximum, float):
        return rng.random() * maximum
    raise TypeError("maximum must be an int, float or range")


class RequestContext:
    """One memoization scope, optionally nested inside a parent scope.

    Reads fall back to the parent. Values stored here shadow the parent's
    and disappear with this scope.
    """

    def __init__(self, parent: Optional["RequestContext"] = None) -> None:
        self.parent = parent
        self.id = uuid.uuid4().hex[:8]
        self._values: Dict[ContextKey, Any] = {}
        self._pinned: Dict[str, Mapping[str, Any]] = {}
        self._random: Optional[random.Random] = None
        self._token: Optional[Token] = None
        self._log_scope: Any = None

    @staticmethod
    def _key(namespace: Optional[str], key: str) -> ContextKey:
        return (namespace or "", str(key))

    def has(self, namespace: Optional[str], key: str) -> bool:
        scoped = self._key(namespace, key)
        scope: Optional[RequestContext] = self
        while scope is not None:
            if scoped in scope._values:
                return True
            scope = scope.parent
        return False

    def get(self, namespace: Optional[str], key: str, default: Any = None) -> Any:
        scoped = self._key(namespace, key)
        scope: Optional[RequestContext] = self
        while scope is not None:
            if scoped in scope._values:
                return scope._values[scoped]
            scope = scope.parent
        return default

    def set(self, namespace: Optional[str], key: str, value: Any) -> None:
        self._values[self._key(namespace, key)] = value

    def delete(self, namespace: Optional[str], key: str) -> None:
        """Forget a value stored in this scope (the parent's is visible again)."""
        self._values.pop(self._key(namespace, key), None)

    def fetch(self, namespace: Optional[str], key: str, resolve: Callable[[], Any]) -> Any:
        """The memoized value, resolving and storing it on first read."""
        value = self.get(namespace, key, _MISSING)
        if value is _MISSING:
            value = resolve()
            self.set(namespace, key, value)
        return value

    def pin(self, namespace: Optional[str], factory: Callable[[], Mapping[str, Any]]) -> Mapping[str, Any]:
        """Pin one cache snapshot per namespace for the life of the scope.

        ``factory`` is only called the first time a namespace is pinned in
        this scope or any parent.
        """
        name = namespace or ""
        scope: Optional[RequestContext] = self
        while scope is not None:
            if name in scope._pinned:
                return scope._pinned[name]
            scope = scope.parent
        pinned = factory()
        self._pinned[name] = pinned
        return pinned

    @property
    def root(self) -> "RequestContext":
        scope = self
        while scope.parent is not None:
            scope = scope.parent
        return scope

    def rand(self, maximum: Maximum = None) -> Union[int, float]:
        """Pseudo random number from a generator seeded on first use.

        Nested scopes share the outermost scope's generator, so a sequence of
        calls is reproducible for the whole unit of work.
        """
        root = self.root
        if root._random is None:
            root._random = random.Random()
        return draw(root._random, maximum)

    # Scope management

    def __enter__(self) -> "RequestContext":
        self._token = _current.set(self)
        self._log_scope = logger.contextualize(settings_scope=self.id)
        self._log_scope.__enter__()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        try:
            if self._log_scope is not None:
                self._log_scope.__exit__(exc_type, exc_value, traceback)
        finally:
            self._log_scope = None
            if self._token is not None:
                _current.reset(self._token)
                self._token = None

    def __repr__(self) -> str:
        return f"RequestContext(id={self.id!r}, values={len(self._values)}, nested={self.parent is not None})"


def current_context() -> Optional[RequestContext]:
    """The innermost active scope for this thread or task, or None."""
    return _current.get()


def context() -> RequestContext:
    """A new scope nested inside the active one (or a root scope).

    Use it as a context manager::

        with context() as scope:
            ...
    """
    return RequestContext(parent=current_context())
