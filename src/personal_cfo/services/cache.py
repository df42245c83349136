import asyncio
import hashlib
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass, field
from time import monotonic
from typing import Any, TypeVar

from pydantic import BaseModel

from personal_cfo.integration.token_store import COOKIE_POLICY
from personal_cfo.logger import get_logger
from personal_cfo.services.notifications import Notifier

logger = get_logger(__name__)

T = TypeVar("T")

QueryKey = tuple[Hashable, ...]

DEFAULT_STALE_TIME_SECONDS = 0.0
DEFAULT_MAX_SESSIONS = 1000


def _freeze(value: Any) -> Hashable:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, dict):
        return tuple(sorted((key, _freeze(item)) for key, item in value.items() if item is not None))
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


class QueryKeys:
    """Key builders; every key starts with its resource name so prefixes invalidate families."""

    @staticmethod
    def user() -> QueryKey:
        return ("user",)

    @staticmethod
    def cards() -> QueryKey:
        return ("cards",)

    @staticmethod
    def card(card_id: str) -> QueryKey:
        return ("cards", card_id)

    @staticmethod
    def bank_providers(country: str | None = None, popular_only: bool | None = None) -> QueryKey:
        return ("bankProviders", _freeze({"country": country, "popular_only": popular_only}))

    @staticmethod
    def categories(include_inactive: bool = False) -> QueryKey:
        return ("categories", include_inactive)

    @staticmethod
    def category(category_id: str) -> QueryKey:
        return ("categories", "detail", category_id)

    @staticmethod
    def transactions(filters: Any = None) -> QueryKey:
        return ("transactions", _freeze(filters))

    @staticmethod
    def transaction(transaction_id: str) -> QueryKey:
        return ("transactions", "detail", transaction_id)

    @staticmethod
    def budgets() -> QueryKey:
        return ("budgets",)

    @staticmethod
    def budget_alerts() -> QueryKey:
        return ("budgets", "alerts")

    @staticmethod
    def recurring_services() -> QueryKey:
        return ("recurringServices",)

    @staticmethod
    def statements() -> QueryKey:
        return ("statements",)

    @staticmethod
    def statement_status(statement_id: str) -> QueryKey:
        return ("statements", statement_id, "status")

    @staticmethod
    def analytics(filters: Any = None) -> QueryKey:
        return ("analytics", _freeze(filters))

    @staticmethod
    def analytics_dashboard() -> QueryKey:
        return ("analytics", "dashboard")

    @staticmethod
    def category_spending(filters: Any = None) -> QueryKey:
        return ("analytics", "category", _freeze(filters))

    @staticmethod
    def spending_trends(months: int | None = None) -> QueryKey:
        return ("analytics", "trends", months)

    @staticmethod
    def keywords(category_id: str) -> QueryKey:
        return ("keywords", category_id)

    @staticmethod
    def excluded_keywords() -> QueryKey:
        return ("excludedKeywords",)

    @staticmethod
    def currencies() -> QueryKey:
        return ("currencies",)


@dataclass
class _Entry:
    value: Any
    updated_at: float
    stale: bool = False


class QueryCache:
    """Keyed async cache with prefix invalidation."""

    def __init__(self, stale_time: float = DEFAULT_STALE_TIME_SECONDS) -> None:
        self.stale_time = stale_time
        self._entries: dict[QueryKey, _Entry] = {}
        self._locks: dict[QueryKey, asyncio.Lock] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def _is_fresh(self, entry: _Entry, stale_time: float) -> bool:
        if entry.stale:
            return False
        return monotonic() - entry.updated_at < stale_time

    def get(self, key: QueryKey) -> Any:
        entry = self._entries.get(key)
        return entry.value if entry else None

    def set(self, key: QueryKey, value: T) -> T:
        self._entries[key] = _Entry(value=value, updated_at=monotonic())
        return value

    def is_stale(self, key: QueryKey) -> bool:
        entry = self._entries.get(key)
        return entry is None or entry.stale

    async def fetch(
        self,
        key: QueryKey,
        loader: Callable[[], Awaitable[T]],
        stale_time: float | None = None,
    ) -> T:
        """Return the cached value while fresh, otherwise load and store it.

        Concurrent fetches of one key share a lock so the loader runs once.
        """
        ttl = self.stale_time if stale_time is None else stale_time
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            entry = self._entries.get(key)
            if entry is not None and self._is_fresh(entry, ttl):
                return entry.value
            value = await loader()
            return self.set(key, value)

    def invalidate(self, prefix: QueryKey) -> int:
        count = 0
        for key, entry in self._entries.items():
            if key[: len(prefix)] == prefix:
                entry.stale = True
                count += 1
        if count:
            logger.debug("[CACHE] Invalidated %d entries under %s.", count, prefix)
        return count

    def invalidate_many(self, prefixes: list[QueryKey]) -> int:
        return sum(self.invalidate(prefix) for prefix in prefixes)

    def remove(self, prefix: QueryKey) -> None:
        for key in [key for key in self._entries if key[: len(prefix)] == prefix]:
            del self._entries[key]
            self._locks.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
        self._locks.clear()


@dataclass
class Session:
    key: str
    cache: QueryCache
    notifier: Notifier
    last_seen: float = field(default_factory=monotonic)
    persistent: bool = True


def session_key(token: str | None) -> str:
    return hashlib.sha256((token or "").encode("utf-8")).hexdigest()


class SessionRegistry:
    """One cache and notifier per access token. Raw tokens are never used as keys.

    Requests without a token get a throwaway session. Stored sessions expire
    after ``idle_ttl`` seconds without a request, and the least recently used
    one is evicted once ``max_sessions`` is reached. ``on_evict`` receives the
    key of every session dropped that way.
    """

    def __init__(
        self,
        stale_time: float = DEFAULT_STALE_TIME_SECONDS,
        *,
        idle_ttl: float = COOKIE_POLICY.max_age,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        on_evict: Callable[[str], None] | None = None,
    ) -> None:
        self.stale_time = stale_time
        self.idle_ttl = idle_ttl
        self.max_sessions = max(1, max_sessions)
        self.on_evict = on_evict
        self._sessions: OrderedDict[str, Session] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def _new(self, key: str, persistent: bool) -> Session:
        return Session(
            key=key,
            cache=QueryCache(self.stale_time),
            notifier=Notifier(),
            persistent=persistent,
        )

    def _evict(self, key: str, reason: str) -> None:
        self._sessions.pop(key, None)
        logger.debug("[SESSION] Evicted %s... (%s).", key[:8], reason)
        if self.on_evict is not None:
            self.on_evict(key)

    def _expire_idle(self, now: float) -> None:
        # Ordered by last use, so the first fresh session ends the sweep.
        for key, session in list(self._sessions.items()):
            if now - session.last_seen < self.idle_ttl:
                break
            self._evict(key, "idle")

    def get(self, token: str | None, *, create: bool = True) -> Session:
        key = session_key(token)
        if not token:
            return self._new(key, persistent=False)

        now = monotonic()
        self._expire_idle(now)
        session = self._sessions.get(key)
        if session is None:
            if not create:
                return self._new(key, persistent=False)
            while len(self._sessions) >= self.max_sessions:
                self._evict(next(iter(self._sessions)), "capacity")
            session = self._new(key, persistent=True)
            self._sessions[key] = session
        else:
            self._sessions.move_to_end(key)
        session.last_seen = now
        return session

    def discard(self, token: str | None) -> None:
        self._sessions.pop(session_key(token), None)
