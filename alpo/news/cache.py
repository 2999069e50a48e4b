"""News cache.

In-memory mapping `id -> NewsItem` plus the timestamp of the last successful
sync, mirrored to the local key-value store so the last good cache survives
a restart. Reads always return items newest first.

Write semantics:
- replace(): full fetch result; always applied, even when empty
- merge(): incremental result; last write wins per id, empty input is a no-op

The housing company ids a full fetch was scoped to are stored with the items.
A cache whose scope differs from the user's current companies is stale and
must be rebuilt by a full fetch.
"""

from datetime import datetime
from typing import Collection, Dict, FrozenSet, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from alpo.exceptions import StoreUnavailableError
from alpo.news.models import NewsItem, sort_by_recency
from alpo.storage.database import from_db_timestamp, to_db_timestamp
from alpo.storage.kv_store import KeyValueStore
from alpo.utils.logger import LoggerManager

NEWS_CACHE_KEY_PREFIX = "news_cache:"


def cache_key_for(user_id: str) -> str:
    return f"{NEWS_CACHE_KEY_PREFIX}{user_id}"


class NewsCache:
    """Recency-ordered news cache with optional persistence.

    Attributes:
        kv: Key-value store used for persistence (None = memory only)
        key: Storage key, normally `news_cache:<user_id>`
    """

    def __init__(self, kv: Optional[KeyValueStore] = None, key: str = "news_cache"):
        self.kv = kv
        self.key = key
        self.logger = LoggerManager.get_logger(__name__)
        self._items: Dict[str, NewsItem] = {}
        self._last_sync_time: Optional[datetime] = None
        self._scope: Optional[FrozenSet[str]] = None
        self._restore()

    @property
    def news(self) -> List[NewsItem]:
        return sort_by_recency(self._items.values())

    @property
    def last_sync_time(self) -> Optional[datetime]:
        return self._last_sync_time

    @property
    def scope(self) -> Optional[FrozenSet[str]]:
        """Housing company ids of the last full fetch, None if never synced."""
        return self._scope

    def snapshot(self) -> Tuple[List[NewsItem], Optional[datetime]]:
        return self.news, self._last_sync_time

    def __len__(self) -> int:
        return len(self._items)

    def replace(
        self,
        items: Iterable[NewsItem],
        synced_at: datetime,
        scope: Optional[Collection[str]] = None,
    ) -> List[NewsItem]:
        """Swap the whole cache for `items` and record the sync time and scope."""
        self._items = {item.id: item for item in items}
        self._last_sync_time = synced_at
        self._scope = frozenset(scope) if scope is not None else None
        self._persist()
        return self.news

    def merge(self, items: Iterable[NewsItem], synced_at: datetime) -> bool:
        """Upsert `items` by id.

        Returns:
            False (and leaves cache and sync time untouched) when `items` is
            empty, True otherwise
        """
        items = list(items)
        if not items:
            return False
        for item in items:
            self._items[item.id] = item
        self._last_sync_time = synced_at
        self._persist()
        return True

    def clear(self) -> None:
        self._items = {}
        self._last_sync_time = None
        self._scope = None
        if self.kv is not None:
            try:
                self.kv.remove(self.key)
            except StoreUnavailableError as e:
                self.logger.warning("news.cache.clear.fail", extra={"extra_data": {"error": str(e)}})

    def _persist(self) -> None:
        if self.kv is None:
            return
        payload = {
            "last_sync_time": to_db_timestamp(self._last_sync_time) if self._last_sync_time else None,
            "items": [item.model_dump(mode="json") for item in self.news],
            "scope": sorted(self._scope) if self._scope is not None else None,
        }
        try:
            self.kv.set(self.key, payload)
        except StoreUnavailableError as e:
            # In-memory cache stays authoritative for this run
            self.logger.warning("news.cache.persist.fail", extra={"extra_data": {"error": str(e)}})

    def _restore(self) -> None:
        if self.kv is None:
            return
        try:
            payload = self.kv.get(self.key)
        except StoreUnavailableError as e:
            self.logger.warning("news.cache.restore.fail", extra={"extra_data": {"error": str(e)}})
            return
        if not payload:
            return

        try:
            items = [NewsItem.model_validate(raw) for raw in payload.get("items", [])]
            raw_time = payload.get("last_sync_time")
            last_sync = from_db_timestamp(raw_time) if raw_time else None
            raw_scope = payload.get("scope")
            scope = frozenset(str(s) for s in raw_scope) if raw_scope is not None else None
        except (AttributeError, TypeError, ValidationError, ValueError) as e:
            self.logger.warning(
                "news.cache.restore.invalid", extra={"extra_data": {"key": self.key, "error": str(e)}}
            )
            return

        self._items = {item.id: item for item in items}
        self._last_sync_time = last_sync
        self._scope = scope
        self.logger.debug(
            "news.cache.restored", extra={"extra_data": {"key": self.key, "count": len(items)}}
        )
