"""Background news synchronization.

`NewsSyncManager` keeps a user's `NewsCache` fresh:

1. First sync (no `last_sync_time`): full fetch scoped to the user's housing
   companies; the result always replaces the cache, even when empty
2. Later syncs: incremental fetch of items created after `last_sync_time`,
   merged by id; an empty result changes nothing and notifies nobody
3. A user without housing companies gets an empty news list and no fetch
   is ever made
4. A cache built for a different set of housing companies (the user joined
   or left one) is rebuilt with a full fetch, and `news` only ever returns
   items of the user's current companies

Failures move the state machine to ERROR, are logged and handed to
`on_error`, then the state returns to IDLE. The cache is left as it was and
the periodic loop keeps running.

`start()` schedules an asyncio task on the running loop: one sync right away,
then one every `interval_seconds`. `stop()` cancels it, and results of a
fetch that was in flight when `stop()` was called are discarded.
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, List, Optional

from alpo.chat.models import User, utc_now
from alpo.news.cache import NewsCache
from alpo.news.models import NewsItem, SyncConfig, SyncState
from alpo.news.repository import NewsSource
from alpo.utils.logger import LoggerManager, with_context


class NewsSyncManager:
    """Periodic, eventually-consistent news cache updater.

    Attributes:
        source: Where news is fetched from
        cache: Cache being kept up to date
        user: Whose housing companies scope the fetches
        config: Interval, enabled flag and callbacks
        state: Current SyncState
        last_error: Most recent sync failure, if any
    """

    def __init__(
        self,
        source: NewsSource,
        cache: NewsCache,
        user: User,
        config: Optional[SyncConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.source = source
        self.cache = cache
        self.user = user
        self.config = config or SyncConfig()
        self.state = SyncState.IDLE
        self.last_error: Optional[Exception] = None
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._generation = 0
        self.logger = with_context(LoggerManager.get_logger(__name__), user_id=user.id)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def news(self) -> List[NewsItem]:
        company_ids = self.user.housing_company_ids
        return [item for item in self.cache.news if item.housing_company_id in company_ids]

    def start(self) -> None:
        """Begin periodic syncing. Must be called from a running event loop.

        No-op when already running or disabled by configuration.
        """
        if not self.config.enabled or self.is_running:
            return
        self._generation += 1
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(self._generation))
        self.logger.info(
            "news.sync.started",
            extra={"extra_data": {"interval_seconds": self.config.interval_seconds}},
        )

    def stop(self) -> None:
        """Cancel the periodic task; in-flight results will be discarded."""
        self._generation += 1
        if self._task is not None:
            self._task.cancel()
            self._task = None
            self.logger.info("news.sync.stopped")

    async def _run(self, generation: int) -> None:
        while generation == self._generation:
            await self.perform_sync()
            await asyncio.sleep(self.config.interval_seconds)

    def update_config(self, **changes: Any) -> None:
        """Change settings; a running loop restarts to pick up a new interval.

        Accepts the fields of SyncConfig: interval_seconds, enabled,
        on_update, on_error.
        """
        was_running = self.is_running
        old_interval = self.config.interval_seconds
        current = {name: getattr(self.config, name) for name in SyncConfig.model_fields}
        merged = {**current, **changes}
        self.config = SyncConfig.model_validate(merged)

        if was_running and not self.config.enabled:
            self.stop()
        elif was_running and self.config.interval_seconds != old_interval:
            self.stop()
            self.start()

    async def perform_sync(self) -> bool:
        """Run one sync cycle.

        Returns:
            True if the cache changed (and `on_update` was called), else False.
            Never raises for fetch failures; those go to `on_error`.
        """
        generation = self._generation
        company_ids = frozenset(self.user.housing_company_ids)

        if not company_ids:
            if self.cache.scope != company_ids or len(self.cache) > 0:
                news = self.cache.replace([], self._clock(), scope=company_ids)
                self.logger.info("news.sync.no_housing_companies")
                self._notify(news)
                return True
            return False

        self.state = SyncState.SYNCING
        started_at = self._clock()
        last_sync = self.cache.last_sync_time
        if last_sync is not None and self.cache.scope != company_ids:
            self.logger.info(
                "news.sync.scope_changed",
                extra={
                    "extra_data": {
                        "cached": sorted(self.cache.scope or ()),
                        "current": sorted(company_ids),
                    }
                },
            )
            last_sync = None
        try:
            if last_sync is None:
                items = await self.source.fetch_news(company_ids)
            else:
                items = await self.source.fetch_news_since(last_sync, company_ids)
        except Exception as e:
            if generation != self._generation:
                self.state = SyncState.IDLE
                self.logger.info("news.sync.fail_after_stop", extra={"extra_data": {"error": str(e)}})
                return False
            self.state = SyncState.ERROR
            self.last_error = e
            self.logger.error(
                "news.sync.fail",
                extra={"extra_data": {"error": str(e), "full": last_sync is None}},
                exc_info=True,
            )
            self._report(e)
            self.state = SyncState.IDLE
            return False

        if generation != self._generation:
            self.state = SyncState.IDLE
            self.logger.info("news.sync.discarded", extra={"extra_data": {"count": len(items)}})
            return False

        if last_sync is None:
            self.cache.replace(items, started_at, scope=company_ids)
            changed = True
        else:
            changed = self.cache.merge(items, started_at)

        self.state = SyncState.IDLE
        self.last_error = None
        self.logger.info(
            "news.sync.ok",
            extra={
                "extra_data": {
                    "full": last_sync is None,
                    "fetched": len(items),
                    "cached": len(self.cache),
                    "changed": changed,
                }
            },
        )
        if changed:
            self._notify(self.news)
        return changed

    def _notify(self, news: List[NewsItem]) -> None:
        if self.config.on_update is None:
            return
        try:
            self.config.on_update(news)
        except Exception:
            self.logger.error("news.sync.on_update.fail", exc_info=True)

    def _report(self, error: Exception) -> None:
        if self.config.on_error is None:
            return
        try:
            self.config.on_error(error)
        except Exception:
            self.logger.error("news.sync.on_error.fail", exc_info=True)
