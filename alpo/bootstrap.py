"""Composition root.

Builds the explicitly constructed service graph the UI shell owns:

    config = load_config("config/alpo.yaml")
    services = build_services(config)
    await services.chat.set_user(user)
    sync = services.news_sync_for(user, on_update=render_news)
    sync.start()
    ...
    sync.stop()
    await services.close()
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from alpo.chat.gateway import WebhookGateway
from alpo.chat.manager import ChatSessionManager
from alpo.chat.models import User
from alpo.config import AlpoConfig
from alpo.news.cache import NewsCache, cache_key_for
from alpo.news.models import NewsItem, SyncConfig
from alpo.news.repository import NewsRepository, NewsSource
from alpo.news.sync import NewsSyncManager
from alpo.storage.database import Database
from alpo.storage.kv_store import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore
from alpo.storage.users import UserRepository
from alpo.utils.logger import LoggerManager


@dataclass
class AlpoServices:
    """Everything the UI layer talks to.

    Attributes:
        config: Configuration the services were built from
        local_store: Device key-value store
        database: Relational store, None in local-only mode
        gateway: Agent webhook client
        chat: Chat session manager
        users: User lookups (remote mode only)
        news_source: News fetcher (remote mode only)
    """

    config: AlpoConfig
    local_store: KeyValueStore
    database: Optional[Database]
    gateway: WebhookGateway
    chat: ChatSessionManager
    users: Optional[UserRepository] = None
    news_source: Optional[NewsSource] = None
    _syncs: Dict[str, NewsSyncManager] = field(default_factory=dict)

    def news_sync_for(
        self,
        user: User,
        on_update: Optional[Callable[[List[NewsItem]], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> NewsSyncManager:
        """Create (or return) the news sync manager for `user`.

        Raises:
            RuntimeError: In local-only mode, where there is no news source
        """
        if self.news_source is None:
            raise RuntimeError("News sync requires a configured database")
        existing = self._syncs.get(user.id)
        if existing is not None:
            if on_update is not None or on_error is not None:
                existing.update_config(
                    **{k: v for k, v in (("on_update", on_update), ("on_error", on_error)) if v}
                )
            return existing

        sync = NewsSyncManager(
            source=self.news_source,
            cache=NewsCache(self.local_store, key=cache_key_for(user.id)),
            user=user,
            config=SyncConfig(
                interval_seconds=self.config.news_sync.interval_seconds,
                enabled=self.config.news_sync.enabled,
                on_update=on_update,
                on_error=on_error,
            ),
        )
        self._syncs[user.id] = sync
        return sync

    async def close(self) -> None:
        """Stop background syncs and release network and database handles."""
        for sync in self._syncs.values():
            sync.stop()
        self._syncs.clear()
        await self.gateway.aclose()
        if self.database is not None:
            self.database.close()


def build_services(config: AlpoConfig) -> AlpoServices:
    """Wire stores, gateway and managers according to `config`."""
    LoggerManager.configure(level=config.log_level, log_dir=config.log_dir)
    logger = LoggerManager.get_logger(__name__)

    if config.local_store_path is not None:
        local_store: KeyValueStore = JsonFileKeyValueStore(config.local_store_path)
    else:
        local_store = InMemoryKeyValueStore()

    database = Database(config.database_path) if config.database_path is not None else None
    gateway = WebhookGateway(config.webhook_url, timeout=config.request_timeout)
    chat = ChatSessionManager(
        gateway=gateway,
        local_store=local_store,
        database=database,
        retry_log_size=config.retry_log_size,
    )

    services = AlpoServices(
        config=config,
        local_store=local_store,
        database=database,
        gateway=gateway,
        chat=chat,
        users=UserRepository(database) if database is not None else None,
        news_source=NewsRepository(database) if database is not None else None,
    )
    logger.info(
        "services.built",
        extra={
            "extra_data": {
                "backend": chat.backend,
                "persistent_local_store": config.local_store_path is not None,
            }
        },
    )
    return services
