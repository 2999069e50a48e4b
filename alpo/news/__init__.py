"""Housing company news: models, repository, cache and background sync."""

from alpo.news.cache import NewsCache
from alpo.news.models import NewsItem, SyncConfig, SyncState
from alpo.news.repository import NewsRepository
from alpo.news.sync import NewsSyncManager

__all__ = ["NewsCache", "NewsItem", "NewsRepository", "NewsSyncManager", "SyncConfig", "SyncState"]
