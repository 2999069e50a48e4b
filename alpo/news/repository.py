"""News reads from the relational store.

Both fetches are scoped to a set of housing companies, join the company name
and return items newest first. An empty scope returns [] without touching
the database. Queries run in a worker thread so the event loop keeps
serving other tasks while SQLite works.
"""

import asyncio
from datetime import datetime
from typing import Collection, List, Optional, Protocol

from alpo.news.models import NewsItem
from alpo.storage.database import Database, from_db_timestamp, to_db_timestamp
from alpo.utils.logger import LoggerManager

_SELECT_NEWS = """
    SELECT n.id, n.title, n.text, n.image_url, n.created_at,
           n.housing_company_id, hc.name AS housing_company_name
    FROM news n
    LEFT JOIN housing_companies hc ON hc.id = n.housing_company_id
"""


class NewsSource(Protocol):
    async def fetch_news(self, housing_company_ids: Collection[str]) -> List[NewsItem]: ...

    async def fetch_news_since(
        self, since: datetime, housing_company_ids: Collection[str]
    ) -> List[NewsItem]: ...


class NewsRepository:
    """`news` / `housing_companies` access."""

    def __init__(self, db: Database):
        self.db = db
        self.logger = LoggerManager.get_logger(__name__)

    @staticmethod
    def _row_to_item(row) -> NewsItem:
        return NewsItem(
            id=row["id"],
            title=row["title"],
            text=row["text"],
            image_url=row["image_url"] or None,
            created_at=from_db_timestamp(row["created_at"]),
            housing_company_id=row["housing_company_id"],
            housing_company_name=row["housing_company_name"],
        )

    def _query(
        self,
        housing_company_ids: Collection[str],
        since: Optional[datetime] = None,
    ) -> List[NewsItem]:
        ids = sorted(set(housing_company_ids))
        if not ids:
            return []

        placeholders = ", ".join("?" for _ in ids)
        sql = _SELECT_NEWS + f" WHERE n.housing_company_id IN ({placeholders})"
        params: list = list(ids)
        if since is not None:
            sql += " AND n.created_at > ?"
            params.append(to_db_timestamp(since))
        sql += " ORDER BY n.created_at DESC"

        with self.db.transaction("fetch_news") as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_item(r) for r in rows]

    async def fetch_news(self, housing_company_ids: Collection[str]) -> List[NewsItem]:
        """All news of the given housing companies, newest first.

        Raises:
            StoreUnavailableError: If the query fails
        """
        items = await asyncio.to_thread(self._query, housing_company_ids)
        self.logger.debug("news.fetch.full", extra={"extra_data": {"count": len(items)}})
        return items

    async def fetch_news_since(
        self, since: datetime, housing_company_ids: Collection[str]
    ) -> List[NewsItem]:
        """News created strictly after `since`, newest first.

        Raises:
            StoreUnavailableError: If the query fails
        """
        items = await asyncio.to_thread(self._query, housing_company_ids, since)
        self.logger.debug(
            "news.fetch.incremental",
            extra={"extra_data": {"since": since.isoformat(), "count": len(items)}},
        )
        return items

    def add_housing_company(self, housing_company_id: str, name: str) -> None:
        with self.db.transaction("add_housing_company") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO housing_companies (id, name) VALUES (?, ?)",
                (housing_company_id, name),
            )

    def add_news(self, item: NewsItem) -> None:
        """Insert or overwrite a news row (the company name is not stored here)."""
        with self.db.transaction("add_news") as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO news
                (id, title, text, image_url, created_at, housing_company_id)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id,
                    item.title,
                    item.text,
                    item.image_url,
                    to_db_timestamp(item.created_at),
                    item.housing_company_id,
                ),
            )
