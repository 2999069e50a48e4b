"""Pydantic models for housing company news and the sync state machine."""

from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, List, Optional

from pydantic import BaseModel, Field


class NewsItem(BaseModel):
    """News entry published to one housing company.

    Attributes:
        id: News identifier
        title: Headline
        text: Body (HTML; sanitized by the UI layer)
        image_url: Optional illustration
        created_at: Publication time, used for ordering and incremental sync
        housing_company_id: Owning housing company
        housing_company_name: Display name of the housing company, if known
    """

    id: str
    title: str
    text: str
    image_url: Optional[str] = None
    created_at: datetime
    housing_company_id: str
    housing_company_name: Optional[str] = None


class SyncState(str, Enum):
    """idle -> syncing -> idle on success; idle -> syncing -> error -> idle on failure."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class SyncConfig(BaseModel):
    """Runtime settings of a NewsSyncManager.

    Callbacks are plain callables: `on_update(list[NewsItem])` and
    `on_error(Exception)`.
    """

    interval_seconds: float = Field(300.0, gt=0)
    enabled: bool = True
    on_update: Optional[Callable[[List[NewsItem]], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None


def sort_by_recency(items: Iterable[NewsItem]) -> List[NewsItem]:
    """Newest first."""
    return sorted(items, key=lambda item: item.created_at, reverse=True)
