"""Models for crawl jobs, crawled pages and fetch/extract results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, Field

from knowledge_engine.constants import UNBOUNDED_CRAWL_DEPTH


class CrawlStatus(str, Enum):
    """Crawl job lifecycle: QUEUED -> PROCESSING -> COMPLETED | FAILED | CANCELLED."""

    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_CRAWL_STATUSES


TERMINAL_CRAWL_STATUSES = frozenset(
    (CrawlStatus.COMPLETED, CrawlStatus.FAILED, CrawlStatus.CANCELLED)
)

# Statuses a cancel request may move away from
CANCELLABLE_CRAWL_STATUSES = frozenset((CrawlStatus.QUEUED, CrawlStatus.PROCESSING))


class PageStatus(str, Enum):
    """Outcome of fetching one page."""

    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class CrawlJob(BaseModel):
    """One crawl request and its running counters."""

    id: str
    chatbot_id: str
    url: str
    max_depth: int = UNBOUNDED_CRAWL_DEPTH
    page_limit: int
    status: CrawlStatus = CrawlStatus.QUEUED
    pages_found: int = 0
    pages_crawled: int = 0
    pages_failed: int = 0
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def depth_unbounded(self) -> bool:
        return self.max_depth == UNBOUNDED_CRAWL_DEPTH


class CrawlJobCreate(BaseModel):
    """Parameters for creating a crawl job record."""

    chatbot_id: str = Field(..., description="Chatbot (tenant scope) UUID")
    url: str = Field(..., description="Normalized seed URL")
    max_depth: int = Field(
        default=UNBOUNDED_CRAWL_DEPTH,
        ge=UNBOUNDED_CRAWL_DEPTH,
        description="Max link depth from the seed (-1 = unbounded)",
    )
    page_limit: int = Field(..., ge=1, description="Max successfully crawled pages")


class CrawledPage(BaseModel):
    """One fetch outcome belonging to a crawl job."""

    id: str
    job_id: str
    url: str
    title: str | None = None
    status: PageStatus
    content: str | None = None
    content_hash: str | None = None
    is_selected: bool = False
    error_message: str | None = None
    created_at: datetime


class CrawledPageCreate(BaseModel):
    """Parameters for creating a crawled page record.

    Successful pages carry title/content/content_hash; failed pages carry
    only the error message.
    """

    job_id: str = Field(..., description="Crawl job UUID")
    url: str = Field(..., description="Normalized page URL")
    status: PageStatus
    title: str | None = Field(default=None, description="Page title")
    content: str | None = Field(default=None, description="Extracted plain text")
    content_hash: str | None = Field(
        default=None, description="SHA256 of the extracted text"
    )
    error_message: str | None = Field(default=None, description="Fetch error")


@dataclass
class FetchedPage:
    """Raw HTTP response for one page."""

    url: str
    status_code: int
    content_type: str
    html: str

    @property
    def is_html(self) -> bool:
        return "text/html" in self.content_type.lower()


@dataclass
class ExtractedPage:
    """Title, text and outgoing links extracted from one HTML document."""

    url: str
    title: str | None
    text: str
    content_hash: str
    links: List[str] = field(default_factory=list)

    @property
    def word_count(self) -> int:
        return len(self.text.split())


@dataclass
class CrawlCounters:
    """Counter deltas accumulated by the traversal between flushes."""

    found: int = 0
    crawled: int = 0
    failed: int = 0

    def is_empty(self) -> bool:
        return not (self.found or self.crawled or self.failed)

    def reset(self) -> None:
        self.found = 0
        self.crawled = 0
        self.failed = 0


@dataclass
class CrawlSummary:
    """Final tally of one traversal run."""

    job_id: str
    status: CrawlStatus
    pages_found: int
    pages_crawled: int
    pages_failed: int
