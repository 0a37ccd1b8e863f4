"""
Data Models for News Card Autopilot

This module contains the data classes and status enums shared by the
ingestion, rendering, publishing and autopilot services. Template
geometry lives in data.template.
"""

from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Dict, List, Any

from config import settings


# =============================================================================
# Status Enums
# =============================================================================

class CardStatus(str, Enum):
    """Lifecycle of a rendered news card. Transitions only move forward."""
    DRAFT = "DRAFT"
    QUEUED = "QUEUED"
    GENERATED = "GENERATED"
    POSTED = "POSTED"
    FAILED = "FAILED"

    def can_transition_to(self, target: "CardStatus") -> bool:
        return target in _CARD_TRANSITIONS[self]

    def allowed_predecessors(self) -> List["CardStatus"]:
        """States from which this state may be entered."""
        return [status for status, targets in _CARD_TRANSITIONS.items() if self in targets]


_CARD_TRANSITIONS = {
    CardStatus.DRAFT: {CardStatus.QUEUED, CardStatus.GENERATED},
    CardStatus.QUEUED: {CardStatus.GENERATED, CardStatus.FAILED},
    CardStatus.GENERATED: {CardStatus.POSTED, CardStatus.FAILED},
    CardStatus.POSTED: set(),
    CardStatus.FAILED: set(),
}


class PostStatus(str, Enum):
    QUEUED = "QUEUED"
    POSTED = "POSTED"
    FAILED = "FAILED"


class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class SensitiveAction(str, Enum):
    """What autopilot does with an article that contains a sensitive word."""
    SKIP = "skip"
    MASK = "mask"


# =============================================================================
# Ingestion Models
# =============================================================================

@dataclass(frozen=True)
class Article:
    """Canonical article produced by one ingestion call.

    Attributes:
        title (str): Headline as shown on the listing page.
        link (str): Absolute article URL, unique per source.
        description (str): Meta description or first paragraph.
        image (str, optional): Photo URL or data URL.
        published_at (datetime, optional): Publication time when the page exposes it.
        category (str): Section name.
        author (str): Byline.
        content (str): Extracted body text.
        source (str): Id of the source the article came from.
    """
    title: str
    link: str
    description: str = ""
    image: Optional[str] = None
    published_at: Optional[datetime] = None
    category: str = ""
    author: str = ""
    content: str = ""
    source: str = ""

    def with_text(self, title: str, description: str) -> "Article":
        return replace(self, title=title, description=description)

    def to_source_data(self) -> Dict[str, Any]:
        """Frozen snapshot stored on the NewsCard."""
        data = asdict(self)
        data["published_at"] = self.published_at.isoformat() if self.published_at else None
        return data

    @classmethod
    def from_source_data(cls, data: Dict[str, Any]) -> "Article":
        published_at = data.get("published_at")
        if isinstance(published_at, str):
            try:
                published_at = datetime.fromisoformat(published_at)
            except ValueError:
                published_at = None
        return cls(
            title=data.get("title") or "",
            link=data.get("link") or "",
            description=data.get("description") or "",
            image=data.get("image") or None,
            published_at=published_at,
            category=data.get("category") or "",
            author=data.get("author") or "",
            content=data.get("content") or "",
            source=data.get("source") or "",
        )


@dataclass
class ArticleDetail:
    """Result of fetching one article page."""
    url: str
    title: str = ""
    description: str = ""
    content: str = ""
    image: Optional[str] = None
    author: str = ""
    published_at: Optional[datetime] = None
    strategy: str = "none"             # 'http', 'browser' or 'none'

    @property
    def is_empty(self) -> bool:
        return not self.image and not self.content

    def merged_with(self, other: Optional["ArticleDetail"]) -> "ArticleDetail":
        """Fill this detail's empty fields from another strategy's result."""
        if other is None:
            return self
        return ArticleDetail(
            url=self.url,
            title=self.title or other.title,
            description=self.description or other.description,
            content=self.content if len(self.content) >= len(other.content) else other.content,
            image=self.image or other.image,
            author=self.author or other.author,
            published_at=self.published_at or other.published_at,
            strategy=self.strategy if not self.is_empty else other.strategy,
        )


@dataclass
class SourceConfig:
    """How to read one news source's listing page."""
    id: str
    url: str
    name: str = ""
    item_selector: Optional[str] = None
    title_selector: Optional[str] = None
    link_min_length: int = settings.LINK_TEXT_MIN_LENGTH
    link_max_length: int = settings.LINK_TEXT_MAX_LENGTH
    max_articles: int = settings.MAX_ARTICLES_PER_RUN
    category: str = settings.NEWS_SOURCE_CATEGORY

    @classmethod
    def default(cls) -> "SourceConfig":
        return cls(
            id=settings.NEWS_SOURCE_ID,
            url=settings.NEWS_SOURCE_URL,
            name=settings.NEWS_SOURCE_NAME,
            item_selector=settings.NEWS_ITEM_SELECTOR,
            title_selector=settings.NEWS_TITLE_SELECTOR,
        )


@dataclass
class PostedLink:
    """Ledger row recording that a source URL has been turned into a card."""
    url: str
    title: str
    source: str
    posted_at: datetime
    id: Optional[int] = None


# =============================================================================
# Mapping Models
# =============================================================================

CAPTION_FIELD_KEY = "_social_caption_field"


@dataclass
class Mapping:
    """Binding of template keys to article fields for one (source, template) pair."""
    source_id: str
    template_id: str
    fields: Dict[str, str] = field(default_factory=dict)
    caption_field: Optional[str] = None
    id: Optional[int] = None

    @classmethod
    def from_field_map(cls, source_id: str, template_id: str, field_map: Dict[str, Any],
                       mapping_id: Optional[int] = None) -> "Mapping":
        """Build a Mapping from the stored JSON map, lifting out the reserved caption key."""
        fields = {str(k): str(v) for k, v in (field_map or {}).items()
                  if k != CAPTION_FIELD_KEY and v not in (None, "")}
        caption_field = (field_map or {}).get(CAPTION_FIELD_KEY) or None
        return cls(source_id=source_id, template_id=template_id, fields=fields,
                   caption_field=caption_field, id=mapping_id)


@dataclass
class ResolvedFields:
    """Flat key to value map handed to the renderer, plus the caption to publish."""
    values: Dict[str, str]
    caption: str
    caption_field: Optional[str] = None


# =============================================================================
# Card and Post Models
# =============================================================================

@dataclass
class NewsCard:
    id: Optional[int]
    image_url: str
    status: CardStatus
    source_data: Dict[str, Any]
    template_id: str
    mapping_id: Optional[int] = None
    user_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def link(self) -> Optional[str]:
        return self.source_data.get("link")


@dataclass
class Post:
    id: Optional[int]
    news_card_id: int
    social_account_id: str
    content: str
    status: PostStatus
    scheduled_for: Optional[datetime] = None
    posted_at: Optional[datetime] = None
    platform_post_id: Optional[str] = None
    platform_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class SocialAccount:
    id: str
    platform: str
    page_id: str
    access_token: str
    name: str = ""


@dataclass
class PublishResult:
    """Identifiers returned by the social platform for a successful post."""
    post_id: int
    platform_post_id: str
    platform_url: str

    def to_dict(self) -> Dict[str, Any]:
        return {"postId": self.post_id, "platformPostId": self.platform_post_id,
                "platformUrl": self.platform_url}


@dataclass
class PostResult:
    """Outcome of one post processed by a sweep."""
    post_id: int
    status: PostStatus
    platform_url: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"id": self.post_id, "status": self.status.value}
        if self.platform_url:
            result["platformUrl"] = self.platform_url
        if self.error:
            result["error"] = self.error
        return result


# =============================================================================
# Autopilot Models
# =============================================================================

@dataclass
class AutopilotSettings:
    user_id: str
    is_enabled: bool = False
    template_id: Optional[str] = None
    source_id: str = settings.NEWS_SOURCE_ID
    check_interval: int = settings.DEFAULT_CHECK_INTERVAL_MINUTES   # minutes
    generate_cards: bool = True
    sensitive_filter: bool = True
    sensitive_action: SensitiveAction = SensitiveAction.SKIP
    notify_on_new_card: bool = True
    auto_publish: bool = False
    social_account_id: Optional[str] = None
    publish_delay_minutes: int = 0
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def is_due(self, now: Optional[datetime] = None, min_gap: Optional[timedelta] = None) -> bool:
        """True when enabled and the interval (or min_gap) has elapsed since last_run_at."""
        if not self.is_enabled:
            return False
        if self.last_run_at is None:
            return True
        now = now or datetime.now()
        gap = min_gap if min_gap is not None else timedelta(minutes=self.check_interval)
        return now - self.last_run_at >= gap


@dataclass
class AutopilotRun:
    id: Optional[int]
    user_id: str
    status: RunStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    news_found: int = 0
    cards_created: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class RunResult:
    """Aggregate outcome of one autopilot cycle as reported to callers."""
    success: bool
    news_found: int = 0
    cards_created: int = 0
    skipped: int = 0
    errors: int = 0
    run_id: Optional[int] = None
    message: str = ""
    error_messages: List[str] = field(default_factory=list)
    user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "success": self.success,
            "newsFound": self.news_found,
            "cardsCreated": self.cards_created,
            "skipped": self.skipped,
            "errors": self.errors,
            "runId": self.run_id,
        }
        if self.message:
            result["message"] = self.message
        if self.user_id:
            result["userId"] = self.user_id
        return result


@dataclass
class Notification:
    user_id: str
    title: str
    message: str
    link: Optional[str] = None
    id: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.now)
