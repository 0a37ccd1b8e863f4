"""
Data Layer Protocol Definitions

This module defines typing.Protocol interfaces for data layer operations.
These protocols enable dependency injection for database operations,
making services testable without real database connections.

Protocols defined:
- LinkLedgerStorage: Append-only record of processed source URLs
- CardStorage: News card persistence and status transitions
- PostStorage: Social post persistence and the due-post queue
- AutopilotStorage: Per-user autopilot settings, runs, word lists, notifications
- TemplateStore / MappingStore / SocialAccountStore: read-only collaborators
"""

from datetime import datetime, timedelta
from typing import Protocol, Optional, List

from data.models import (
    AutopilotRun, AutopilotSettings, CardStatus, Mapping, NewsCard,
    Notification, Post, PostedLink, SocialAccount,
)
from data.template import Template


class LinkLedgerStorage(Protocol):
    """Protocol for the dedup ledger's backing store.

    insert_posted_link must be atomic per (source, url): of any number of
    concurrent callers exactly one receives the new row and the rest
    receive None.
    """

    def is_link_processed(self, source: str, url: str) -> bool:
        ...

    def insert_posted_link(self, source: str, url: str, title: str) -> Optional[PostedLink]:
        """Insert a ledger row.

        Args:
            source: Source id the URL belongs to.
            url: Canonical article URL.
            title: Article title at commit time.

        Returns:
            The new PostedLink, or None if the pair was already present.
        """
        ...


class CardStorage(Protocol):
    """Protocol for news card persistence."""

    def create_news_card(self, card: NewsCard) -> NewsCard:
        """Persist a card and return it with its id set."""
        ...

    def get_news_card(self, card_id: int) -> Optional[NewsCard]:
        ...

    def update_card_status(self, card_id: int, status: CardStatus) -> bool:
        """Move a card forward.

        Returns:
            True if the card moved, False if it does not exist or the
            transition from its current status is not allowed.
        """
        ...

    def update_card_image(self, card_id: int, image_url: str) -> bool:
        ...


class PostStorage(Protocol):
    """Protocol for social post persistence.

    The terminal updates only apply to rows still QUEUED, which makes a
    repeated sweep a no-op for posts that already finished.
    """

    def create_post(self, post: Post) -> Post:
        ...

    def get_post(self, post_id: int) -> Optional[Post]:
        ...

    def get_due_posts(self, now: datetime, limit: int) -> List[Post]:
        """Return up to limit QUEUED posts with scheduled_for <= now, oldest first."""
        ...

    def mark_post_posted(self, post_id: int, platform_post_id: str, platform_url: str,
                         posted_at: datetime) -> bool:
        ...

    def mark_post_failed(self, post_id: int, error_message: str) -> bool:
        ...


class AutopilotStorage(Protocol):
    """Protocol for autopilot state."""

    def get_autopilot_settings(self, user_id: str) -> Optional[AutopilotSettings]:
        ...

    def list_enabled_autopilot_settings(self) -> List[AutopilotSettings]:
        ...

    def save_autopilot_settings(self, autopilot_settings: AutopilotSettings) -> bool:
        ...

    def set_autopilot_enabled(self, user_id: str, enabled: bool) -> bool:
        ...

    def claim_autopilot_run(self, user_id: str, now: datetime, min_gap: timedelta) -> bool:
        """Atomically set last_run_at = now if the user is enabled and due.

        Args:
            user_id: Owner of the settings row.
            now: Claim timestamp.
            min_gap: Minimum time since the previous last_run_at.

        Returns:
            True if this caller claimed the cycle, False if another caller
            already did or the user is disabled.
        """
        ...

    def update_autopilot_error(self, user_id: str, error: Optional[str]) -> bool:
        ...

    def create_autopilot_run(self, run: AutopilotRun) -> AutopilotRun:
        ...

    def complete_autopilot_run(self, run: AutopilotRun) -> bool:
        """Write final counts and status. Has no effect on a run already completed."""
        ...

    def get_autopilot_runs(self, user_id: str, limit: int = 10,
                           since: Optional[datetime] = None) -> List[AutopilotRun]:
        """Newest runs first, optionally only those started at or after since."""
        ...

    def get_sensitive_words(self, user_id: str) -> List[str]:
        ...

    def create_notification(self, notification: Notification) -> Optional[int]:
        ...


class TemplateStore(Protocol):
    def get_template(self, template_id: str) -> Optional[Template]:
        ...

    def list_templates(self, user_id: Optional[str] = None) -> List[Template]:
        ...


class MappingStore(Protocol):
    def find_mapping(self, source_id: str, template_id: str) -> Optional[Mapping]:
        ...


class SocialAccountStore(Protocol):
    def get_social_account(self, account_id: str) -> Optional[SocialAccount]:
        ...
