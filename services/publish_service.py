"""
Publish Orchestrator Module

Moves rendered cards onto a social page, either immediately or through
the QUEUED post queue that a cron sweep drains. Post rows record every
attempt: POSTED with the platform ids, or FAILED with the error message.
FAILED posts are never retried automatically.
"""

from datetime import datetime
from typing import Optional, List, Callable, Tuple

from config import settings
from data.models import (
    Article, CardStatus, NewsCard, Post, PostResult, PostStatus, PublishResult, SocialAccount,
)
from data.protocols import CardStorage, PostStorage, SocialAccountStore
from services import mapping_service
from services.card_service import CardService
from services.protocols import SocialPublisher
from utils.exceptions import ConfigurationError, InvalidTransitionError, PublishError
from utils.helpers import decode_data_url, encode_data_url
from utils.logger import get_logger

logger = get_logger(__name__)


class PublishOrchestrator:
    """Immediate publishing, scheduling and the due-post sweep."""

    def __init__(self, card_storage: CardStorage, post_storage: PostStorage,
                 account_store: SocialAccountStore, card_service: CardService,
                 publisher: SocialPublisher, clock: Callable[[], datetime] = datetime.now):
        self.card_storage = card_storage
        self.post_storage = post_storage
        self.account_store = account_store
        self.card_service = card_service
        self.publisher = publisher
        self.clock = clock

    # =========================================================================
    # Lookups and Status
    # =========================================================================

    def _get_card(self, news_card_id: int) -> NewsCard:
        card = self.card_storage.get_news_card(news_card_id)
        if card is None:
            raise ConfigurationError(f"News card {news_card_id} not found")
        return card

    def _get_account(self, social_account_id: str) -> SocialAccount:
        account = self.account_store.get_social_account(social_account_id)
        if account is None:
            raise ConfigurationError(f"Social account {social_account_id} not found")
        return account

    def _advance(self, card: NewsCard, target: CardStatus) -> None:
        """Move a card forward to target, stepping through GENERATED when needed."""
        path = [target]
        if not card.status.can_transition_to(target) and card.status != target:
            if card.status.can_transition_to(CardStatus.GENERATED) and \
                    CardStatus.GENERATED.can_transition_to(target):
                path = [CardStatus.GENERATED, target]
            else:
                raise InvalidTransitionError(f"Card {card.id} cannot move from {card.status.value} to {target.value}")

        for status in path:
            if card.status == status:
                continue
            if not self.card_storage.update_card_status(card.id, status):
                raise InvalidTransitionError(f"Card {card.id} could not move to {status.value}")
            card.status = status

    # =========================================================================
    # Rendering
    # =========================================================================

    def _render_from_snapshot(self, card: NewsCard) -> Tuple[bytes, str]:
        """Re-render a card from its frozen source_data. Returns (png, caption)."""
        source_id = card.source_data.get("source") or settings.NEWS_SOURCE_ID
        png, resolved, _ = self.card_service.render_for_source(card.source_data, card.template_id, source_id)
        return png, resolved.caption

    def _card_image(self, card: NewsCard) -> Tuple[bytes, Optional[str]]:
        """Stored PNG when the card has one, otherwise a fresh render."""
        if card.image_url and card.image_url.startswith("data:"):
            try:
                _, png = decode_data_url(card.image_url)
                return png, None
            except ValueError as e:
                logger.warning(f"Stored image for card {card.id} is unreadable, re-rendering: {e}")
        png, caption = self._render_from_snapshot(card)
        self.card_storage.update_card_image(card.id, encode_data_url(png, "image/png"))
        return png, caption

    def _default_caption(self, card: NewsCard) -> str:
        return card.source_data.get("title") or settings.DEFAULT_CAPTION

    def _publish(self, account: SocialAccount, caption: str, png: bytes) -> Tuple[str, str]:
        """Call the platform once. Returns (platform_post_id, platform_url)."""
        result = self.publisher.publish(account.page_id, account.access_token, caption, png)
        platform_post_id = result.get("post_id") or result.get("id")
        return platform_post_id, self.publisher.post_url(result.get("id"), result.get("post_id"))

    # =========================================================================
    # Immediate Publishing
    # =========================================================================

    def publish_now(self, news_card_id: int, social_account_id: str,
                    caption: Optional[str] = None) -> PublishResult:
        """
        Publish a stored card right away.

        Args:
            news_card_id: Card to publish.
            social_account_id: Target page.
            caption: Post text; defaults to the mapped caption or the title.

        Returns:
            PublishResult: Post id plus the platform ids.

        Raises:
            ConfigurationError: If the card or account does not exist.
            InvalidTransitionError: If the card was already posted or failed.
            PublishError: After a FAILED post has been recorded.
        """
        card = self._get_card(news_card_id)
        account = self._get_account(social_account_id)
        if card.status in (CardStatus.POSTED, CardStatus.FAILED):
            raise InvalidTransitionError(f"Card {card.id} is already {card.status.value}")

        try:
            png, rendered_caption = self._card_image(card)
            caption = caption or rendered_caption or self._default_caption(card)
            platform_post_id, platform_url = self._publish(account, caption, png)
        except Exception as e:
            message = str(e)
            logger.error(f"Publishing card {card.id} to {account.id} failed: {message}")
            self.post_storage.create_post(Post(
                id=None, news_card_id=card.id, social_account_id=account.id,
                content=caption or self._default_caption(card),
                status=PostStatus.FAILED, error_message=message,
            ))
            if isinstance(e, PublishError):
                raise
            raise PublishError(message) from e

        now = self.clock()
        post = self.post_storage.create_post(Post(
            id=None, news_card_id=card.id, social_account_id=account.id, content=caption,
            status=PostStatus.POSTED, scheduled_for=now, posted_at=now,
            platform_post_id=platform_post_id, platform_url=platform_url,
        ))
        self._advance(card, CardStatus.POSTED)
        logger.info(f"Published card {card.id} as post {post.id}: {platform_url}")
        return PublishResult(post_id=post.id, platform_post_id=platform_post_id, platform_url=platform_url)

    # =========================================================================
    # Scheduling
    # =========================================================================

    def schedule(self, social_account_id: str, scheduled_for: datetime, news_card_id: Optional[int] = None,
                 article: Optional[Article] = None, template_id: Optional[str] = None,
                 caption: Optional[str] = None, user_id: Optional[str] = None) -> Post:
        """
        Queue a post for the sweep. Never calls the platform.

        Either news_card_id names an existing card that has not been posted,
        or article and template_id describe a new card, which is stored QUEUED
        without an image; the sweep renders it. A DRAFT card moves to QUEUED;
        a GENERATED card keeps its status until the sweep posts it.

        Returns:
            Post: The QUEUED post.
        """
        self._get_account(social_account_id)

        if news_card_id is not None:
            card = self._get_card(news_card_id)
            if card.status in (CardStatus.POSTED, CardStatus.FAILED):
                raise InvalidTransitionError(f"Card {card.id} is {card.status.value} and cannot be scheduled")
            if card.status == CardStatus.DRAFT:
                self._advance(card, CardStatus.QUEUED)
            caption = caption or self._default_caption(card)
        elif article is not None and template_id:
            self.card_service.load_template(template_id)
            mapping = self.card_service.find_mapping(article.source, template_id)
            caption = caption or mapping_service.resolve(mapping, article).caption
            card = self.card_service.save_card(article, b"", template_id, mapping,
                                               user_id=user_id, status=CardStatus.QUEUED)
        else:
            raise ConfigurationError("schedule needs a news card id or an article and template")

        post = self.post_storage.create_post(Post(
            id=None, news_card_id=card.id, social_account_id=social_account_id, content=caption,
            status=PostStatus.QUEUED, scheduled_for=scheduled_for,
        ))
        logger.info(f"Scheduled card {card.id} as post {post.id} for {scheduled_for.isoformat()}")
        return post

    def create_and_publish(self, article: Article, template_id: str, source_id: str,
                           social_account_id: str, scheduled_for: Optional[datetime] = None,
                           user_id: Optional[str] = None):
        """
        Generate a card for an article and post it, or queue it when scheduled_for is given.

        Returns:
            PublishResult for an immediate post, or the QUEUED Post.
        """
        if source_id and article.source != source_id:
            article = Article.from_source_data({**article.to_source_data(), "source": source_id})

        if scheduled_for is not None:
            return self.schedule(social_account_id, scheduled_for, article=article,
                                 template_id=template_id, user_id=user_id)

        self._get_account(social_account_id)
        card, resolved = self.card_service.create_card(article, template_id, source_id, user_id=user_id)
        return self.publish_now(card.id, social_account_id, resolved.caption)

    # =========================================================================
    # Sweep
    # =========================================================================

    def sweep_due(self, batch_size: Optional[int] = None) -> List[PostResult]:
        """
        Publish up to batch_size due QUEUED posts, oldest schedule first.

        Each post is independent: a failure marks that post and its card
        FAILED and the sweep continues.

        Returns:
            List[PostResult]: One entry per processed post.
        """
        batch_size = batch_size or settings.SWEEP_BATCH_SIZE
        posts = self.post_storage.get_due_posts(self.clock(), batch_size)
        logger.info(f"Found {len(posts)} due posts")

        results = []
        for post in posts:
            try:
                results.append(self._process_due_post(post))
            except Exception as e:
                logger.error(f"Failed post {post.id}: {e}", exc_info=True)
                self.post_storage.mark_post_failed(post.id, str(e))
                card = self.card_storage.get_news_card(post.news_card_id)
                if card is not None and card.status.can_transition_to(CardStatus.FAILED):
                    self.card_storage.update_card_status(card.id, CardStatus.FAILED)
                results.append(PostResult(post_id=post.id, status=PostStatus.FAILED, error=str(e)))
        return results

    def _process_due_post(self, post: Post) -> PostResult:
        card = self._get_card(post.news_card_id)
        account = self._get_account(post.social_account_id)

        png, caption = self._render_from_snapshot(card)
        self._advance(card, CardStatus.GENERATED)
        self.card_storage.update_card_image(card.id, encode_data_url(png, "image/png"))

        platform_post_id, platform_url = self._publish(account, post.content or caption, png)

        if not self.post_storage.mark_post_posted(post.id, platform_post_id, platform_url, self.clock()):
            logger.warning(f"Post {post.id} was no longer QUEUED when marking it posted")
        self._advance(card, CardStatus.POSTED)
        logger.info(f"Published scheduled post {post.id}: {platform_url}")
        return PostResult(post_id=post.id, status=PostStatus.POSTED, platform_url=platform_url)
