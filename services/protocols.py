"""
Service Protocol Definitions

This module defines typing.Protocol interfaces for the services that the
publishing and autopilot orchestrators depend on. These protocols enable
loose coupling, dependency injection, and easier testing.

Protocols defined:
- ArticleSource: Interface for fetching the latest articles from a news source
- CardRendererProtocol: Interface for turning a template and values into PNG bytes
- SocialPublisher: Interface for posting a rendered card to a social platform
"""

from typing import Protocol, Optional, List, Dict, Callable

from data.models import Article, SourceConfig
from data.template import Template


class ArticleSource(Protocol):
    """Protocol defining the interface for article ingestion.

    Implementations should discover article links on a listing page and
    extract each article's details, degrading rather than raising when a
    single article cannot be read.
    """

    def fetch_latest(self, source_config: Optional[SourceConfig] = None,
                     is_known: Optional[Callable[[str], bool]] = None) -> List[Article]:
        """Fetch the newest articles, in listing order.

        Args:
            source_config: Which source to read.
            is_known: Links it accepts may be returned without detail.

        Returns:
            List of articles, capped at the source's max_articles.
        """
        ...


class CardRendererProtocol(Protocol):
    """Protocol defining the interface for card rendering."""

    def render(self, template: Template, values: Dict[str, str], photo: Optional[bytes] = None) -> bytes:
        """Render a card.

        Args:
            template: Parsed template.
            values: Resolved template values.
            photo: Photo bytes; when omitted the renderer loads values["image"].

        Returns:
            PNG bytes.
        """
        ...


class SocialPublisher(Protocol):
    """Protocol defining the interface for social media publishing.

    Implementations post exactly once per call and raise PublishError
    (or a subclass) on any failure.
    """

    def publish(self, page_id: str, access_token: str, caption: str, image_bytes: bytes) -> Dict[str, str]:
        """Publish a photo post.

        Args:
            page_id: Platform page or profile id.
            access_token: Credential for that page.
            caption: Post text.
            image_bytes: PNG data.

        Returns:
            Dictionary with the platform's 'id' and 'post_id'.
        """
        ...

    def post_url(self, platform_id: str, post_id: Optional[str] = None) -> str:
        """Build the public URL of a published post."""
        ...
