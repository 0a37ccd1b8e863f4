"""
Service Wiring

Builds the service graph over one DatabaseConnection. The CLI, the API
and each autopilot loop thread call these so every unit of work gets its
own connection.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional, Iterator

from data.database import DatabaseConnection
from services.article_service import ArticleService
from services.autopilot_service import AutopilotService
from services.card_renderer import CardRenderer
from services.card_service import CardService
from services.image_service import ImageService
from services.protocols import ArticleSource, SocialPublisher
from services.publish_service import PublishOrchestrator
from services.social_service import FacebookPublisher


@dataclass
class Services:
    db: DatabaseConnection
    article_service: ArticleSource
    card_service: CardService
    publisher: PublishOrchestrator
    autopilot: AutopilotService


def build_services(db: DatabaseConnection, article_service: Optional[ArticleSource] = None,
                   social_publisher: Optional[SocialPublisher] = None) -> Services:
    """Wire every service against one database connection."""
    article_service = article_service or ArticleService()
    card_service = CardService(
        renderer=CardRenderer(image_service=ImageService()),
        card_storage=db,
        template_store=db,
        mapping_store=db,
    )
    publisher = PublishOrchestrator(
        card_storage=db,
        post_storage=db,
        account_store=db,
        card_service=card_service,
        publisher=social_publisher or FacebookPublisher(),
    )
    autopilot = AutopilotService(
        storage=db,
        article_service=article_service,
        card_service=card_service,
        publisher=publisher,
    )
    return Services(db=db, article_service=article_service, card_service=card_service,
                    publisher=publisher, autopilot=autopilot)


@contextmanager
def autopilot_session(connection_string: Optional[str] = None) -> Iterator[AutopilotService]:
    """Open a connection, yield an AutopilotService over it, close on exit."""
    db = DatabaseConnection(connection_string)
    try:
        yield build_services(db).autopilot
    finally:
        db.close()
