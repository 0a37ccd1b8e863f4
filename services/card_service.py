"""
Card Service Module

Glue between an article, its template and its field mapping: resolves
values, renders the PNG and persists the NewsCard with the rendered image
stored as a data URL.
"""

from typing import Optional, Tuple, Union, Dict, Any

from data.models import Article, CardStatus, Mapping, NewsCard, ResolvedFields
from data.protocols import CardStorage, MappingStore, TemplateStore
from data.template import Template
from services import mapping_service
from services.card_renderer import CardRenderer
from utils.exceptions import ConfigurationError
from utils.helpers import encode_data_url
from utils.logger import get_logger

logger = get_logger(__name__)


class CardService:
    """Renders and stores news cards."""

    def __init__(self, renderer: CardRenderer, card_storage: CardStorage,
                 template_store: TemplateStore, mapping_store: MappingStore):
        self.renderer = renderer
        self.card_storage = card_storage
        self.template_store = template_store
        self.mapping_store = mapping_store

    def load_template(self, template_id: Optional[str]) -> Template:
        """
        Raises:
            ConfigurationError: If no template id is given or it does not exist.
        """
        if not template_id:
            raise ConfigurationError("No template selected")
        template = self.template_store.get_template(template_id)
        if template is None:
            raise ConfigurationError(f"Template {template_id} not found")
        return template

    def find_mapping(self, source_id: str, template_id: str) -> Optional[Mapping]:
        mapping = self.mapping_store.find_mapping(source_id, template_id)
        if mapping is None:
            logger.debug(f"No mapping for source {source_id} and template {template_id}, using defaults")
        return mapping

    def render_article(self, article: Union[Article, Dict[str, Any]], template: Template,
                       mapping: Optional[Mapping]) -> Tuple[bytes, ResolvedFields]:
        """
        Render one article onto a template.

        Returns:
            Tuple[bytes, ResolvedFields]: PNG bytes and the resolved values and caption.

        Raises:
            RenderError: If the template cannot be rendered.
        """
        resolved = mapping_service.resolve(mapping, article)
        png = self.renderer.render(template, resolved.values)
        return png, resolved

    def render_for_source(self, article: Union[Article, Dict[str, Any]], template_id: str,
                          source_id: str) -> Tuple[bytes, ResolvedFields, Optional[Mapping]]:
        """Load template and mapping by id, then render."""
        template = self.load_template(template_id)
        mapping = self.find_mapping(source_id, template_id)
        png, resolved = self.render_article(article, template, mapping)
        return png, resolved, mapping

    def save_card(self, article: Article, png: bytes, template_id: str, mapping: Optional[Mapping],
                  user_id: Optional[str] = None, status: CardStatus = CardStatus.GENERATED) -> NewsCard:
        """Persist a rendered card with a frozen snapshot of its article."""
        card = NewsCard(
            id=None,
            image_url=encode_data_url(png, "image/png") if png else "",
            status=status,
            source_data=article.to_source_data(),
            template_id=template_id,
            mapping_id=mapping.id if mapping is not None else None,
            user_id=user_id,
        )
        card = self.card_storage.create_news_card(card)
        logger.info(f"Stored news card {card.id} ({status.value}) for {article.link}")
        return card

    def create_card(self, article: Article, template_id: str, source_id: Optional[str] = None,
                    user_id: Optional[str] = None,
                    status: CardStatus = CardStatus.GENERATED) -> Tuple[NewsCard, ResolvedFields]:
        """Render and persist in one step."""
        png, resolved, mapping = self.render_for_source(article, template_id, source_id or article.source)
        card = self.save_card(article, png, template_id, mapping, user_id=user_id, status=status)
        return card, resolved
