"""
Field Mapping Service

Resolves the values a template needs from an article. A Mapping binds
template keys to article fields for one (source, template) pair; without
one, the identity mapping title/date/subtitle/image applies. Absent or
unknown fields resolve to defaults, never to errors.
"""

from datetime import datetime
from typing import Optional, Dict, Any, Union

from config import settings
from data.models import Article, Mapping, ResolvedFields
from utils.helpers import format_long_date, get_path
from utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_FIELDS = {
    "title": "title",
    "date": "published_at",
    "subtitle": "description",
    "image": "image",
}
UNTITLED = "Untitled"

# Field names saved by the mapping editor, keyed to the Article field they read
FIELD_ALIASES = {
    "publishedAt": "published_at",
    "pubDate": "published_at",
    "isoDate": "published_at",
    "contentSnippet": "description",
    "imageUrl": "image",
    "url": "link",
}


def _article_data(article: Union[Article, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(article, Article):
        data = article.to_source_data()
        data["published_at"] = article.published_at
    else:
        data = dict(article or {})
        published_at = data.get("published_at")
        if isinstance(published_at, str):
            # Card snapshots store the timestamp as ISO text
            try:
                data["published_at"] = datetime.fromisoformat(published_at)
            except ValueError:
                pass

    for alias, field in FIELD_ALIASES.items():
        if alias not in data:
            data[alias] = data.get(field)
    return data


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return format_long_date(value)
    if isinstance(value, (list, tuple)):
        return ", ".join(_as_text(v) for v in value if v not in (None, ""))
    return str(value).strip()


def _default_for(key: str) -> str:
    if key == "date":
        return format_long_date(datetime.now())
    if key == "title":
        return UNTITLED
    return ""


def resolve(mapping: Optional[Mapping], article: Union[Article, Dict[str, Any]]) -> ResolvedFields:
    """
    Resolve template values for one article.

    Args:
        mapping: Stored mapping for the article's source and the template, or None.
        article: The article, or its source_data snapshot.

    Returns:
        ResolvedFields: Every required key mapped to a string, plus the caption.
    """
    data = _article_data(article)

    fields = dict(DEFAULT_FIELDS)
    if mapping is not None:
        fields.update(mapping.fields)

    values = {}
    for key, source_field in fields.items():
        value = _as_text(get_path(data, source_field))
        if not value and key == "date" and source_field != "published_at":
            value = _as_text(data.get("published_at"))
        values[key] = value or _default_for(key)

    caption_field = mapping.caption_field if mapping is not None else None
    caption = ""
    if caption_field:
        caption = values.get(caption_field) or _as_text(get_path(data, caption_field))
        if not caption:
            logger.warning(f"Caption field {caption_field!r} is empty, falling back to title")
    caption = caption or values.get("title") or settings.DEFAULT_CAPTION

    return ResolvedFields(values=values, caption=caption, caption_field=caption_field)
