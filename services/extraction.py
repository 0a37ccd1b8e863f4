"""
HTML Extraction Module

BeautifulSoup helpers shared by the HTTP and headless-browser ingestion
strategies. Every function takes already-fetched markup, so the same
rules apply whether the page came from requests or from Chrome.
"""

import json
import re
from datetime import datetime
from typing import Optional, List, Tuple, Any, Iterable
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from config import settings
from config.word_lists import (
    AUTHOR_SELECTORS, BANNED_IMAGE_KEYWORDS, CONTENT_BLOCK_SELECTORS, DATE_SELECTORS,
    LISTING_EXCLUDE_PATTERNS, PARAGRAPH_NOISE_PHRASES,
)
from data.models import ArticleDetail, SourceConfig
from utils.helpers import collapse_whitespace, resolve_url, same_host, truncate_text
from utils.logger import get_logger

logger = get_logger(__name__)

_EXCLUDE_RE = re.compile('|'.join(LISTING_EXCLUDE_PATTERNS), re.IGNORECASE)
HEADING_TAGS = ["h1", "h2", "h3", "h4"]


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


# =============================================================================
# Listing Pages
# =============================================================================

def is_excluded_url(url: str) -> bool:
    """True for search, category, pagination, static and date-archive pages."""
    parsed = urlparse(url)
    target = parsed.path + (f"?{parsed.query}" if parsed.query else "")
    return bool(_EXCLUDE_RE.search(target))


def has_numeric_slug(url: str) -> bool:
    """True when the last path segment is an article id such as /national/123456."""
    segments = [s for s in urlparse(url).path.split('/') if s]
    return bool(segments) and segments[-1].isdigit()


def is_article_link(url: str, listing_url: str) -> bool:
    return (
        url.startswith(("http://", "https://"))
        and same_host(url, listing_url)
        and has_numeric_slug(url)
        and not is_excluded_url(url)
    )


def _title_length_ok(title: str, source_config: SourceConfig) -> bool:
    return source_config.link_min_length <= len(title) <= source_config.link_max_length


def _anchor_title(anchor) -> str:
    heading = anchor.find(HEADING_TAGS)
    if heading is None:
        heading = anchor.find_parent(HEADING_TAGS)
    if heading is not None:
        return collapse_whitespace(heading.get_text(" "))
    return collapse_whitespace(anchor.get_text(" "))


def _links_from_items(soup: BeautifulSoup, source_config: SourceConfig) -> List[Tuple[str, str]]:
    found = []
    for item in soup.select(source_config.item_selector):
        anchor = item.find("a", href=True)
        if anchor is None:
            continue
        url = resolve_url(source_config.url, anchor["href"])
        if not url or is_excluded_url(url):
            continue
        title_el = item.select_one(source_config.title_selector) if source_config.title_selector else None
        title = collapse_whitespace(title_el.get_text(" ")) if title_el else _anchor_title(anchor)
        if title:
            found.append((title, url))
    return found


def _links_from_heuristic(soup: BeautifulSoup, source_config: SourceConfig) -> List[Tuple[str, str]]:
    found = []
    for anchor in soup.find_all("a", href=True):
        url = resolve_url(source_config.url, anchor["href"])
        if not url or not is_article_link(url, source_config.url):
            continue
        title = _anchor_title(anchor)
        if title and _title_length_ok(title, source_config):
            found.append((title, url))
    return found


def extract_listing_links(html: str, source_config: SourceConfig) -> List[Tuple[str, str]]:
    """
    Extract (title, url) pairs from a listing page in discovery order.

    The source's own item selector is used when configured and matches;
    otherwise the generic anchor+heading heuristic runs.

    Args:
        html: Listing page markup.
        source_config: Source URL, selectors and title length bounds.

    Returns:
        List of (title, absolute url), first occurrence of each URL only.
    """
    soup = parse_html(html)

    pairs = []
    if source_config.item_selector:
        pairs = _links_from_items(soup, source_config)
        if not pairs:
            logger.info(f"Selector {source_config.item_selector!r} matched nothing, using link heuristic")
    if not pairs:
        pairs = _links_from_heuristic(soup, source_config)

    seen = set()
    unique = []
    for title, url in pairs:
        if url in seen:
            continue
        seen.add(url)
        unique.append((title, url))
    return unique


# =============================================================================
# Images
# =============================================================================

def is_probably_logo(url: Optional[str]) -> bool:
    if not url:
        return True
    lowered = url.lower()
    return any(keyword in lowered for keyword in BANNED_IMAGE_KEYWORDS)


def extract_meta_image(soup: BeautifulSoup, page_url: str) -> Optional[str]:
    tag = soup.select_one('meta[property="og:image"], meta[name="twitter:image"], meta[property="twitter:image"]')
    if tag is None:
        return None
    return resolve_url(page_url, tag.get("content"))


def _image_from_ld_value(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        url = value.get("url") or value.get("contentUrl")
        return url if isinstance(url, str) else None
    if isinstance(value, list):
        for entry in value:
            url = _image_from_ld_value(entry)
            if url:
                return url
    return None


def _ld_nodes(data: Any) -> Iterable[dict]:
    if isinstance(data, list):
        for entry in data:
            yield from _ld_nodes(entry)
    elif isinstance(data, dict):
        yield data
        if isinstance(data.get("@graph"), list):
            yield from _ld_nodes(data["@graph"])


def extract_json_ld_image(soup: BeautifulSoup, page_url: str) -> Optional[str]:
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or script.get_text() or "")
        except ValueError:
            continue
        for node in _ld_nodes(data):
            url = _image_from_ld_value(node.get("image"))
            if url:
                return resolve_url(page_url, url)
    return None


def _img_candidate(img) -> Optional[str]:
    for attr in ("src", "data-src", "data-original"):
        value = img.get(attr)
        if value and value.strip():
            return value
    srcset = img.get("srcset")
    if srcset:
        first = srcset.split(",")[0].strip().split(" ")[0]
        return first or None
    return None


def extract_inline_image(soup: BeautifulSoup, page_url: str) -> Optional[str]:
    for img in soup.find_all("img"):
        url = resolve_url(page_url, _img_candidate(img))
        if url and not is_probably_logo(url):
            return url
    return None


def extract_image(soup: BeautifulSoup, page_url: str) -> Optional[str]:
    """
    Pick the article photo: Open Graph/Twitter meta, then JSON-LD, then the
    first non-logo <img>. First match wins.
    """
    return (
        extract_meta_image(soup, page_url)
        or extract_json_ld_image(soup, page_url)
        or extract_inline_image(soup, page_url)
    )


# =============================================================================
# Text and Metadata
# =============================================================================

def _meta_content(soup: BeautifulSoup, selector: str) -> str:
    tag = soup.select_one(selector)
    return collapse_whitespace(tag.get("content")) if tag is not None else ""


def extract_title(soup: BeautifulSoup) -> str:
    title = _meta_content(soup, 'meta[property="og:title"]')
    if title:
        return title
    heading = soup.find("h1")
    if heading is not None:
        return collapse_whitespace(heading.get_text(" "))
    return collapse_whitespace(soup.title.get_text(" ")) if soup.title else ""


def extract_description(soup: BeautifulSoup) -> str:
    return (
        _meta_content(soup, 'meta[property="og:description"]')
        or _meta_content(soup, 'meta[name="description"]')
    )


def extract_author(soup: BeautifulSoup) -> str:
    for selector in AUTHOR_SELECTORS:
        element = soup.select_one(selector)
        if element is not None:
            text = collapse_whitespace(element.get_text(" "))
            if text:
                return text
    return _meta_content(soup, 'meta[name="author"]')


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into a naive local datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def extract_published_at(soup: BeautifulSoup) -> Optional[datetime]:
    candidates = [_meta_content(soup, 'meta[property="article:published_time"]')]
    for selector in DATE_SELECTORS:
        element = soup.select_one(selector)
        if element is not None:
            candidates.append(element.get("datetime") or element.get("content") or element.get_text(" "))
    for candidate in candidates:
        parsed = parse_datetime(candidate)
        if parsed:
            return parsed
    return None


def extract_paragraph_text(soup: BeautifulSoup) -> str:
    """Join body paragraphs, dropping short captions and ad labels."""
    paragraphs = []
    for p in soup.find_all("p"):
        text = collapse_whitespace(p.get_text(" "))
        if len(text) <= settings.MIN_PARAGRAPH_LENGTH:
            continue
        if any(phrase in text.lower() for phrase in PARAGRAPH_NOISE_PHRASES):
            continue
        paragraphs.append(text)
    return "\n\n".join(paragraphs)


def extract_largest_block(soup: BeautifulSoup) -> str:
    """Text of the largest content container or paragraph on the page."""
    best = ""
    elements = []
    for selector in CONTENT_BLOCK_SELECTORS:
        elements.extend(soup.select(selector))
    elements.extend(soup.find_all("p"))
    for element in elements:
        text = collapse_whitespace(element.get_text(" "))
        if len(text) > len(best):
            best = text
    return best


def extract_body_text(soup: BeautifulSoup) -> str:
    text = extract_paragraph_text(soup)
    if len(text) >= settings.MIN_CONTENT_LENGTH:
        return text
    block = extract_largest_block(soup)
    return block if len(block) > len(text) else text


def extract_detail(html: str, url: str, strategy: str) -> ArticleDetail:
    """
    Run the full extraction over one article page.

    Args:
        html: Article markup.
        url: Article URL, used to resolve relative image URLs.
        strategy: 'http' or 'browser', recorded on the result.
    """
    soup = parse_html(html)
    description = extract_description(soup)
    content = extract_body_text(soup)
    if not description and content:
        description = truncate_text(content.split("\n\n")[0], settings.DESCRIPTION_MAX_LENGTH)
    return ArticleDetail(
        url=url,
        title=extract_title(soup),
        description=description,
        content=content,
        image=extract_image(soup, url),
        author=extract_author(soup),
        published_at=extract_published_at(soup),
        strategy=strategy,
    )
