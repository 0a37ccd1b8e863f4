"""
Article Service Module

This module handles article ingestion from a news source: fetching the
listing page, discovering article links, and extracting each article's
photo, body text, byline and publish date. Plain HTTP is tried first;
headless Chrome is the fallback when the page hides its content behind
JavaScript.
"""

import time
from datetime import datetime
from typing import Optional, List, Callable

import requests
from newspaper import Article as NewspaperArticle

from config import settings
from data.models import Article, ArticleDetail, SourceConfig
from services.browser_service import BrowserService
from services.extraction import extract_detail, extract_listing_links, is_probably_logo
from utils.exceptions import IngestionError, DetailExtractionError
from utils.logger import get_logger

logger = get_logger(__name__)


class ArticleService:
    """Service for fetching and processing articles."""

    def __init__(self, browser: Optional[BrowserService] = None, request_timeout: Optional[int] = None,
                 detail_delay: Optional[float] = None, headers: Optional[dict] = None,
                 use_browser_fallback: bool = True, sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the article service.

        Args:
            browser: Headless fallback, created lazily when not injected.
            request_timeout: Seconds for each HTTP request.
            detail_delay: Seconds to pause between article detail fetches.
            headers: HTTP headers identifying the client.
            use_browser_fallback: Set False to never launch Chrome.
            sleep: Sleep function, injectable for tests.
        """
        self.request_timeout = request_timeout or settings.REQUEST_TIMEOUT
        self.detail_delay = settings.DETAIL_FETCH_DELAY if detail_delay is None else detail_delay
        self.headers = headers or settings.REQUEST_HEADERS
        self.use_browser_fallback = use_browser_fallback
        self._browser = browser
        self._sleep = sleep

    @property
    def browser(self) -> BrowserService:
        if self._browser is None:
            self._browser = BrowserService()
        return self._browser

    # =========================================================================
    # Listing
    # =========================================================================

    def fetch_listing(self, source_config: SourceConfig) -> str:
        """
        Download the source's listing page.

        Raises:
            IngestionError: If the page cannot be fetched.
        """
        try:
            response = requests.get(source_config.url, headers=self.headers, timeout=self.request_timeout)
            response.raise_for_status()
            return response.text
        except requests.RequestException as e:
            raise IngestionError(f"Could not fetch listing {source_config.url}: {e}") from e

    def fetch_latest(self, source_config: Optional[SourceConfig] = None,
                     is_known: Optional[Callable[[str], bool]] = None) -> List[Article]:
        """
        Fetch the newest articles from a source, in listing order.

        Args:
            source_config: Which source to read; defaults to the configured one.
            is_known: Optional predicate; links it accepts are returned without a
                detail fetch, since the caller is going to skip them anyway.

        Returns:
            List[Article]: One article per discovered link, capped at max_articles.

        Raises:
            IngestionError: If the listing page cannot be fetched.
        """
        source_config = source_config or SourceConfig.default()
        html = self.fetch_listing(source_config)
        links = extract_listing_links(html, source_config)[:source_config.max_articles]
        logger.info(f"Found {len(links)} articles on {source_config.url}")

        articles = []
        fetched = 0
        for title, url in links:
            if is_known is not None and is_known(url):
                detail = ArticleDetail(url=url)
            else:
                if fetched and self.detail_delay:
                    self._sleep(self.detail_delay)
                detail = self.fetch_detail(url)
                fetched += 1

            articles.append(Article(
                title=title,
                link=url,
                description=detail.description,
                image=detail.image,
                published_at=detail.published_at or datetime.now(),
                category=source_config.category,
                author=detail.author or source_config.name,
                content=detail.content,
                source=source_config.id,
            ))

        return articles

    # =========================================================================
    # Detail
    # =========================================================================

    def fetch_detail(self, url: str) -> ArticleDetail:
        """
        Extract one article's details, degrading instead of raising.

        Args:
            url: Article URL.

        Returns:
            ArticleDetail: Extracted fields; empty with strategy 'none' when
            every strategy failed.
        """
        detail = None
        try:
            detail = self._fetch_with_requests(url)
        except DetailExtractionError as e:
            logger.warning(f"HTTP extraction failed for {url}: {e}")

        if (detail is None or not detail.image) and self.use_browser_fallback:
            logger.info(f"Falling back to headless browser for {url}")
            browser_detail = self.browser.fetch_detail(url)
            detail = browser_detail if detail is None else detail.merged_with(browser_detail)

        if detail is None:
            logger.warning(f"No detail could be extracted for {url}")
            return ArticleDetail(url=url)

        return detail

    def _fetch_with_requests(self, url: str) -> ArticleDetail:
        try:
            response = requests.get(url, headers=self.headers, timeout=self.request_timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise DetailExtractionError(str(e)) from e

        detail = extract_detail(response.text, url, strategy="http")
        return self._enrich_with_newspaper(detail, response.text)

    def _enrich_with_newspaper(self, detail: ArticleDetail, html: str) -> ArticleDetail:
        """Let newspaper's boilerplate removal improve body text, byline and date."""
        try:
            article = NewspaperArticle(detail.url)
            article.config.browser_user_agent = self.headers.get('User-Agent', settings.USER_AGENT)
            article.download(input_html=html)
            article.parse()
        except Exception as e:
            logger.warning(f"newspaper could not parse {detail.url}: {e}")
            return detail

        text = (article.text or "").strip()
        if len(text) > len(detail.content):
            detail.content = text
        if not detail.author and article.authors:
            detail.author = ", ".join(article.authors)
        if not detail.published_at and article.publish_date:
            published = article.publish_date
            if published.tzinfo is not None:
                published = published.astimezone().replace(tzinfo=None)
            detail.published_at = published
        if not detail.image and article.top_image and not is_probably_logo(article.top_image):
            detail.image = article.top_image
        if not detail.title and article.title:
            detail.title = article.title
        return detail
