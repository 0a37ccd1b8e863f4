"""
Shared Test Fixtures for News Card Autopilot

This module provides common fixtures used across all test modules.
Fixtures include mocks for settings, database connections, logging and
HTTP responses, data factories for articles, templates and photos, and
an in-memory implementation of every storage protocol for
dependency-injected service tests.
"""

import io
import json
import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List
from unittest.mock import MagicMock, patch
import sys
import os

import pytest
from PIL import Image

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from data.models import (
    Article, AutopilotRun, AutopilotSettings, CardStatus, Mapping, NewsCard, Notification,
    Post, PostStatus, PostedLink, SocialAccount,
)
from data.template import Template, parse_template
from utils.exceptions import PublishError


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def mock_settings(monkeypatch):
    """
    Override settings values with safe test configuration.

    The real config.settings module is patched attribute by attribute, so
    every module that did `from config import settings` sees the values.

    Usage:
        def test_something(mock_settings):
            mock_settings.CRON_SECRET = "other-secret"

    Returns:
        module: The patched settings module.
    """
    from config import settings

    values = {
        "DB_SERVER": "test-server",
        "DB_NAME": "test-db",
        "DB_USER": "test-user",
        "DB_PASSWORD": "test-password",
        "DB_CONNECTION_STRING": "DRIVER={Test};SERVER=test-server;DATABASE=test-db;",
        "CRON_SECRET": "test-cron-secret",
        "NEWS_SOURCE_URL": "https://news.example.com/latest",
        "USER_AGENT": "Test User Agent",
        "REQUEST_HEADERS": {"User-Agent": "Test User Agent"},
        "DETAIL_FETCH_DELAY": 0.0,
        "MANUAL_RUN_COOLDOWN_SECONDS": 60,
        "FONT_DIR": "/nonexistent-test-fonts",
    }
    for name, value in values.items():
        monkeypatch.setattr(settings, name, value)
    yield settings


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def mock_db_connection():
    """
    Mock pyodbc database connection and cursor.

    Usage:
        def test_database(mock_db_connection):
            conn, cursor = mock_db_connection
            cursor.fetchall.return_value = [('row1',), ('row2',)]

    Returns:
        tuple: A tuple of (mock_connection, mock_cursor).
    """
    mock_cursor = MagicMock()
    mock_cursor.description = [('column1',), ('column2',)]
    mock_cursor.fetchall.return_value = []
    mock_cursor.fetchone.return_value = None
    mock_cursor.rowcount = 0

    mock_conn = MagicMock()
    mock_conn.cursor.return_value = mock_cursor
    mock_conn.commit.return_value = None
    mock_conn.rollback.return_value = None
    mock_conn.close.return_value = None

    with patch('pyodbc.connect', return_value=mock_conn):
        yield mock_conn, mock_cursor


# =============================================================================
# Logging Fixtures
# =============================================================================

@pytest.fixture
def capture_logs():
    """
    Capture log records from the application loggers.

    Returns:
        list: A list that will contain captured log records.
    """
    import logging
    from utils.logger import ROOT_LOGGER_NAME

    class LogCapture(logging.Handler):
        def __init__(self):
            super().__init__()
            self.records = []

        def emit(self, record):
            self.records.append(record)

    handler = LogCapture()
    handler.setLevel(logging.DEBUG)

    app_logger = logging.getLogger(ROOT_LOGGER_NAME)
    original_level = app_logger.level
    app_logger.setLevel(logging.DEBUG)
    app_logger.addHandler(handler)

    yield handler.records

    app_logger.removeHandler(handler)
    app_logger.setLevel(original_level)


# =============================================================================
# HTTP Response Fixtures
# =============================================================================

@pytest.fixture
def mock_http_response():
    """
    Factory fixture for creating mock HTTP responses.

    Usage:
        def test_http_request(mock_http_response):
            response = mock_http_response(status_code=200, json_data={'key': 'value'})

    Returns:
        callable: A factory function for creating mock responses.
    """
    def _create_response(
        status_code: int = 200,
        content: bytes = b'',
        text: str = '',
        json_data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        url: str = 'https://example.com',
    ) -> MagicMock:
        mock_response = MagicMock()
        mock_response.status_code = status_code
        mock_response.content = content
        mock_response.url = url
        mock_response.headers = headers or {'Content-Type': 'text/html'}
        mock_response.ok = 200 <= status_code < 300

        if text:
            mock_response.text = text
        elif json_data:
            mock_response.text = json.dumps(json_data)
        else:
            mock_response.text = content.decode('utf-8', errors='ignore') if content else ''

        if json_data is not None:
            mock_response.json.return_value = json_data
        else:
            mock_response.json.side_effect = ValueError("No JSON data")

        if status_code >= 400:
            from requests.exceptions import HTTPError
            mock_response.raise_for_status.side_effect = HTTPError(f"{status_code} Error", response=mock_response)
        else:
            mock_response.raise_for_status.return_value = None

        return mock_response

    return _create_response


# =============================================================================
# Data Factories
# =============================================================================

def make_png(width: int = 40, height: int = 20, color=(200, 30, 30)) -> bytes:
    """Small solid-colour PNG for photo tests."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_factory():
    return make_png


@pytest.fixture
def article_factory():
    """
    Factory fixture for creating Article objects.

    Usage:
        article = article_factory(title="Custom headline")
    """
    counter = {"n": 0}

    def _create_article(**overrides) -> Article:
        counter["n"] += 1
        n = counter["n"]
        values = dict(
            title=f"Government announces new policy on river management number {n}",
            link=f"https://news.example.com/national/river-policy-{n}",
            description="The ministry outlined a plan to dredge major rivers before the monsoon.",
            image=None,
            published_at=datetime(2026, 1, 5, 9, 30),
            category="News",
            author="Bangladesh Guardian",
            content="",
            source="bangladesh_guardian",
        )
        values.update(overrides)
        return Article(**values)

    return _create_article


TEMPLATE_CANVAS = {
    "width": 400,
    "height": 300,
    "background": "#ffffff",
    "objects": [
        {"type": "rect", "left": 0, "top": 0, "width": 400, "height": 40, "fill": "#003366"},
        {"type": "rect", "left": 20, "top": 50, "width": 360, "height": 150, "fill": "#e0e0e0",
         "dynamicField": "image"},
        {"type": "textbox", "left": 20, "top": 210, "width": 360, "height": 30, "text": "Headline",
         "fontSize": 18, "fill": "#000000", "dynamicField": "title"},
        {"type": "textbox", "left": 20, "top": 260, "width": 200, "height": 20, "text": "Date",
         "fontSize": 12, "fill": "#555555", "dynamicField": "date"},
    ],
}


@pytest.fixture
def template_data():
    """Editor JSON for a small card template with an image placeholder."""
    return json.loads(json.dumps(TEMPLATE_CANVAS))


@pytest.fixture
def template(template_data) -> Template:
    return parse_template(template_data, template_id="tpl-1", name="Test Template")


# =============================================================================
# In-memory Storage
# =============================================================================

class InMemoryStorage:
    """
    Thread-safe implementation of every storage protocol.

    The ledger enforces uniqueness on (source, url) under a lock, which is
    what the database's unique index does.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._next_id = 1
        self.posted_links: Dict[tuple, PostedLink] = {}
        self.cards: Dict[int, NewsCard] = {}
        self.posts: Dict[int, Post] = {}
        self.settings: Dict[str, AutopilotSettings] = {}
        self.runs: Dict[int, AutopilotRun] = {}
        self.sensitive_words: Dict[str, List[str]] = {}
        self.notifications: List[Notification] = []
        self.templates: Dict[str, Template] = {}
        self.mappings: Dict[tuple, Mapping] = {}
        self.accounts: Dict[str, SocialAccount] = {}

    def _new_id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    # Ledger
    def is_link_processed(self, source: str, url: str) -> bool:
        with self._lock:
            return (source, url) in self.posted_links

    def insert_posted_link(self, source: str, url: str, title: str) -> Optional[PostedLink]:
        with self._lock:
            if (source, url) in self.posted_links:
                return None
            link = PostedLink(url=url, title=title, source=source, posted_at=datetime.now(), id=self._new_id())
            self.posted_links[(source, url)] = link
            return link

    # Cards
    def create_news_card(self, card: NewsCard) -> NewsCard:
        with self._lock:
            card.id = self._new_id()
            self.cards[card.id] = replace(card)
            return card

    def get_news_card(self, card_id: int) -> Optional[NewsCard]:
        with self._lock:
            card = self.cards.get(card_id)
            return replace(card) if card else None

    def update_card_status(self, card_id: int, status: CardStatus) -> bool:
        with self._lock:
            card = self.cards.get(card_id)
            if card is None or not card.status.can_transition_to(status):
                return False
            card.status = status
            return True

    def update_card_image(self, card_id: int, image_url: str) -> bool:
        with self._lock:
            card = self.cards.get(card_id)
            if card is None:
                return False
            card.image_url = image_url
            return True

    # Posts
    def create_post(self, post: Post) -> Post:
        with self._lock:
            post.id = self._new_id()
            self.posts[post.id] = replace(post)
            return post

    def get_post(self, post_id: int) -> Optional[Post]:
        with self._lock:
            post = self.posts.get(post_id)
            return replace(post) if post else None

    def get_due_posts(self, now: datetime, limit: int) -> List[Post]:
        with self._lock:
            due = [p for p in self.posts.values()
                   if p.status == PostStatus.QUEUED and p.scheduled_for and p.scheduled_for <= now]
            due.sort(key=lambda p: (p.scheduled_for, p.id))
            return [replace(p) for p in due[:limit]]

    def mark_post_posted(self, post_id: int, platform_post_id: str, platform_url: str,
                         posted_at: datetime) -> bool:
        with self._lock:
            post = self.posts.get(post_id)
            if post is None or post.status != PostStatus.QUEUED:
                return False
            post.status = PostStatus.POSTED
            post.platform_post_id = platform_post_id
            post.platform_url = platform_url
            post.posted_at = posted_at
            return True

    def mark_post_failed(self, post_id: int, error_message: str) -> bool:
        with self._lock:
            post = self.posts.get(post_id)
            if post is None or post.status != PostStatus.QUEUED:
                return False
            post.status = PostStatus.FAILED
            post.error_message = error_message
            return True

    # Autopilot settings
    def get_autopilot_settings(self, user_id: str) -> Optional[AutopilotSettings]:
        with self._lock:
            found = self.settings.get(user_id)
            return replace(found) if found else None

    def list_enabled_autopilot_settings(self) -> List[AutopilotSettings]:
        with self._lock:
            return [replace(s) for s in self.settings.values() if s.is_enabled]

    def save_autopilot_settings(self, autopilot_settings: AutopilotSettings) -> bool:
        with self._lock:
            self.settings[autopilot_settings.user_id] = replace(autopilot_settings)
            return True

    def set_autopilot_enabled(self, user_id: str, enabled: bool) -> bool:
        with self._lock:
            found = self.settings.get(user_id)
            if found is None:
                return False
            found.is_enabled = enabled
            return True

    def claim_autopilot_run(self, user_id: str, now: datetime, min_gap: timedelta) -> bool:
        with self._lock:
            found = self.settings.get(user_id)
            if found is None or not found.is_enabled:
                return False
            if found.last_run_at is not None and found.last_run_at > now - min_gap:
                return False
            found.last_run_at = now
            return True

    def update_autopilot_error(self, user_id: str, error: Optional[str]) -> bool:
        with self._lock:
            found = self.settings.get(user_id)
            if found is None:
                return False
            found.last_error = error
            return True

    # Autopilot runs
    def create_autopilot_run(self, run: AutopilotRun) -> AutopilotRun:
        with self._lock:
            run.id = self._new_id()
            self.runs[run.id] = replace(run, errors=list(run.errors))
            return run

    def complete_autopilot_run(self, run: AutopilotRun) -> bool:
        with self._lock:
            stored = self.runs.get(run.id)
            if stored is None or stored.completed_at is not None:
                return False
            self.runs[run.id] = replace(run, errors=list(run.errors))
            return True

    def get_autopilot_runs(self, user_id: str, limit: int = 10,
                           since: Optional[datetime] = None) -> List[AutopilotRun]:
        with self._lock:
            runs = [r for r in self.runs.values()
                    if r.user_id == user_id and (since is None or r.started_at >= since)]
            runs.sort(key=lambda r: (r.started_at, r.id), reverse=True)
            return [replace(r) for r in runs[:limit]]

    def get_sensitive_words(self, user_id: str) -> List[str]:
        return list(self.sensitive_words.get(user_id, []))

    def create_notification(self, notification: Notification) -> Optional[int]:
        with self._lock:
            notification.id = self._new_id()
            self.notifications.append(notification)
            return notification.id

    # Read-only collaborators
    def get_template(self, template_id: str) -> Optional[Template]:
        return self.templates.get(template_id)

    def list_templates(self, user_id: Optional[str] = None) -> List[Template]:
        return list(self.templates.values())

    def find_mapping(self, source_id: str, template_id: str) -> Optional[Mapping]:
        return self.mappings.get((source_id, template_id))

    def get_social_account(self, account_id: str) -> Optional[SocialAccount]:
        return self.accounts.get(account_id)

    def close(self) -> None:
        pass


@pytest.fixture
def storage(template) -> InMemoryStorage:
    """In-memory storage seeded with one template and one Facebook page."""
    store = InMemoryStorage()
    store.templates[template.id] = template
    store.accounts["fb-1"] = SocialAccount(id="fb-1", platform="facebook", page_id="page-123",
                                           access_token="page-token", name="Test Page")
    return store


# =============================================================================
# Service Fakes
# =============================================================================

class FakeArticleSource:
    """ArticleSource returning a fixed list and recording calls."""

    def __init__(self, articles: Optional[List[Article]] = None, error: Optional[Exception] = None):
        self.articles = list(articles or [])
        self.error = error
        self.calls = 0

    def fetch_latest(self, source_config=None, is_known=None) -> List[Article]:
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.articles)


class FakePublisher:
    """SocialPublisher that records uploads and can be told to fail."""

    def __init__(self, fail_with: Optional[Exception] = None):
        self.fail_with = fail_with
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def publish(self, page_id: str, access_token: str, caption: str, image_bytes: bytes) -> Dict[str, str]:
        with self._lock:
            self.calls.append({"page_id": page_id, "access_token": access_token,
                               "caption": caption, "image_bytes": image_bytes})
            n = len(self.calls)
        if self.fail_with is not None:
            raise self.fail_with
        return {"id": f"photo-{n}", "post_id": f"page-123_{n}"}

    def post_url(self, platform_id: str, post_id: Optional[str] = None) -> str:
        return f"https://facebook.com/{post_id or platform_id}"


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
def clock():
    """Clock fixed at Monday, January 5, 2026 12:00."""
    return FixedClock(datetime(2026, 1, 5, 12, 0))


@pytest.fixture
def fake_publisher():
    return FakePublisher()


@pytest.fixture
def failing_publisher():
    return FakePublisher(fail_with=PublishError("Facebook API Error: Invalid OAuth access token"))


@pytest.fixture
def card_service(storage, mock_settings):
    """CardService over in-memory storage with a real Pillow renderer."""
    from services.card_renderer import CardRenderer
    from services.card_service import CardService
    from services.image_service import ImageService

    return CardService(
        renderer=CardRenderer(image_service=ImageService()),
        card_storage=storage,
        template_store=storage,
        mapping_store=storage,
    )
