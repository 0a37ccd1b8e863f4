"""
Configuration Settings for News Card Autopilot

This module centralizes all configuration settings for the application,
including environment variables, credentials and pipeline constants.
Validation lives in config.validators.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Determine the application root directory
APP_ROOT = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
load_dotenv(dotenv_path=os.path.join(APP_ROOT, '.env'))


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    try:
        return int(value) if value not in (None, "") else default
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    try:
        return float(value) if value not in (None, "") else default
    except ValueError:
        return default


# =============================================================================
# Database Settings
# =============================================================================

DB_SERVER = os.getenv("DB_SERVER", "")
DB_NAME = os.getenv("DB_NAME", "")
DB_USER = os.getenv("DB_USER", "")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")

# Build connection string safely (validation happens in validate_settings())
DB_CONNECTION_STRING = (
    f"DRIVER={{ODBC Driver 18 for SQL Server}}; "
    f"SERVER={DB_SERVER}; "
    f"DATABASE={DB_NAME}; "
    f"UID={DB_USER}; "
    f"PWD={DB_PASSWORD}; "
    f"TrustServerCertificate=yes; MARS_Connection=yes;"
) if all([DB_SERVER, DB_NAME, DB_USER, DB_PASSWORD]) else ""

# =============================================================================
# Trigger Settings
# =============================================================================

CRON_SECRET = os.getenv("CRON_SECRET", "")
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = _get_int("API_PORT", 8000)

# =============================================================================
# News Source Settings
# =============================================================================

NEWS_SOURCE_ID = os.getenv("NEWS_SOURCE_ID", "bangladesh_guardian")
NEWS_SOURCE_NAME = os.getenv("NEWS_SOURCE_NAME", "Bangladesh Guardian")
NEWS_SOURCE_URL = os.getenv("NEWS_SOURCE_URL", "https://www.bangladeshguardian.com/latest")
NEWS_SOURCE_CATEGORY = "News"
NEWS_ITEM_SELECTOR = ".LatestNews"      # Listing item container on the source page
NEWS_TITLE_SELECTOR = "h3.Title"        # Heading inside each listing item

LINK_TEXT_MIN_LENGTH = 20            # Anchor text shorter than this is navigation, not a headline
LINK_TEXT_MAX_LENGTH = 200           # Anchor text longer than this is body copy
MAX_ARTICLES_PER_RUN = _get_int("MAX_ARTICLES_PER_RUN", 10)

# =============================================================================
# HTTP Settings
# =============================================================================

USER_AGENT = 'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36'
REQUEST_HEADERS = {
    'User-Agent': USER_AGENT,
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.5',
    'Accept-Encoding': 'gzip, deflate',
    'Connection': 'keep-alive',
    'Upgrade-Insecure-Requests': '1'
}
REQUEST_TIMEOUT = 15                 # Seconds for listing and article requests
DETAIL_FETCH_DELAY = _get_float("DETAIL_FETCH_DELAY", 1.0)  # Seconds between article detail fetches

# =============================================================================
# Selenium/Browser Settings
# =============================================================================

SELENIUM_PAGE_LOAD_TIMEOUT = 30      # Seconds before a headless page load is abandoned
SELENIUM_SETTLE_DELAY = 2            # Seconds to wait after readyState=complete for late requests

# =============================================================================
# Content Extraction Settings
# =============================================================================

MIN_CONTENT_LENGTH = 300             # Paragraph aggregate below this triggers the block heuristic
MIN_PARAGRAPH_LENGTH = 50            # Paragraphs shorter than this are captions or bylines
DESCRIPTION_MAX_LENGTH = 300

# =============================================================================
# Rendering Settings
# =============================================================================

FONT_DIR = os.getenv("FONT_DIR", os.path.join(APP_ROOT, "fonts"))
DEFAULT_FONT_FAMILY = "Arial"
DEFAULT_FONT_SIZE = 40
DEFAULT_CANVAS_WIDTH = 1080
DEFAULT_CANVAS_HEIGHT = 1080
PLACEHOLDER_FILL = "#e0e0e0"         # Neutral fill for an image placeholder without a photo
PLACEHOLDER_STROKE = "#cccccc"
IMAGE_DOWNLOAD_TIMEOUT = 15          # Seconds timeout for photo download
MAX_IMAGE_BYTES = 10 * 1024 * 1024   # Photos larger than this are rejected

# =============================================================================
# Publishing Settings
# =============================================================================

FACEBOOK_GRAPH_API_URL = "https://graph.facebook.com"
FACEBOOK_GRAPH_API_VERSION = os.getenv("FACEBOOK_GRAPH_API_VERSION", "v19.0")
FACEBOOK_POST_URL_TEMPLATE = "https://facebook.com/{post_id}"
PUBLISH_TIMEOUT = 30                 # Seconds timeout for the photo upload call
SWEEP_BATCH_SIZE = _get_int("SWEEP_BATCH_SIZE", 10)
DEFAULT_CAPTION = "Breaking News"

# =============================================================================
# Autopilot Settings
# =============================================================================

DEFAULT_CHECK_INTERVAL_MINUTES = 15
MIN_CHECK_INTERVAL_MINUTES = 1
MANUAL_RUN_COOLDOWN_SECONDS = 60     # Minimum gap between two manual runs for the same user
LOOP_JOIN_TIMEOUT = 10               # Seconds stop() waits for a loop thread to exit
AUTOPILOT_HISTORY_LIMIT = 10
AUTOPILOT_RECENT_RUNS = 5
