"""
Configuration Validation for News Card Autopilot

This module contains configuration validation logic. All problems are
collected and reported together so a bad .env can be fixed in one pass.
"""

from utils.exceptions import ConfigurationError
from utils.helpers import is_valid_url
from utils.logger import get_logger

logger = get_logger(__name__)


def validate_settings(require_database: bool = True, require_cron_secret: bool = False):
    """
    Validate that all required settings are properly configured.

    Args:
        require_database: Whether database credentials must be present.
        require_cron_secret: Whether the cron bearer secret must be present.

    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    # Import settings here to avoid circular imports
    from config import settings

    errors = []

    if require_database:
        required_vars = [
            ("DB_SERVER", settings.DB_SERVER),
            ("DB_NAME", settings.DB_NAME),
            ("DB_USER", settings.DB_USER),
            ("DB_PASSWORD", settings.DB_PASSWORD)
        ]

        for var_name, var_value in required_vars:
            if not var_value:
                errors.append(f"Missing required environment variable: {var_name}")

        if not settings.DB_CONNECTION_STRING:
            errors.append("Database connection string could not be built. Check DB_SERVER, DB_NAME, DB_USER, DB_PASSWORD.")

    if require_cron_secret and not settings.CRON_SECRET:
        errors.append("Missing required environment variable: CRON_SECRET")
    elif not settings.CRON_SECRET:
        logger.warning("CRON_SECRET is not set. Cron endpoints will reject every request.")

    if not is_valid_url(settings.NEWS_SOURCE_URL):
        errors.append(f"NEWS_SOURCE_URL is not a valid http(s) URL: {settings.NEWS_SOURCE_URL!r}")

    # Validate numeric settings are within reasonable bounds
    numeric_validations = [
        ("LINK_TEXT_MIN_LENGTH", settings.LINK_TEXT_MIN_LENGTH, 1, 500),
        ("LINK_TEXT_MAX_LENGTH", settings.LINK_TEXT_MAX_LENGTH, 1, 2000),
        ("MAX_ARTICLES_PER_RUN", settings.MAX_ARTICLES_PER_RUN, 1, 100),
        ("SWEEP_BATCH_SIZE", settings.SWEEP_BATCH_SIZE, 1, 500),
        ("MIN_CONTENT_LENGTH", settings.MIN_CONTENT_LENGTH, 0, 10000),
        ("DEFAULT_CHECK_INTERVAL_MINUTES", settings.DEFAULT_CHECK_INTERVAL_MINUTES, 1, 1440),
        ("DETAIL_FETCH_DELAY", settings.DETAIL_FETCH_DELAY, 0, 60),
    ]

    for name, value, min_val, max_val in numeric_validations:
        if value < min_val or value > max_val:
            errors.append(f"{name} must be between {min_val} and {max_val}, got {value}")

    if settings.LINK_TEXT_MIN_LENGTH > settings.LINK_TEXT_MAX_LENGTH:
        errors.append("LINK_TEXT_MIN_LENGTH must not exceed LINK_TEXT_MAX_LENGTH")

    # External calls must stay bounded
    timeout_settings = [
        ("REQUEST_TIMEOUT", settings.REQUEST_TIMEOUT),
        ("SELENIUM_PAGE_LOAD_TIMEOUT", settings.SELENIUM_PAGE_LOAD_TIMEOUT),
        ("IMAGE_DOWNLOAD_TIMEOUT", settings.IMAGE_DOWNLOAD_TIMEOUT),
        ("PUBLISH_TIMEOUT", settings.PUBLISH_TIMEOUT),
    ]

    for name, value in timeout_settings:
        if value <= 0 or value > 60:
            errors.append(f"{name} must be between 1 and 60 seconds, got {value}")

    # Raise all errors at once
    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)

    return True


def get_config_summary() -> dict:
    """
    Returns a summary of current configuration (without sensitive values).
    Useful for logging startup state.
    """
    # Import settings here to avoid circular imports
    from config import settings

    return {
        "database": {
            "server": settings.DB_SERVER[:20] + "..." if settings.DB_SERVER and len(settings.DB_SERVER) > 20 else settings.DB_SERVER,
            "database": settings.DB_NAME,
            "configured": bool(settings.DB_CONNECTION_STRING),
        },
        "source": {
            "id": settings.NEWS_SOURCE_ID,
            "url": settings.NEWS_SOURCE_URL,
            "max_articles": settings.MAX_ARTICLES_PER_RUN,
        },
        "publishing": {
            "graph_api_version": settings.FACEBOOK_GRAPH_API_VERSION,
            "sweep_batch_size": settings.SWEEP_BATCH_SIZE,
            "cron_secret_set": bool(settings.CRON_SECRET),
        },
        "autopilot": {
            "default_interval_minutes": settings.DEFAULT_CHECK_INTERVAL_MINUTES,
            "manual_cooldown_seconds": settings.MANUAL_RUN_COOLDOWN_SECONDS,
        }
    }
