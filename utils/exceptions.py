"""
Custom Exception Classes for News Card Autopilot

This module defines custom exceptions for better error handling and
categorization of failures across the ingestion, rendering and
publishing pipeline.
"""


class NewsCardError(Exception):
    """Base exception for all News Card Autopilot errors."""
    pass


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(NewsCardError):
    """Raised when settings, a template, a mapping or a social account required by an operation is missing."""
    pass


# =============================================================================
# Ingestion Errors
# =============================================================================

class IngestionError(NewsCardError):
    """Raised when the source listing cannot be fetched or parsed. Fatal to the batch."""
    pass


class DetailExtractionError(IngestionError):
    """Raised when a single article page cannot be fetched or parsed."""
    pass


# =============================================================================
# Rendering Errors
# =============================================================================

class RenderError(NewsCardError):
    """Raised when a template is malformed or an image cannot be produced."""
    pass


class ImageLoadError(RenderError):
    """Raised when a photo cannot be downloaded or decoded."""
    pass


# =============================================================================
# Publishing Errors
# =============================================================================

class PublishError(NewsCardError):
    """Raised when the social platform rejects a post or cannot be reached."""
    pass


class AuthenticationError(PublishError):
    """Raised when the platform rejects the page access token."""
    pass


class RateLimitError(PublishError):
    """Raised when a rate limit is hit on the social platform."""
    pass


class InvalidTransitionError(NewsCardError):
    """Raised when a card or post status change would move backwards."""
    pass


# =============================================================================
# Database Errors
# =============================================================================

class DatabaseError(NewsCardError):
    """Base exception for database-related errors."""
    pass


class ConnectionError(DatabaseError):
    """Raised when database connection fails."""
    pass


class QueryError(DatabaseError):
    """Raised when a database query fails."""
    pass
