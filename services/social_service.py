"""
Social Service Module

This module handles publishing rendered cards to a Facebook Page through
the Graph API photos endpoint. Each call posts exactly once; failures are
raised as PublishError subclasses so the caller can record them on the
Post row.
"""

from typing import Optional, Dict, Any

import requests

from config import settings
from utils.exceptions import AuthenticationError, PublishError, RateLimitError
from utils.logger import get_logger

logger = get_logger(__name__)

# Graph API error codes
AUTH_ERROR_CODES = {102, 190}
RATE_LIMIT_ERROR_CODES = {4, 17, 32, 613}


class FacebookPublisher:
    """Publisher for Facebook Page photo posts."""

    def __init__(self, api_url: Optional[str] = None, api_version: Optional[str] = None,
                 timeout: Optional[int] = None):
        self.api_url = (api_url or settings.FACEBOOK_GRAPH_API_URL).rstrip("/")
        self.api_version = api_version or settings.FACEBOOK_GRAPH_API_VERSION
        self.timeout = timeout or settings.PUBLISH_TIMEOUT

    def photos_endpoint(self, page_id: str) -> str:
        return f"{self.api_url}/{self.api_version}/{page_id}/photos"

    def publish(self, page_id: str, access_token: str, caption: str, image_bytes: bytes) -> Dict[str, str]:
        """
        Upload a PNG card as a published photo post.

        Args:
            page_id: Facebook Page id.
            access_token: Page access token.
            caption: Post message.
            image_bytes: PNG data.

        Returns:
            Dict[str, str]: The photo 'id' and the feed 'post_id'.

        Raises:
            AuthenticationError: If the token is rejected.
            RateLimitError: If the page or app is throttled.
            PublishError: For any other failure.
        """
        if not page_id or not access_token:
            raise AuthenticationError("Social account is missing a page id or access token")

        try:
            response = requests.post(
                self.photos_endpoint(page_id),
                data={
                    'message': caption,
                    'access_token': access_token,
                    'published': 'true',
                },
                files={'source': ('card.png', image_bytes, 'image/png')},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Error posting to Facebook page {page_id}: {e}")
            raise PublishError(f"Facebook request failed: {e}") from e

        data = self._json(response)
        if not response.ok:
            self._raise_for_error(response.status_code, data)

        photo_id = str(data.get('id') or '')
        post_id = str(data.get('post_id') or '')
        if not photo_id and not post_id:
            raise PublishError("Facebook API Error: response did not include a post id")

        logger.info(f"Successfully posted to Facebook page {page_id}: {post_id or photo_id}")
        return {'id': photo_id, 'post_id': post_id}

    def post_url(self, platform_id: str, post_id: Optional[str] = None) -> str:
        return settings.FACEBOOK_POST_URL_TEMPLATE.format(post_id=post_id or platform_id)

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _raise_for_error(status_code: int, data: Dict[str, Any]) -> None:
        error = data.get('error') or {}
        message = error.get('message') or 'Unknown error'
        code = error.get('code')
        text = f"Facebook API Error: {message}"

        if status_code == 401 or code in AUTH_ERROR_CODES:
            raise AuthenticationError(text)
        if status_code == 429 or code in RATE_LIMIT_ERROR_CODES:
            raise RateLimitError(text)
        raise PublishError(text)
