"""
Tests for the Social Service

Comprehensive unit tests for FacebookPublisher covering:
- Photo upload request shape
- Graph API error classification
- Network failures
- Post URL construction
"""

import pytest
import requests
from unittest.mock import patch
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.social_service import FacebookPublisher
from utils.exceptions import AuthenticationError, PublishError, RateLimitError


PNG = b"\x89PNG fake"


@pytest.fixture
def publisher():
    return FacebookPublisher(api_url="https://graph.example.com/", api_version="v19.0", timeout=7)


# =============================================================================
# Publish Tests
# =============================================================================

class TestPublish:
    """Tests for FacebookPublisher.publish."""

    @patch('services.social_service.requests.post')
    def test_success(self, mock_post, publisher, mock_http_response):
        mock_post.return_value = mock_http_response(json_data={'id': '111', 'post_id': 'page-123_222'})

        result = publisher.publish("page-123", "token", "Breaking News", PNG)

        assert result == {'id': '111', 'post_id': 'page-123_222'}
        args, kwargs = mock_post.call_args
        assert args[0] == "https://graph.example.com/v19.0/page-123/photos"
        assert kwargs['data'] == {'message': 'Breaking News', 'access_token': 'token', 'published': 'true'}
        assert kwargs['files'] == {'source': ('card.png', PNG, 'image/png')}
        assert kwargs['timeout'] == 7

    @patch('services.social_service.requests.post')
    def test_photo_id_only(self, mock_post, publisher, mock_http_response):
        mock_post.return_value = mock_http_response(json_data={'id': '111'})
        assert publisher.publish("page-123", "token", "c", PNG) == {'id': '111', 'post_id': ''}

    @patch('services.social_service.requests.post')
    def test_missing_ids_raise(self, mock_post, publisher, mock_http_response):
        mock_post.return_value = mock_http_response(json_data={})
        with pytest.raises(PublishError, match="did not include a post id"):
            publisher.publish("page-123", "token", "c", PNG)

    @pytest.mark.parametrize("page_id,token", [("", "token"), ("page-123", "")])
    def test_missing_credentials(self, publisher, page_id, token):
        with patch('services.social_service.requests.post') as mock_post:
            with pytest.raises(AuthenticationError):
                publisher.publish(page_id, token, "c", PNG)
            mock_post.assert_not_called()

    @patch('services.social_service.requests.post')
    def test_network_error(self, mock_post, publisher):
        mock_post.side_effect = requests.Timeout("timed out")
        with pytest.raises(PublishError, match="request failed"):
            publisher.publish("page-123", "token", "c", PNG)


class TestErrorClassification:
    """Graph API error responses map to exception classes."""

    @pytest.mark.parametrize("status,body,expected", [
        (401, {'error': {'message': 'Bad token', 'code': 190}}, AuthenticationError),
        (400, {'error': {'message': 'Invalid OAuth access token', 'code': 190}}, AuthenticationError),
        (400, {'error': {'message': 'Session expired', 'code': 102}}, AuthenticationError),
        (429, {'error': {'message': 'Slow down'}}, RateLimitError),
        (400, {'error': {'message': 'Application request limit reached', 'code': 4}}, RateLimitError),
        (400, {'error': {'message': 'Too many calls', 'code': 613}}, RateLimitError),
        (500, {'error': {'message': 'Internal error', 'code': 1}}, PublishError),
    ])
    @patch('services.social_service.requests.post')
    def test_classification(self, mock_post, publisher, mock_http_response, status, body, expected):
        mock_post.return_value = mock_http_response(status_code=status, json_data=body)

        with pytest.raises(expected) as exc_info:
            publisher.publish("page-123", "token", "c", PNG)

        assert str(exc_info.value).startswith("Facebook API Error: ")
        assert type(exc_info.value) is expected

    @patch('services.social_service.requests.post')
    def test_non_json_error_body(self, mock_post, publisher, mock_http_response):
        mock_post.return_value = mock_http_response(status_code=502, text="Bad Gateway")
        with pytest.raises(PublishError, match="Unknown error"):
            publisher.publish("page-123", "token", "c", PNG)


def test_post_url_prefers_post_id(publisher):
    assert publisher.post_url("111", "page-123_222") == "https://facebook.com/page-123_222"
    assert publisher.post_url("111") == "https://facebook.com/111"
