"""
Fault-injection tests for the shared HTTP helper.

Verifies exponential backoff for:
- 429 rate limit errors
- 5xx server errors
- Network timeouts/connection errors
and fail-fast behavior on other client errors.
"""

import pytest
from unittest.mock import Mock, patch
from requests.exceptions import ConnectionError, HTTPError, InvalidURL, Timeout

from core.exceptions import ProviderError
from core.http_client import request_json


def ok_response(payload):
    response = Mock()
    response.status_code = 200
    response.content = b"{}"
    response.json.return_value = payload
    return response


def error_response(status_code, text="error"):
    response = Mock()
    response.status_code = status_code
    response.text = text
    return response


@pytest.fixture(autouse=True)
def no_sleep():
    with patch('core.http_client.time.sleep') as mock_sleep:
        yield mock_sleep


class TestRetryableErrors:
    def test_retries_on_429_and_succeeds(self, no_sleep):
        with patch('core.http_client.requests.request') as mock_request:
            mock_request.side_effect = [
                HTTPError(response=error_response(429, "Rate limit exceeded")),
                HTTPError(response=error_response(429, "Rate limit exceeded")),
                ok_response({"success": True}),
            ]

            result = request_json("GET", "https://api.test/x", source="test", max_retries=3)

            assert result == {"success": True}
            assert mock_request.call_count == 3
            assert no_sleep.call_count == 2

    def test_retries_on_5xx_then_raises(self):
        with patch('core.http_client.requests.request') as mock_request:
            mock_request.side_effect = HTTPError(response=error_response(503, "Service Unavailable"))

            with pytest.raises(ProviderError) as exc_info:
                request_json("GET", "https://api.test/x", source="test", max_retries=3)

            assert mock_request.call_count == 3
            assert exc_info.value.status_code == 503
            assert "failed after 3 attempts" in str(exc_info.value)

    @pytest.mark.parametrize("error", [Timeout("timed out"), ConnectionError("refused")])
    def test_retries_on_network_errors(self, error):
        with patch('core.http_client.requests.request') as mock_request:
            mock_request.side_effect = [error, ok_response({"ok": 1})]

            result = request_json("GET", "https://api.test/x", source="test", max_retries=2)

            assert result == {"ok": 1}
            assert mock_request.call_count == 2

    def test_backoff_grows_exponentially(self, no_sleep):
        with patch('core.http_client.requests.request') as mock_request, \
                patch('core.http_client.random.uniform', return_value=0.0):
            mock_request.side_effect = HTTPError(response=error_response(500))

            with pytest.raises(ProviderError):
                request_json("GET", "https://api.test/x", source="test", max_retries=3, backoff_base=1.0)

            delays = [c.args[0] for c in no_sleep.call_args_list]
            assert delays == [1.0, 2.0]


class TestFailFast:
    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_client_errors_not_retried(self, status, no_sleep):
        with patch('core.http_client.requests.request') as mock_request:
            mock_request.side_effect = HTTPError(response=error_response(status, "bad"))

            with pytest.raises(ProviderError) as exc_info:
                request_json("GET", "https://api.test/x", source="test", max_retries=3)

            assert mock_request.call_count == 1
            assert exc_info.value.status_code == status
            no_sleep.assert_not_called()

    def test_other_request_errors_not_retried(self):
        with patch('core.http_client.requests.request') as mock_request:
            mock_request.side_effect = InvalidURL("bad url")

            with pytest.raises(ProviderError):
                request_json("GET", "not a url", source="test", max_retries=3)

            assert mock_request.call_count == 1

    def test_invalid_json_raises_provider_error(self):
        with patch('core.http_client.requests.request') as mock_request:
            response = ok_response(None)
            response.json.side_effect = ValueError("Expecting value")
            mock_request.return_value = response

            with pytest.raises(ProviderError, match="invalid JSON"):
                request_json("GET", "https://api.test/x", source="test")


class TestRequestShape:
    def test_empty_body_returns_none(self):
        with patch('core.http_client.requests.request') as mock_request:
            response = ok_response(None)
            response.content = b""
            mock_request.return_value = response

            assert request_json("PATCH", "https://api.test/x", source="test") is None

    def test_passes_params_body_and_headers(self):
        with patch('core.http_client.requests.request') as mock_request:
            mock_request.return_value = ok_response({})

            request_json("POST", "https://api.test/x", source="test",
                         params={"a": "1"}, body={"b": 2}, headers={"apikey": "k"}, timeout=3)

            args, kwargs = mock_request.call_args
            assert args == ("POST", "https://api.test/x")
            assert kwargs["params"] == {"a": "1"}
            assert kwargs["json"] == {"b": 2}
            assert kwargs["headers"]["apikey"] == "k"
            assert kwargs["headers"]["Accept"] == "application/json"
            assert kwargs["timeout"] == 3
