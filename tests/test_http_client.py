"""Tests for HttpRetryClient retry, backoff and re-authentication semantics."""
import json
from unittest.mock import MagicMock

import pytest
import requests

from device_telemetry.errors import AuthenticationError, RateLimitError, TransportError, VendorAPIError
from device_telemetry.transport.http_client import HttpRetryClient

URL = "https://fleet.example.com/api/v1/devices"


def _response(status: int, payload=None, text: str = "", content_type: str = "application/json"):
    response = MagicMock()
    response.status_code = status
    response.headers = {"Content-Type": content_type}
    response.text = text or (json.dumps(payload) if payload is not None else "")
    response.json.return_value = payload
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(session, sleeps):
    return HttpRetryClient(max_retries=3, timeout=5, user_agent="test-agent", session=session, sleep=sleeps.append)


class TestSuccess:
    def test_json_response_parsed(self, client, session):
        session.request.return_value = _response(200, {"devices": []})

        assert client.request("GET", URL) == {"devices": []}
        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert (method, url) == ("GET", URL)
        assert kwargs["timeout"] == 5
        assert kwargs["headers"]["User-Agent"] == "test-agent"

    def test_text_response_returned_as_text(self, client, session):
        session.request.return_value = _response(200, text="OK", content_type="text/plain")
        assert client.request("GET", URL) == "OK"

    def test_bad_json_falls_back_to_text(self, client, session):
        response = _response(200, text="{not json")
        response.json.side_effect = ValueError("bad json")
        session.request.return_value = response
        assert client.request("GET", URL) == "{not json"

    def test_form_body_sets_content_type(self, client, session):
        session.request.return_value = _response(200, {})
        client.request("POST", URL, data={"grant_type": "client_credentials"})
        headers = session.request.call_args.kwargs["headers"]
        assert headers["Content-Type"] == "application/x-www-form-urlencoded"

    def test_extra_headers_merged(self, client, session):
        session.request.return_value = _response(200, {})
        client.request("GET", URL, headers={"X-API-Key": "k"})
        headers = session.request.call_args.kwargs["headers"]
        assert headers["X-API-Key"] == "k"
        assert headers["Content-Type"] == "application/json"


class TestRetries:
    def test_rate_limit_then_success(self, client, session, sleeps):
        session.request.side_effect = [_response(429, text="slow down"), _response(200, {"ok": True})]

        assert client.request("GET", URL) == {"ok": True}
        assert sleeps == [1]

    def test_rate_limit_exhausted(self, client, session, sleeps):
        session.request.return_value = _response(429, text="slow down")

        with pytest.raises(RateLimitError) as exc_info:
            client.request("GET", URL)

        assert exc_info.value.status_code == 429
        assert session.request.call_count == 3
        assert sleeps == [1, 2]

    def test_network_error_then_success(self, client, session, sleeps):
        session.request.side_effect = [requests.ConnectionError("reset"), _response(200, {"ok": True})]

        assert client.request("GET", URL) == {"ok": True}
        assert sleeps == [1]

    def test_network_error_exhausted(self, client, session, sleeps):
        error = requests.ConnectionError("unreachable")
        session.request.side_effect = error

        with pytest.raises(TransportError) as exc_info:
            client.request("GET", URL)

        assert exc_info.value.__cause__ is error
        assert session.request.call_count == 3
        assert sleeps == [1, 2]

    def test_other_errors_not_retried(self, client, session, sleeps):
        session.request.return_value = _response(500, text="Internal Server Error")

        with pytest.raises(VendorAPIError) as exc_info:
            client.request("GET", URL)

        assert exc_info.value.status_code == 500
        assert "Internal Server Error" in exc_info.value.response_text
        assert session.request.call_count == 1
        assert sleeps == []

    def test_retry_budget_floor_is_one(self, session, sleeps):
        client = HttpRetryClient(max_retries=0, session=session, sleep=sleeps.append)
        session.request.side_effect = requests.Timeout("slow")

        with pytest.raises(TransportError):
            client.request("GET", URL)
        assert session.request.call_count == 1


class TestReauthentication:
    def test_401_runs_hook_once_and_retries(self, client, session, sleeps):
        hook = MagicMock()
        client.on_auth_error = hook
        session.request.side_effect = [_response(401), _response(200, {"ok": True})]

        assert client.request("GET", URL) == {"ok": True}
        hook.assert_called_once()
        assert session.request.call_count == 2
        assert sleeps == []

    def test_second_401_raises(self, client, session):
        hook = MagicMock()
        client.on_auth_error = hook
        session.request.return_value = _response(401)

        with pytest.raises(AuthenticationError):
            client.request("GET", URL)
        hook.assert_called_once()

    def test_no_hook_raises_immediately(self, client, session):
        session.request.return_value = _response(401)
        with pytest.raises(AuthenticationError):
            client.request("GET", URL)
        assert session.request.call_count == 1

    def test_retry_auth_false_skips_hook(self, client, session):
        hook = MagicMock()
        client.on_auth_error = hook
        session.request.return_value = _response(401)

        with pytest.raises(AuthenticationError):
            client.request("POST", URL, retry_auth=False)
        hook.assert_not_called()

    def test_callable_headers_pick_up_refreshed_token(self, client, session):
        token = {"value": "old"}

        def refresh():
            token["value"] = "new"

        client.on_auth_error = refresh
        session.request.side_effect = [_response(401), _response(200, {})]

        client.request("GET", URL, headers=lambda: {"Authorization": f"Bearer {token['value']}"})

        first, second = session.request.call_args_list
        assert first.kwargs["headers"]["Authorization"] == "Bearer old"
        assert second.kwargs["headers"]["Authorization"] == "Bearer new"

    def test_hook_failure_propagates(self, client, session):
        client.on_auth_error = MagicMock(side_effect=AuthenticationError("login rejected"))
        session.request.return_value = _response(401)

        with pytest.raises(AuthenticationError, match="login rejected"):
            client.request("GET", URL)
