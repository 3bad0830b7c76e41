"""
Tests for the authentication API client.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from calmward.api import auth_client
from calmward.api.auth_client import (
    CONNECTION_ERROR,
    DEFAULT_LOGIN_ERROR,
    AuthenticationError,
)


@pytest.fixture(autouse=True)
def configured_api(monkeypatch):
    monkeypatch.setattr(auth_client.settings, "API_BASE_URL", "http://api.test/")


def _error_response(status, json_data=None, json_error=None):
    response = MagicMock()
    response.status_code = status
    response.raise_for_status.side_effect = requests.HTTPError(response=response)
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = json_data
    return response


def test_login_returns_payload():
    response = MagicMock()
    response.json.return_value = {"token": "tok-1", "email": "ana@example.com"}

    with patch("calmward.api.auth_client.requests.post", return_value=response) as mock_post:
        data = auth_client.login_user("ana@example.com", "Secret12345")

    assert data["token"] == "tok-1"
    assert mock_post.call_args.args[0] == "http://api.test/auth/login"


def test_server_error_message_is_surfaced():
    response = _error_response(401, {"error": "Wrong email or password."})

    with patch("calmward.api.auth_client.requests.post", return_value=response):
        with pytest.raises(AuthenticationError) as exc_info:
            auth_client.login_user("ana@example.com", "bad")

    assert str(exc_info.value) == "Wrong email or password."


def test_error_without_body_uses_default_message():
    response = _error_response(500, json_error=ValueError("no json"))

    with patch("calmward.api.auth_client.requests.post", return_value=response):
        with pytest.raises(AuthenticationError) as exc_info:
            auth_client.login_user("ana@example.com", "bad")

    assert str(exc_info.value) == DEFAULT_LOGIN_ERROR


def test_network_failure_uses_connection_message():
    with patch(
        "calmward.api.auth_client.requests.post",
        side_effect=requests.ConnectionError("down"),
    ):
        with pytest.raises(AuthenticationError) as exc_info:
            auth_client.login_user("ana@example.com", "pw")

    assert str(exc_info.value) == CONNECTION_ERROR


def test_register_sends_only_filled_profile_fields():
    response = MagicMock()
    response.json.return_value = {"token": "tok-1"}

    with patch("calmward.api.auth_client.requests.post", return_value=response) as mock_post:
        auth_client.register_user("ana@example.com", "Secret12345", name="Ana", country="")

    assert mock_post.call_args.args[0] == "http://api.test/auth/register-and-login"
    assert mock_post.call_args.kwargs["json"] == {
        "email": "ana@example.com",
        "password": "Secret12345",
        "name": "Ana",
    }


def test_unconfigured_base_url_fails_fast(monkeypatch):
    monkeypatch.setattr(auth_client.settings, "API_BASE_URL", "")

    with patch("calmward.api.auth_client.requests.post") as mock_post:
        with pytest.raises(AuthenticationError):
            auth_client.recover_password("ana@example.com")

    mock_post.assert_not_called()
