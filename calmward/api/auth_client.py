"""
Authentication API client.

Handles communication with the Calmward authentication endpoints.
"""

from typing import Any, Dict, Optional

import requests
from requests import RequestException

from calmward.config import settings
from calmward.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_LOGIN_ERROR = (
    "Could not sign in. Check your email and password or try again."
)
CONNECTION_ERROR = (
    "Could not reach the Calmward server. Check your connection or try later."
)


class AuthenticationError(RuntimeError):
    """Raised when authentication-related operations fail."""


def _server_error_message(response: Optional[requests.Response]) -> Optional[str]:
    """Extract the 'error' string from an error response, if any."""
    if response is None:
        return None

    try:
        data = response.json()
    except ValueError:
        return None

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, str) and error.strip():
            return error.strip()
    return None


def _post(
    endpoint: str,
    *,
    json_data: Dict[str, Any] | None = None,
    fallback_message: str = DEFAULT_LOGIN_ERROR,
) -> Dict[str, Any]:
    """
    Internal helper to perform POST requests with error handling.

    Raises:
        AuthenticationError: On request or response failure. The
            message is always safe to show to the user.
    """
    base_url = settings.api_base_url
    if not base_url:
        raise AuthenticationError(CONNECTION_ERROR)

    url = f"{base_url}{endpoint}"

    try:
        response = requests.post(
            url,
            json=json_data,
            timeout=settings.AUTH_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        data = response.json()

    except requests.HTTPError as exc:
        status = exc.response.status_code if exc.response is not None else None
        logger.warning(
            "Auth endpoint returned an error status",
            extra={"url": url, "status": status},
        )
        message = _server_error_message(exc.response) or fallback_message
        raise AuthenticationError(message) from exc

    except ValueError as exc:
        logger.exception(
            "Invalid JSON response",
            extra={"url": url},
        )
        raise AuthenticationError("Invalid response from server") from exc

    except RequestException as exc:
        logger.exception(
            "HTTP request failed",
            extra={"url": url},
        )
        raise AuthenticationError(CONNECTION_ERROR) from exc

    if not isinstance(data, dict):
        raise AuthenticationError("Invalid response from server")
    return data


def login_user(email: str, password: str) -> Dict[str, Any]:
    """
    Authenticate a user via backend API.

    Args:
        email: User email.
        password: User password.

    Returns:
        JSON response containing the session token and profile.

    Raises:
        AuthenticationError: On authentication failure.
    """
    logger.info("Attempting user login", extra={"email": email})

    return _post(
        "/auth/login",
        json_data={"email": email, "password": password},
    )


def register_user(
    email: str,
    password: str,
    *,
    name: Optional[str] = None,
    gender: Optional[str] = None,
    country: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Register a new user and open a session in one call.

    Returns:
        JSON response containing the session token and profile.

    Raises:
        AuthenticationError: On signup failure.
    """
    logger.info("Attempting user registration", extra={"email": email})

    payload: Dict[str, Any] = {"email": email, "password": password}
    for key, value in (("name", name), ("gender", gender), ("country", country)):
        if value:
            payload[key] = value

    return _post(
        "/auth/register-and-login",
        json_data=payload,
        fallback_message="Could not create the account. Please try again.",
    )


def recover_password(email: str) -> Dict[str, Any]:
    """
    Request a password recovery email.

    Raises:
        AuthenticationError: On request failure.
    """
    logger.info("Requesting password recovery", extra={"email": email})

    return _post(
        "/auth/recover",
        json_data={"email": email},
        fallback_message="Could not start password recovery.",
    )
