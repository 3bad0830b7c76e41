"""
Chat API client.

Handles interaction with the /ai/talk backend endpoint.
"""

from typing import Any, Dict, Optional

import requests
from requests import RequestException

from calmward.utils.logger import get_logger

logger = get_logger(__name__)


class ChatRequestError(RuntimeError):
    """Raised when chat interaction with backend fails."""


def send_chat_request(
    *,
    base_url: str,
    payload: Dict[str, Any],
    token: Optional[str] = None,
    timeout: float = 15.0,
) -> Dict[str, Any]:
    """
    Send a chat request to the backend AI endpoint.

    Args:
        base_url: API base URL without a trailing slash.
        payload: Serialized ChatRequest.
        token: Session bearer token, if logged in.
        timeout: Socket timeout in seconds.

    Returns:
        Backend response JSON object.

    Raises:
        ChatRequestError: On request, status or JSON failure.
    """
    headers = {
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"

    url = f"{base_url}/ai/talk"

    logger.info(
        "Sending chat message",
        extra={
            "endpoint": "/ai/talk",
            "has_token": bool(token),
            "mode": payload.get("mode"),
            "history_len": len(payload.get("history", [])),
        },
    )

    try:
        response = requests.post(
            url,
            json=payload,
            headers=headers,
            timeout=timeout,
        )
        response.raise_for_status()
        data = response.json()

    except RequestException as exc:
        logger.exception(
            "Chat request failed",
            extra={"url": url},
        )
        raise ChatRequestError("Failed to communicate with AI service") from exc

    except ValueError as exc:
        logger.exception(
            "Invalid JSON response from backend",
            extra={"url": url},
        )
        raise ChatRequestError("Invalid response received from AI service") from exc

    if not isinstance(data, dict):
        raise ChatRequestError("Unexpected response shape from AI service")
    return data
