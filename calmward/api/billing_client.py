"""
Billing API client.

Reads the subscription flags for the current session token.
"""

from typing import Any, Dict

import requests
from requests import RequestException

from calmward.config import settings
from calmward.utils.logger import get_logger

logger = get_logger(__name__)


class BillingError(RuntimeError):
    """Raised when subscription lookups fail."""


def fetch_subscription(token: str) -> Dict[str, Any]:
    """
    Fetch the subscription state for a session.

    Args:
        token: Session bearer token.

    Returns:
        Backend JSON with isSponsor / isPremium / *Active flags.

    Raises:
        BillingError: On request or response failure.
    """
    base_url = settings.api_base_url
    if not base_url:
        raise BillingError("API base URL is not configured")

    url = f"{base_url}/billing/subscription"
    headers = {
        "Authorization": f"Bearer {token}",
        "Accept": "application/json",
    }

    try:
        response = requests.get(
            url,
            headers=headers,
            timeout=settings.AUTH_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        data = response.json()

    except RequestException as exc:
        logger.warning(
            "Subscription request failed",
            extra={"url": url, "error": str(exc)},
        )
        raise BillingError("Unable to fetch subscription") from exc

    except ValueError as exc:
        logger.warning(
            "Invalid JSON received for subscription",
            extra={"url": url},
        )
        raise BillingError("Invalid response received from server") from exc

    if not isinstance(data, dict):
        raise BillingError("Invalid response received from server")
    return data
