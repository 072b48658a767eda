"""Webhook notification after a backup run."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict

import requests

from ..checks.harness import RetryPolicy
from ..config import VERSION

logger = logging.getLogger(__name__)

NOTIFY_TIMEOUT = 30.0
NOTIFY_RETRY = RetryPolicy(attempts=3, delay=2.0)


def send_notification(
    url: str,
    payload: Dict[str, Any],
    *,
    post: Callable[..., requests.Response] = requests.post,
    retry: RetryPolicy = NOTIFY_RETRY,
    timeout: float = NOTIFY_TIMEOUT,
) -> bool:
    """POST ``payload`` as JSON to ``url``.

    Failures are logged and never raised.

    Returns:
        True if the webhook accepted the notification.
    """
    if not url:
        return False

    def attempt() -> bool:
        response = post(
            url,
            json=payload,
            timeout=timeout,
            headers={"User-Agent": f"Stackguard-Backup/{VERSION}"},
        )
        return response.status_code < 400

    try:
        delivered = retry.run(attempt)
    except requests.RequestException as exc:
        logger.warning("Backup notification failed: %s", exc.__class__.__name__)
        return False
    if not delivered:
        logger.warning("Backup notification was rejected by the webhook")
    return bool(delivered)


__all__ = ["send_notification"]
