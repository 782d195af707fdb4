from __future__ import annotations

import logging

import httpx

from spotwatch.domain import NotificationDeliveryError

logger = logging.getLogger(__name__)


async def send_ntfy_message(
    *,
    endpoint: str,
    title: str,
    text: str,
    timeout_seconds: float = 20.0,
    client: httpx.AsyncClient | None = None,
) -> None:
    # ntfy reads the title from the header; encode explicitly so product
    # names outside ASCII survive.
    headers = {"Title": title.encode("utf-8")}

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout_seconds) as own_client:
                r = await own_client.post(endpoint, headers=headers, content=text.encode("utf-8"))
        else:
            r = await client.post(endpoint, headers=headers, content=text.encode("utf-8"))
    except httpx.HTTPError as e:
        raise NotificationDeliveryError(f"ntfy request failed ({type(e).__name__}: {e})") from e

    if not r.is_success:
        raise NotificationDeliveryError(f"ntfy responded with HTTP {r.status_code}")

    logger.info("Notification sent: %s", title)
