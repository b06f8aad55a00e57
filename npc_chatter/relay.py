"""Webhook relay — forwards floating-text envelopes to remote observers over HTTP.

The relay subscribes to the in-process broadcast channel and POSTs every
envelope it sees to each configured URL:

    POST {url}   body: BroadcastEnvelope as JSON

Delivery is best-effort: connection errors, timeouts and HTTP errors are
logged per endpoint and never raised, and there is no retry. Observers that
miss a POST converge through the durable mirror (GET /api/mirror).
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

import httpx

from npc_chatter.dispatch import FLOATING_TEXT_TOPIC, BroadcastChannel

logger = logging.getLogger(__name__)


class WebhookRelay:
    """Args:
        urls:     Observer endpoints receiving each envelope.
        api_key:  Bearer token, or empty string if not required.
        timeout:  HTTP timeout in seconds per POST. Defaults to 5.
    """

    def __init__(self, urls: Iterable[str], api_key: str = "", timeout: float = 5.0) -> None:
        self._urls = [u.strip() for u in urls if u.strip()]
        self._api_key = api_key
        self._timeout = timeout
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def urls(self) -> list[str]:
        return list(self._urls)

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def attach(self, channel: BroadcastChannel) -> None:
        if self._urls and self._unsubscribe is None:
            self._unsubscribe = channel.subscribe(FLOATING_TEXT_TOPIC, self.forward)
            logger.info("Relaying floating text to %d webhook(s)", len(self._urls))

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def forward(self, payload: dict[str, Any]) -> int:
        """POST ``payload`` to every endpoint. Returns how many accepted it."""
        delivered = 0
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            for url in self._urls:
                try:
                    resp = await client.post(url, json=payload, headers=self._headers())
                    resp.raise_for_status()
                except httpx.ConnectError:
                    logger.warning("Cannot connect to observer webhook %s", url)
                except httpx.TimeoutException:
                    logger.warning("Observer webhook %s timed out after %gs", url, self._timeout)
                except httpx.HTTPStatusError as e:
                    logger.warning(
                        "Observer webhook %s returned HTTP %d", url, e.response.status_code
                    )
                except (httpx.HTTPError, httpx.InvalidURL) as e:
                    logger.warning("Observer webhook %s failed: %s", url, e)
                else:
                    delivered += 1
        return delivered
