"""Tests for npc_chatter.relay.WebhookRelay."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from npc_chatter.dispatch import FLOATING_TEXT_TOPIC, InMemoryBroadcast
from npc_chatter.relay import WebhookRelay

PAYLOAD = {"action": "display_floating_text", "data": {"text": "hi"}, "sender": "host"}


def _mock_response(status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.raise_for_status = MagicMock(
        side_effect=None if status < 400 else httpx.HTTPStatusError(
            "", request=MagicMock(), response=resp
        )
    )
    return resp


class TestForward:
    @pytest.fixture
    def relay(self) -> WebhookRelay:
        return WebhookRelay(["http://a.example/hook", " ", "http://b.example/hook"])

    def test_blank_urls_dropped(self, relay: WebhookRelay) -> None:
        assert relay.urls == ["http://a.example/hook", "http://b.example/hook"]

    async def test_posts_to_every_url(self, relay: WebhookRelay) -> None:
        mock_post = AsyncMock(return_value=_mock_response())
        with patch("httpx.AsyncClient.post", mock_post):
            delivered = await relay.forward(PAYLOAD)
        assert delivered == 2
        urls = [c.args[0] for c in mock_post.call_args_list]
        assert urls == ["http://a.example/hook", "http://b.example/hook"]
        assert mock_post.call_args.kwargs["json"] == PAYLOAD

    async def test_bearer_token(self) -> None:
        relay = WebhookRelay(["http://a.example/hook"], api_key="secret")
        mock_post = AsyncMock(return_value=_mock_response())
        with patch("httpx.AsyncClient.post", mock_post):
            await relay.forward(PAYLOAD)
        assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer secret"

    async def test_no_auth_header_without_key(self, relay: WebhookRelay) -> None:
        mock_post = AsyncMock(return_value=_mock_response())
        with patch("httpx.AsyncClient.post", mock_post):
            await relay.forward(PAYLOAD)
        assert "Authorization" not in mock_post.call_args.kwargs["headers"]

    async def test_errors_are_not_raised(self, relay: WebhookRelay) -> None:
        mock_post = AsyncMock(side_effect=[
            httpx.ConnectError("refused"),
            _mock_response(503),
        ])
        with patch("httpx.AsyncClient.post", mock_post):
            delivered = await relay.forward(PAYLOAD)
        assert delivered == 0

    async def test_timeout_counts_as_undelivered(self, relay: WebhookRelay) -> None:
        mock_post = AsyncMock(side_effect=[
            httpx.ReadTimeout("slow"),
            _mock_response(),
        ])
        with patch("httpx.AsyncClient.post", mock_post):
            assert await relay.forward(PAYLOAD) == 1

    async def test_transport_error_does_not_skip_later_urls(self, relay: WebhookRelay) -> None:
        mock_post = AsyncMock(side_effect=[
            httpx.ReadError("connection reset"),
            _mock_response(),
        ])
        with patch("httpx.AsyncClient.post", mock_post):
            assert await relay.forward(PAYLOAD) == 1
        assert mock_post.await_count == 2

    async def test_unsupported_protocol_does_not_raise(self) -> None:
        relay = WebhookRelay(["ftp//nowhere", "http://b.example/hook"])
        mock_post = AsyncMock(side_effect=[
            httpx.UnsupportedProtocol("Request URL is missing a protocol"),
            _mock_response(),
        ])
        with patch("httpx.AsyncClient.post", mock_post):
            assert await relay.forward(PAYLOAD) == 1



class TestAttach:
    def test_subscribes_only_with_urls(self) -> None:
        channel = InMemoryBroadcast()
        WebhookRelay([]).attach(channel)
        assert channel.subscriber_count(FLOATING_TEXT_TOPIC) == 0

        relay = WebhookRelay(["http://a.example/hook"])
        relay.attach(channel)
        relay.attach(channel)
        assert channel.subscriber_count(FLOATING_TEXT_TOPIC) == 1
        relay.detach()
        assert channel.subscriber_count(FLOATING_TEXT_TOPIC) == 0

    async def test_broadcast_reaches_relay(self) -> None:
        channel = InMemoryBroadcast()
        relay = WebhookRelay(["http://a.example/hook"])
        relay.attach(channel)
        mock_post = AsyncMock(return_value=_mock_response())
        with patch("httpx.AsyncClient.post", mock_post):
            await channel.publish(FLOATING_TEXT_TOPIC, PAYLOAD)
            await channel.flush()
        mock_post.assert_awaited_once()
