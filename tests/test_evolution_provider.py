"""
WhatsApp provider layer tests.

Covers:
- BaseWhatsAppProvider - abstract interface
- normalize_api_url - /manager suffix and trailing slashes
- EvolutionProvider - endpoints, apikey header, payload shapes, title limits
- retry on transient status / network errors, timeout, non-transient failure
- presence endpoint fallback and connection state parsing
- Provider factory - one provider per (url, token)
"""
from contextlib import contextmanager
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from resale_bot.core.exceptions import ProviderError, ProviderTimeoutError
from resale_bot.domain.services.responses import ButtonOption, ListItem, ListSection
from resale_bot.domain.services.whatsapp import (
    BaseWhatsAppProvider,
    get_whatsapp_provider,
    reset_providers,
)
from resale_bot.domain.services.whatsapp.evolution_provider import (
    EvolutionProvider,
    normalize_api_url,
)

BASE = "http://evo.test"
PHONE = "5511999998888"


def _response(status_code: int, body=None, method: str = "POST", url: str = f"{BASE}/x") -> httpx.Response:
    return httpx.Response(status_code, json=body if body is not None else {}, request=httpx.Request(method, url))


@contextmanager
def mock_http(post=None, get=None):
    """patch de httpx.AsyncClient; post/get: resposta única ou lista (side_effect)"""
    with patch("httpx.AsyncClient") as mock_client:
        mock_instance = AsyncMock()
        for name, value in (("post", post), ("get", get)):
            if isinstance(value, list):
                setattr(mock_instance, name, AsyncMock(side_effect=value))
            else:
                setattr(mock_instance, name, AsyncMock(return_value=value))
        mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
        mock_instance.__aexit__ = AsyncMock(return_value=None)
        mock_client.return_value = mock_instance
        yield mock_instance


def make_provider(**kwargs) -> EvolutionProvider:
    return EvolutionProvider(f"{BASE}/manager/", "secret-token", **kwargs)


# ============================================================================
# Interface
# ============================================================================


class TestBaseProviderInterface:

    @pytest.mark.unit
    def test_cannot_instantiate_abstract_provider(self) -> None:
        with pytest.raises(TypeError):
            BaseWhatsAppProvider()  # type: ignore[abstract]

    @pytest.mark.unit
    def test_incomplete_provider_rejected(self) -> None:
        class IncompleteProvider(BaseWhatsAppProvider):
            pass

        with pytest.raises(TypeError):
            IncompleteProvider()  # type: ignore[abstract]


# ============================================================================
# URL
# ============================================================================


@pytest.mark.unit
class TestNormalizeApiUrl:

    @pytest.mark.parametrize("raw,expected", [
        ("https://evo.test/manager", "https://evo.test"),
        ("https://evo.test/manager/", "https://evo.test"),
        ("https://evo.test/Manager/", "https://evo.test"),
        ("https://evo.test///", "https://evo.test"),
        (" https://evo.test/api ", "https://evo.test/api"),
        ("https://evo.test/manager/api", "https://evo.test/manager/api"),
        ("", ""),
    ])
    def test_normalization(self, raw, expected):
        assert normalize_api_url(raw) == expected

    def test_provider_uses_normalized_base(self):
        assert make_provider().base_url == BASE


# ============================================================================
# Envio
# ============================================================================


class TestSendEndpoints:

    @pytest.mark.asyncio
    async def test_send_text(self) -> None:
        with mock_http(post=_response(201, {"key": {"id": "abc"}})) as client:
            result = await make_provider().send_text("seller_a", PHONE, "Olá")

        client.post.assert_called_once()
        url = client.post.call_args[0][0]
        kwargs = client.post.call_args[1]
        assert url == f"{BASE}/message/sendText/seller_a"
        assert kwargs["json"] == {"number": PHONE, "text": "Olá"}
        assert kwargs["headers"]["apikey"] == "secret-token"
        assert result.status_code == 201
        assert result.data == {"key": {"id": "abc"}}

    @pytest.mark.asyncio
    async def test_send_media(self) -> None:
        with mock_http(post=_response(200)) as client:
            await make_provider().send_media("seller_a", PHONE, "https://cdn/x.png", "Legenda")

        payload = client.post.call_args[1]["json"]
        assert client.post.call_args[0][0].endswith("/message/sendMedia/seller_a")
        assert payload == {"number": PHONE, "mediatype": "image", "media": "https://cdn/x.png", "caption": "Legenda"}

    @pytest.mark.asyncio
    async def test_buttons_truncated_to_whatsapp_limits(self) -> None:
        buttons = tuple(ButtonOption(f"id{i}", "Um título bem comprido demais") for i in range(5))
        with mock_http(post=_response(200)) as client:
            await make_provider().send_buttons("seller_a", PHONE, "Escolha", buttons)

        payload = client.post.call_args[1]["json"]
        assert len(payload["buttons"]) == 3
        assert all(len(b["reply"]["title"]) <= 20 for b in payload["buttons"])
        assert payload["buttons"][0]["reply"]["id"] == "id0"

    @pytest.mark.asyncio
    async def test_interactive_buttons_endpoint(self) -> None:
        with mock_http(post=_response(200)) as client:
            await make_provider().send_interactive_buttons(
                "seller_a", PHONE, "Escolha", (ButtonOption("", "A"),)
            )

        payload = client.post.call_args[1]["json"]
        assert client.post.call_args[0][0].endswith("/message/sendWhatsAppInteractive/seller_a")
        assert payload["interactive"]["type"] == "button"
        assert payload["interactive"]["action"]["buttons"][0]["reply"]["id"] == "btn_0"

    @pytest.mark.asyncio
    async def test_list_payload(self) -> None:
        sections = (ListSection("Planos", tuple(ListItem(f"r{i}", f"Item {i}") for i in range(12))),)
        with mock_http(post=_response(200)) as client:
            await make_provider().send_list("seller_a", PHONE, "Catálogo", "Ver opções", sections)

        payload = client.post.call_args[1]["json"]
        assert payload["description"] == "Catálogo"
        assert payload["buttonText"] == "Ver opções"
        assert len(payload["sections"][0]["rows"]) == 10

    @pytest.mark.asyncio
    async def test_interactive_list_payload(self) -> None:
        sections = (ListSection("Planos", (ListItem("m", "Mensal", "R$ 30"),)),)
        with mock_http(post=_response(200)) as client:
            await make_provider().send_interactive_list("seller_a", PHONE, "Catálogo", "Abrir", sections)

        interactive = client.post.call_args[1]["json"]["interactive"]
        assert interactive["type"] == "list"
        assert interactive["action"]["sections"][0]["rows"][0]["rowId"] == "m"


# ============================================================================
# Retry
# ============================================================================


class TestRetry:

    @pytest.mark.asyncio
    async def test_retry_on_transient_status_then_success(self) -> None:
        with mock_http(post=[_response(503), _response(200)]) as client, \
             patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            result = await make_provider().send_text("seller_a", PHONE, "retry")

        assert client.post.call_count == 2
        assert result.status_code == 200
        mock_sleep.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_transient_status_exhausts_attempts(self) -> None:
        with mock_http(post=[_response(502), _response(502)]) as client:
            with pytest.raises(ProviderError) as exc_info:
                await make_provider().send_text("seller_a", PHONE, "x")

        assert client.post.call_count == 2
        assert exc_info.value.provider_status_code == 502

    @pytest.mark.asyncio
    async def test_non_transient_status_not_retried(self) -> None:
        with mock_http(post=_response(500, {"error": "boom"})) as client:
            with pytest.raises(ProviderError) as exc_info:
                await make_provider().send_text("seller_a", PHONE, "x")

        assert client.post.call_count == 1
        assert exc_info.value.provider_status_code == 500
        assert "boom" in exc_info.value.response_text
        assert exc_info.value.message.startswith("Provider API error: sendText returned status 500")

    @pytest.mark.asyncio
    async def test_network_error_retried(self) -> None:
        error = httpx.ConnectError("connection refused")
        with mock_http(post=[error, _response(200)]) as client:
            await make_provider().send_text("seller_a", PHONE, "x")

        assert client.post.call_count == 2

    @pytest.mark.asyncio
    async def test_network_error_exhausted(self) -> None:
        error = httpx.ConnectError("connection refused")
        with mock_http(post=[error, error]):
            with pytest.raises(ProviderError) as exc_info:
                await make_provider().send_text("seller_a", PHONE, "x")

        assert exc_info.value.provider_status_code is None
        assert exc_info.value.details["network_error"] is True

    @pytest.mark.asyncio
    async def test_timeout_raises_provider_timeout(self) -> None:
        timeout = httpx.ReadTimeout("read timed out")
        with mock_http(post=[timeout, timeout]) as client:
            with pytest.raises(ProviderTimeoutError):
                await make_provider().send_text("seller_a", PHONE, "x")

        assert client.post.call_count == 2

    @pytest.mark.asyncio
    async def test_single_attempt_configured(self) -> None:
        with mock_http(post=[_response(503)]) as client:
            with pytest.raises(ProviderError):
                await make_provider(max_attempts=1).send_text("seller_a", PHONE, "x")

        assert client.post.call_count == 1


# ============================================================================
# Estado
# ============================================================================


class TestStateEndpoints:

    @pytest.mark.asyncio
    async def test_presence_first_endpoint(self) -> None:
        with mock_http(post=_response(200)) as client:
            assert await make_provider().send_presence("seller_a", PHONE, 3000) is True

        assert client.post.call_count == 1
        assert client.post.call_args[0][0].endswith("/chat/sendPresence/seller_a")
        assert client.post.call_args[1]["json"]["delay"] == 3000

    @pytest.mark.asyncio
    async def test_presence_falls_back_between_endpoints(self) -> None:
        with mock_http(post=[_response(404), _response(404), _response(200)]) as client:
            assert await make_provider().send_presence("seller_a", PHONE, 1000) is True

        urls = [call[0][0] for call in client.post.call_args_list]
        assert urls == [
            f"{BASE}/chat/sendPresence/seller_a",
            f"{BASE}/message/sendPresence/seller_a",
            f"{BASE}/chat/presence/seller_a",
        ]

    @pytest.mark.asyncio
    async def test_presence_rejected_everywhere(self) -> None:
        with mock_http(post=_response(400)):
            assert await make_provider().send_presence("seller_a", PHONE, 1000) is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body,expected", [
        ({"instance": {"instanceName": "seller_a", "state": "open"}}, "open"),
        ({"state": "close"}, "close"),
        ({"connectionState": "connecting"}, "connecting"),
        ({}, None),
    ])
    async def test_connection_state_shapes(self, body, expected) -> None:
        with mock_http(get=_response(200, body, method="GET")) as client:
            assert await make_provider().connection_state("seller_a") == expected

        assert client.get.call_args[0][0] == f"{BASE}/instance/connectionState/seller_a"

    @pytest.mark.asyncio
    async def test_is_connected(self) -> None:
        with mock_http(get=_response(200, {"instance": {"state": "open"}}, method="GET")):
            assert await make_provider().is_connected("seller_a") is True

    @pytest.mark.asyncio
    async def test_connection_state_not_retried(self) -> None:
        with mock_http(get=[_response(503, method="GET")]) as client:
            with pytest.raises(ProviderError):
                await make_provider().connection_state("seller_a")

        assert client.get.call_count == 1


# ============================================================================
# Factory
# ============================================================================


@pytest.mark.unit
class TestProviderFactory:

    def test_same_credentials_same_provider(self):
        first = get_whatsapp_provider(f"{BASE}/manager", "t1")
        assert get_whatsapp_provider(f"{BASE}/manager", "t1") is first

    def test_new_credentials_new_provider(self):
        first = get_whatsapp_provider(BASE, "t1")
        second = get_whatsapp_provider(BASE, "t2")
        assert first is not second
        assert second.provider_name == "evolution"

    def test_reset(self):
        first = get_whatsapp_provider(BASE, "t1")
        reset_providers()
        assert get_whatsapp_provider(BASE, "t1") is not first
