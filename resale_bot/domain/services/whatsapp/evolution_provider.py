"""
Evolution API Provider - implementação de BaseWhatsAppProvider.

Cada endpoint recebe o nome da instância no path e autentica pelo header
`apikey`. Códigos transitórios e erros de rede repetem até
PROVIDER_MAX_ATTEMPTS; timeout conta como tentativa falha.
"""
from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx

from resale_bot.core.config import settings
from resale_bot.core.exceptions import ProviderError, ProviderTimeoutError
from resale_bot.core.logging import get_logger
from resale_bot.core.validation import PhoneNumberValidator
from resale_bot.domain.services.responses import ButtonOption, ListSection
from resale_bot.domain.services.whatsapp.base_provider import (
    BaseWhatsAppProvider,
    ProviderResponse,
)

logger = get_logger(__name__)

_MANAGER_SUFFIX_RE = re.compile(r"/manager/?$", re.IGNORECASE)

_PRESENCE_PATHS = ("chat/sendPresence", "message/sendPresence", "chat/presence")

# limites do WhatsApp para títulos
_MAX_BUTTONS = 3
_BUTTON_TITLE_CHARS = 20
_LIST_TITLE_CHARS = 24
_LIST_ROWS = 10
_LIST_DESCRIPTION_CHARS = 72


def normalize_api_url(url: str) -> str:
    """Remove o sufixo /manager (painel da Evolution) e barras finais"""
    url = (url or "").strip()
    url = _MANAGER_SUFFIX_RE.sub("", url)
    return url.rstrip("/")


def _button_payload(buttons: tuple[ButtonOption, ...]) -> list[dict[str, Any]]:
    return [
        {
            "type": "reply",
            "reply": {
                "id": button.id or f"btn_{index}",
                "title": button.text[:_BUTTON_TITLE_CHARS],
            },
        }
        for index, button in enumerate(buttons[:_MAX_BUTTONS])
    ]


def _sections_payload(sections: tuple[ListSection, ...]) -> list[dict[str, Any]]:
    return [
        {
            "title": section.title[:_LIST_TITLE_CHARS],
            "rows": [
                {
                    "rowId": item.id,
                    "title": item.title[:_LIST_TITLE_CHARS],
                    "description": (item.description or "")[:_LIST_DESCRIPTION_CHARS],
                }
                for item in section.items[:_LIST_ROWS]
            ],
        }
        for section in sections
    ]


class EvolutionProvider(BaseWhatsAppProvider):
    """Cliente HTTP da Evolution API"""

    def __init__(
        self,
        api_url: str,
        api_token: str,
        *,
        max_attempts: int | None = None,
        request_timeout: float | None = None,
    ) -> None:
        self._base_url = normalize_api_url(api_url)
        self._api_token = api_token
        self._max_attempts = max_attempts or settings.PROVIDER_MAX_ATTEMPTS
        self._request_timeout = request_timeout or settings.PROVIDER_REQUEST_TIMEOUT_SECONDS
        self._transient_status_codes = settings.transient_status_codes

    @property
    def provider_name(self) -> str:
        return "evolution"

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "apikey": self._api_token}

    # ── retry helper interno ──

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        payload: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
        max_attempts: int | None = None,
    ) -> ProviderResponse:
        """
        Chamada ao provedor com retry limitado e backoff exponencial.

        Levanta ProviderError (não-2xx / rede) ou ProviderTimeoutError
        quando todas as tentativas falham.
        """
        url = f"{self._base_url}/{path}"
        timeout = timeout or self._request_timeout
        attempts = max_attempts or self._max_attempts
        phone_masked = PhoneNumberValidator.mask((payload or {}).get("number"))

        async with httpx.AsyncClient(timeout=timeout) as client:
            for attempt in range(attempts):
                is_last = attempt == attempts - 1
                try:
                    if method == "GET":
                        response = await client.get(url, headers=self._headers())
                    else:
                        response = await client.post(url, json=payload, headers=self._headers())
                except httpx.TimeoutException:
                    if not is_last:
                        await self._backoff(operation, attempt, phone_masked, reason="timeout")
                        continue
                    raise ProviderTimeoutError(operation, timeout)
                except httpx.RequestError as exc:
                    if not is_last:
                        await self._backoff(operation, attempt, phone_masked, reason=str(exc))
                        continue
                    raise ProviderError(
                        f"{operation} network error: {exc}",
                        details={"operation": operation, "network_error": True, "attempts": attempts},
                    )

                if 200 <= response.status_code < 300:
                    return ProviderResponse(
                        operation=operation,
                        status_code=response.status_code,
                        text=response.text,
                        data=self._json_or_none(response),
                    )

                if response.status_code in self._transient_status_codes and not is_last:
                    await self._backoff(
                        operation, attempt, phone_masked, reason=f"status {response.status_code}"
                    )
                    continue

                raise ProviderError.from_response(
                    operation,
                    response,
                    max_response_chars=settings.SEND_LOG_MAX_RESPONSE_CHARS,
                )

        # range(attempts) vazio não acontece: attempts >= 1
        raise ProviderError(f"{operation} made no attempts")

    async def _backoff(self, operation: str, attempt: int, phone_masked: str, reason: str) -> None:
        backoff = 2 ** attempt
        logger.warning(
            f"Falha transitória em {operation}, tentando de novo",
            extra_data={
                "operation": operation,
                "phone": phone_masked,
                "reason": reason,
                "attempt": attempt + 1,
                "max_attempts": self._max_attempts,
                "backoff_seconds": backoff,
            },
        )
        await asyncio.sleep(backoff)

    @staticmethod
    def _json_or_none(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    # ── envio ──

    async def send_text(self, instance_name: str, phone: str, text: str) -> ProviderResponse:
        return await self._request(
            "POST",
            f"message/sendText/{instance_name}",
            "sendText",
            {"number": phone, "text": text},
        )

    async def send_media(
        self,
        instance_name: str,
        phone: str,
        media_url: str,
        caption: str = "",
    ) -> ProviderResponse:
        return await self._request(
            "POST",
            f"message/sendMedia/{instance_name}",
            "sendMedia",
            {"number": phone, "mediatype": "image", "media": media_url, "caption": caption},
        )

    async def send_buttons(
        self,
        instance_name: str,
        phone: str,
        text: str,
        buttons: tuple[ButtonOption, ...],
    ) -> ProviderResponse:
        return await self._request(
            "POST",
            f"message/sendButtons/{instance_name}",
            "sendButtons",
            {"number": phone, "text": text, "buttons": _button_payload(buttons)},
        )

    async def send_interactive_buttons(
        self,
        instance_name: str,
        phone: str,
        text: str,
        buttons: tuple[ButtonOption, ...],
    ) -> ProviderResponse:
        payload = {
            "number": phone,
            "interactive": {
                "type": "button",
                "body": {"text": text},
                "action": {"buttons": _button_payload(buttons)},
            },
        }
        return await self._request(
            "POST",
            f"message/sendWhatsAppInteractive/{instance_name}",
            "sendWhatsAppInteractive",
            payload,
        )

    async def send_list(
        self,
        instance_name: str,
        phone: str,
        text: str,
        button_text: str,
        sections: tuple[ListSection, ...],
    ) -> ProviderResponse:
        payload = {
            "number": phone,
            "title": "Menu",
            "description": text,
            "buttonText": button_text[:_BUTTON_TITLE_CHARS],
            "footerText": "",
            "sections": _sections_payload(sections),
        }
        return await self._request(
            "POST", f"message/sendList/{instance_name}", "sendList", payload
        )

    async def send_interactive_list(
        self,
        instance_name: str,
        phone: str,
        text: str,
        button_text: str,
        sections: tuple[ListSection, ...],
    ) -> ProviderResponse:
        payload = {
            "number": phone,
            "interactive": {
                "type": "list",
                "header": {"type": "text", "text": "Menu"},
                "body": {"text": text},
                "action": {
                    "button": button_text[:_BUTTON_TITLE_CHARS],
                    "sections": _sections_payload(sections),
                },
            },
        }
        return await self._request(
            "POST",
            f"message/sendWhatsAppInteractive/{instance_name}",
            "sendWhatsAppInteractive",
            payload,
        )

    # ── estado ──

    async def send_presence(self, instance_name: str, phone: str, duration_ms: int) -> bool:
        """Tenta os endpoints de presença conhecidos, sem retry"""
        payload = {"number": phone, "presence": "composing", "delay": duration_ms}
        for path in _PRESENCE_PATHS:
            try:
                await self._request(
                    "POST",
                    f"{path}/{instance_name}",
                    "sendPresence",
                    payload,
                    timeout=settings.PROVIDER_PRESENCE_TIMEOUT_SECONDS,
                    max_attempts=1,
                )
                return True
            except ProviderError as exc:
                logger.debug(
                    "Endpoint de presença recusou",
                    extra_data={"path": path, "error": exc.message},
                )
        return False

    async def connection_state(self, instance_name: str) -> str | None:
        response = await self._request(
            "GET",
            f"instance/connectionState/{instance_name}",
            "connectionState",
            timeout=settings.PROVIDER_CONNECTION_TIMEOUT_SECONDS,
            max_attempts=1,
        )
        data = response.data if isinstance(response.data, dict) else {}
        instance = data.get("instance") if isinstance(data.get("instance"), dict) else {}
        return instance.get("state") or data.get("state") or data.get("connectionState")

    async def fetch_instances(self) -> ProviderResponse:
        return await self._request(
            "GET",
            "instance/fetchInstances",
            "fetchInstances",
            timeout=settings.PROVIDER_CONNECTION_TIMEOUT_SECONDS,
            max_attempts=1,
        )
