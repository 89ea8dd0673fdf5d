"""
Interface base do provedor WhatsApp.

A lógica de entrega depende só desta interface; o provedor concreto
(Evolution API) cuida do HTTP, do retry e do formato de cada endpoint.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from resale_bot.domain.services.responses import ButtonOption, ListSection


@dataclass
class ProviderResponse:
    """Resposta 2xx de um endpoint do provedor"""

    operation: str
    status_code: int
    text: str
    data: Any = None


class BaseWhatsAppProvider(ABC):
    """
    Interface uniforme para envio via WhatsApp.

    Todos os métodos de envio devolvem ProviderResponse em caso de sucesso
    e levantam ProviderError / ProviderTimeoutError em caso de falha.
    O telefone já chega no formato do provedor (só dígitos com DDI).
    """

    # ── envio ──

    @abstractmethod
    async def send_text(self, instance_name: str, phone: str, text: str) -> ProviderResponse:
        """Mensagem de texto simples."""

    @abstractmethod
    async def send_media(
        self,
        instance_name: str,
        phone: str,
        media_url: str,
        caption: str = "",
    ) -> ProviderResponse:
        """Imagem com legenda."""

    @abstractmethod
    async def send_buttons(
        self,
        instance_name: str,
        phone: str,
        text: str,
        buttons: tuple[ButtonOption, ...],
    ) -> ProviderResponse:
        """Botões nativos."""

    @abstractmethod
    async def send_interactive_buttons(
        self,
        instance_name: str,
        phone: str,
        text: str,
        buttons: tuple[ButtonOption, ...],
    ) -> ProviderResponse:
        """Botões pelo endpoint interativo genérico."""

    @abstractmethod
    async def send_list(
        self,
        instance_name: str,
        phone: str,
        text: str,
        button_text: str,
        sections: tuple[ListSection, ...],
    ) -> ProviderResponse:
        """Lista nativa."""

    @abstractmethod
    async def send_interactive_list(
        self,
        instance_name: str,
        phone: str,
        text: str,
        button_text: str,
        sections: tuple[ListSection, ...],
    ) -> ProviderResponse:
        """Lista pelo endpoint interativo genérico."""

    # ── estado ──

    @abstractmethod
    async def send_presence(self, instance_name: str, phone: str, duration_ms: int) -> bool:
        """
        Indicador "digitando...".

        Best-effort: devolve False em vez de levantar quando nenhum endpoint aceita.
        """

    @abstractmethod
    async def connection_state(self, instance_name: str) -> str | None:
        """Estado da instância no provedor ("open", "close", ...)."""

    @abstractmethod
    async def fetch_instances(self) -> ProviderResponse:
        """Lista instâncias; usado só pelo diagnóstico."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Nome do provedor para logs e diagnóstico."""

    async def is_connected(self, instance_name: str) -> bool:
        return (await self.connection_state(instance_name)) in ("open", "connected")
