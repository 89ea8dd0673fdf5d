"""
Provider Factory - um provedor por par (URL, token).

As credenciais vêm de whatsapp_global_config e podem mudar em runtime;
quando mudam, um novo provedor é criado para o novo par.
"""
from __future__ import annotations

import threading

from resale_bot.core.logging import get_logger
from resale_bot.domain.services.whatsapp.base_provider import BaseWhatsAppProvider

logger = get_logger(__name__)

_providers: dict[tuple[str, str], BaseWhatsAppProvider] = {}
_lock = threading.Lock()


def _create_provider(api_url: str, api_token: str) -> BaseWhatsAppProvider:
    from resale_bot.domain.services.whatsapp.evolution_provider import EvolutionProvider

    return EvolutionProvider(api_url=api_url, api_token=api_token)


def get_whatsapp_provider(api_url: str, api_token: str) -> BaseWhatsAppProvider:
    """Provedor para as credenciais globais atuais"""
    key = (api_url, api_token)
    provider = _providers.get(key)
    if provider is None:
        with _lock:
            provider = _providers.get(key)
            if provider is None:
                provider = _create_provider(api_url, api_token)
                _providers[key] = provider
                logger.info(
                    "Provedor WhatsApp inicializado",
                    extra_data={"provider": provider.provider_name, "cached": len(_providers)},
                )
    return provider


def reset_providers() -> None:
    """Limpa o cache - uso em testes."""
    with _lock:
        _providers.clear()
