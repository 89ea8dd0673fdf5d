"""
WhatsApp Provider Abstraction Layer

Camada de envio: a entrega depende só de BaseWhatsAppProvider.
"""
from resale_bot.domain.services.whatsapp.base_provider import (
    BaseWhatsAppProvider,
    ProviderResponse,
)
from resale_bot.domain.services.whatsapp.provider_factory import (
    get_whatsapp_provider,
    reset_providers,
)

__all__ = [
    "BaseWhatsAppProvider",
    "ProviderResponse",
    "get_whatsapp_provider",
    "reset_providers",
]
