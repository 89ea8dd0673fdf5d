"""
Admin API key check for the active diagnostic modes of the webhook.

The webhook GET only needs the key for ?test=connection and ?test=send,
so the header is read optionally and checked per mode.
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from resale_bot.core.config import settings
from resale_bot.core.logging import get_logger

logger = get_logger(__name__)

_api_key_header = APIKeyHeader(name="X-Admin-API-Key", auto_error=False)


def check_admin_api_key(api_key: str | None) -> None:
    """
    Valida a chave de admin.

    401 se a chave faltar, 403 se não bater. Sem ADMIN_API_KEY configurada
    o acesso fica bloqueado.
    """
    if not settings.ADMIN_API_KEY:
        logger.warning("Acesso admin negado: ADMIN_API_KEY não configurada")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_API_KEY não configurada",
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Chave ausente: envie o header X-Admin-API-Key",
        )

    if api_key != settings.ADMIN_API_KEY:
        logger.warning("Acesso admin negado: chave inválida")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Chave de API inválida",
        )


async def admin_api_key_header(api_key: str | None = Depends(_api_key_header)) -> str | None:
    """Header cru; o endpoint decide se o modo pedido exige a chave"""
    return api_key
