"""
Chatbot Webhook Handler - provider ingress for every tenant

POST receives the provider payload (any supported shape), GET serves the
operator diagnostics. Every outcome is a JSON body with a ``status`` field;
only malformed JSON (400) and unexpected failures (500) change the HTTP code.
"""
from typing import Any
from urllib.parse import parse_qs, unquote, urlsplit

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from resale_bot.api.dependencies.admin_auth import admin_api_key_header, check_admin_api_key
from resale_bot.api.webhooks.normalization import PayloadIgnored, normalize_payload
from resale_bot.core.exceptions import TenantNotFoundError
from resale_bot.core.logging import get_logger
from resale_bot.db.database import get_db
from resale_bot.domain.services.chatbot_service import AdminChatbotService, SellerChatbotService
from resale_bot.domain.services.diagnostics import (
    DiagnosticsService,
    get_active_global_config,
    ping,
    usage,
)
from resale_bot.domain.services.idempotency import (
    EventStatus,
    mark_message,
    message_key,
    try_acquire_message,
)
from resale_bot.domain.services.identity_resolver import IdentityResolver
from resale_bot.domain.services.inbound import CanonicalMessage
from resale_bot.domain.services.whatsapp import get_whatsapp_provider

logger = get_logger(__name__)

router = APIRouter()

# status final -> estado do registro de idempotência
_RETRYABLE_STATUSES = {"failed", "error"}


def _query_params(request: Request) -> dict[str, str]:
    """
    Query string tolerante: alguns painéis salvam a URL do webhook com
    '?' e '&' codificados (%3F, %26) no path.
    """
    params = {key: value for key, value in request.query_params.items()}
    raw_url = str(request.url)
    if "%3F" in raw_url.upper():
        decoded = parse_qs(urlsplit(unquote(raw_url)).query)
        for key, values in decoded.items():
            params.setdefault(key, values[-1])
    return params


async def process_message(
    db: AsyncSession,
    message: CanonicalMessage,
    *,
    admin_requested: bool = False,
) -> dict[str, Any]:
    """Idempotência -> resolução do tenant -> serviço do admin ou do revendedor"""
    key = message_key(message.instance_name, message.message_id)
    if not await try_acquire_message(db, key, message.instance_name):
        return {"status": "duplicate", "reason": "Message already processed"}

    try:
        global_config = await get_active_global_config(db)
        if global_config is None:
            result: dict[str, Any] = {"status": "ignored", "reason": "API not active"}
        else:
            result = await _dispatch(db, message, global_config, admin_requested)
    except Exception:
        await db.rollback()
        await mark_message(db, key, EventStatus.FAILED)
        raise

    final = EventStatus.FAILED if result.get("status") in _RETRYABLE_STATUSES else EventStatus.COMPLETED
    await mark_message(db, key, final)
    return result


async def _dispatch(db: AsyncSession, message: CanonicalMessage, global_config, admin_requested: bool) -> dict[str, Any]:
    try:
        tenant = await IdentityResolver(db).resolve(
            message.instance_name,
            global_config,
            admin_requested=admin_requested,
        )
    except TenantNotFoundError as exc:
        logger.warning(
            "Webhook sem tenant correspondente",
            extra_data={"instance": exc.instance_name, "reason": exc.reason},
        )
        return {"status": "error", "reason": exc.reason, "instanceSearched": exc.instance_name}

    provider = get_whatsapp_provider(global_config.api_url, global_config.api_token)
    service_class = AdminChatbotService if tenant.is_admin else SellerChatbotService
    result = await service_class(db, provider).handle(tenant, message)

    logger.info(
        "Webhook processado",
        extra_data={
            "instance": message.instance_name,
            "tenant": tenant.kind,
            "matched_by": tenant.matched_by,
            "phone": message.masked_phone,
            "status": result.get("status"),
            "reason": result.get("reason"),
        },
    )
    return result


@router.post(
    "/webhook",
    summary="Webhook de mensagens do provedor",
    description="Recebe eventos da Evolution API. Use ?admin=true para forçar o chatbot admin.",
)
async def chatbot_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    try:
        raw = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"status": "error", "error": "Invalid JSON payload"})
    if not isinstance(raw, dict):
        return JSONResponse(status_code=400, content={"status": "error", "error": "Invalid JSON payload"})

    if raw.get("action") == "diagnose":
        try:
            return JSONResponse(content=await DiagnosticsService(db).summary(detailed=True))
        except SQLAlchemyError as exc:
            logger.error("Diagnóstico falhou", extra_data={"error": str(exc)}, exc_info=True)
            return JSONResponse(content={"status": "diagnostic_error", "error": str(exc)})

    try:
        message = normalize_payload(raw)
    except PayloadIgnored as exc:
        return JSONResponse(content={"status": "ignored", "reason": exc.reason})

    admin_requested = _query_params(request).get("admin") == "true"
    try:
        result = await process_message(db, message, admin_requested=admin_requested)
    except Exception as exc:
        logger.error(
            "Erro inesperado no webhook",
            extra_data={
                "instance": message.instance_name,
                "phone": message.masked_phone,
                "exception_type": type(exc).__name__,
            },
            exc_info=True,
        )
        return JSONResponse(status_code=500, content={"status": "error", "reason": "Internal error"})

    return JSONResponse(content=result)


@router.get(
    "/webhook",
    summary="Diagnóstico do webhook",
    description=(
        "?ping=true (liveness), ?diagnose=true (resumo), "
        "?test=connection&instance=X e ?test=send&instance=X&phone=Y (exigem X-Admin-API-Key)."
    ),
)
async def chatbot_webhook_diagnostics(
    request: Request,
    db: AsyncSession = Depends(get_db),
    api_key: str | None = Depends(admin_api_key_header),
) -> JSONResponse:
    params = _query_params(request)

    if params.get("ping") == "true":
        return JSONResponse(content=ping())

    test = params.get("test")
    if test in ("connection", "send"):
        check_admin_api_key(api_key)
        instance_name = (params.get("instance") or "").strip()
        if not instance_name:
            return JSONResponse(status_code=400, content={"status": "error", "reason": "Missing instance"})
        diagnostics = DiagnosticsService(db)
        if test == "connection":
            return JSONResponse(content=await diagnostics.test_connection(instance_name))
        phone = (params.get("phone") or "").strip()
        if not phone:
            return JSONResponse(status_code=400, content={"status": "error", "reason": "Missing phone"})
        return JSONResponse(content=await diagnostics.test_send(instance_name, phone))

    if params.get("diagnose") == "true":
        try:
            return JSONResponse(content=await DiagnosticsService(db).summary())
        except SQLAlchemyError as exc:
            logger.error("Diagnóstico falhou", extra_data={"error": str(exc)}, exc_info=True)
            return JSONResponse(content={"status": "diagnostic_error", "error": str(exc)})

    return JSONResponse(content=usage())
