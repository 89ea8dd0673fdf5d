"""
Webhook Diagnostics

Read-only summaries of the routing configuration for operators, plus the
active connection/send tests. Secrets never leave this module in full:
tokens are reported as ``hasApiToken`` or masked.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from resale_bot.core.config import settings
from resale_bot.core.exceptions import ProviderError
from resale_bot.core.logging import get_logger, log_async_operation
from resale_bot.core.validation import PhoneNumberValidator, mask_secret
from resale_bot.db.models import (
    AdminChatbotNode,
    AppSetting,
    ChatbotFlow,
    ChatbotRule,
    GlobalConfig,
    SellerInstance,
    SendLog,
)
from resale_bot.domain.services.whatsapp import get_whatsapp_provider
from resale_bot.domain.services.whatsapp.evolution_provider import normalize_api_url
from resale_bot.state_machine.admin_menu import ROOT_NODE_KEY, AdminMenuTree

logger = get_logger(__name__)

TEST_MESSAGE = "✅ Teste de envio do chatbot"
SELLER_INSTANCE_SAMPLE = 10
ADMIN_NODE_SAMPLE = 10
ADMIN_NODE_SAMPLE_DETAILED = 20
RECENT_LOGS_SAMPLE = 5


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


async def get_active_global_config(db: AsyncSession) -> GlobalConfig | None:
    result = await db.execute(
        select(GlobalConfig)
        .where(GlobalConfig.is_active.is_(True))
        .order_by(GlobalConfig.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


def ping() -> dict[str, Any]:
    return {
        "status": "ok",
        "message": "Chatbot webhook is online",
        "timestamp": _timestamp(),
        "version": settings.WEBHOOK_VERSION,
    }


def usage() -> dict[str, Any]:
    return {
        "status": "ok",
        "message": "Chatbot webhook ready",
        "version": settings.WEBHOOK_VERSION,
        "usage": "Send POST with Evolution API webhook payload. "
                 "Use ?diagnose=true for full diagnostic.",
    }


class DiagnosticsService:
    """Resumo do estado do roteamento para o operador"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def summary(self, *, detailed: bool = False) -> dict[str, Any]:
        """
        Store summary served by GET ?diagnose=true.

        With ``detailed`` (POST {"action": "diagnose"}) it also probes the
        provider, lists the admin nodes and the latest send log entries.
        """
        global_config = await get_active_global_config(self.db)
        admin_nodes = await self._admin_nodes(ADMIN_NODE_SAMPLE_DETAILED if detailed else ADMIN_NODE_SAMPLE)
        tree = AdminMenuTree.from_models(admin_nodes)

        admin_chatbot: dict[str, Any] = {
            "enabled": await self._admin_enabled(),
            "nodesCount": len(admin_nodes),
            "hasInitialNode": tree.get(ROOT_NODE_KEY) is not None,
        }

        body: dict[str, Any] = {
            "status": "diagnostic",
            "version": settings.WEBHOOK_VERSION,
            "timestamp": _timestamp(),
            "globalConfig": self._global_config_summary(global_config, detailed=detailed),
            "adminChatbot": admin_chatbot,
            "sellerInstances": await self._seller_instances(),
            "chatbot": {
                "activeRules": await self._count_active(ChatbotRule),
                "activeFlows": await self._count_active(ChatbotFlow),
            },
        }

        if detailed:
            main = tree.main_node()
            admin_chatbot["mainNodeKey"] = main.node_key if main else "[NONE]"
            admin_chatbot["nodes"] = [
                {"key": node.node_key, "parent": node.parent_key} for node in admin_nodes
            ]
            body["apiConnectionTest"] = await self._probe_provider(global_config)
            body["recentSendLogs"] = await self._recent_send_logs()

        return body

    # ── partes ──

    @staticmethod
    def _global_config_summary(config: GlobalConfig | None, *, detailed: bool) -> dict[str, Any]:
        if config is None:
            return {"hasConfig": False}
        summary = {
            "hasConfig": True,
            "instanceName": config.instance_name or "[NOT SET]",
            "isActive": config.is_active,
            "hasApiUrl": bool(config.api_url),
        }
        if detailed:
            summary["hasApiToken"] = bool(config.api_token)
        return summary

    async def _admin_nodes(self, limit: int) -> list[AdminChatbotNode]:
        result = await self.db.execute(
            select(AdminChatbotNode)
            .where(AdminChatbotNode.is_active.is_(True))
            .order_by(AdminChatbotNode.sort_order)
            .limit(limit)
        )
        return list(result.scalars())

    async def _admin_enabled(self) -> bool:
        result = await self.db.execute(
            select(AppSetting.value).where(AppSetting.key == "admin_chatbot_enabled")
        )
        return result.scalar_one_or_none() == "true"

    async def _seller_instances(self) -> dict[str, Any]:
        result = await self.db.execute(
            select(SellerInstance).order_by(SellerInstance.id).limit(SELLER_INSTANCE_SAMPLE)
        )
        instances = [
            {
                "name": instance.instance_name,
                "connected": instance.is_connected,
                "blocked": instance.instance_blocked,
            }
            for instance in result.scalars()
        ]
        return {"count": len(instances), "instances": instances}

    async def _count_active(self, model) -> int:
        result = await self.db.execute(
            select(func.count(model.id)).where(model.is_active.is_(True))
        )
        return result.scalar_one()

    async def _recent_send_logs(self) -> list[dict[str, Any]]:
        result = await self.db.execute(
            select(SendLog)
            .order_by(SendLog.created_at.desc(), SendLog.id.desc())
            .limit(RECENT_LOGS_SAMPLE)
        )
        return [
            {"success": log.success, "error": log.error_message, "status": log.api_status_code}
            for log in result.scalars()
        ]

    async def _probe_provider(self, config: GlobalConfig | None) -> dict[str, Any] | None:
        if config is None or not config.api_url or not config.api_token:
            return None

        url = f"{normalize_api_url(config.api_url)}/instance/fetchInstances"
        safe_url = url.replace(config.api_token, "[HIDDEN]")
        provider = get_whatsapp_provider(config.api_url, config.api_token)
        try:
            response = await provider.fetch_instances()
        except ProviderError as exc:
            if exc.provider_status_code is None:
                return {"status": "error", "message": exc.message}
            return {"status": exc.provider_status_code, "ok": False, "url": safe_url}
        return {"status": response.status_code, "ok": True, "url": safe_url}

    # ── testes ativos ──

    @log_async_operation("webhook_test_connection")
    async def test_connection(self, instance_name: str) -> dict[str, Any]:
        config = await get_active_global_config(self.db)
        if config is None:
            return {"status": "error", "reason": "API not active"}

        provider = get_whatsapp_provider(config.api_url, config.api_token)
        body: dict[str, Any] = {
            "status": "ok",
            "test": "connection",
            "instance": instance_name,
            "apiUrl": normalize_api_url(config.api_url),
            "apiToken": mask_secret(config.api_token),
        }
        try:
            state = await provider.connection_state(instance_name)
        except ProviderError as exc:
            return {**body, "status": "error", "connected": False, "error": exc.message}
        return {**body, "state": state, "connected": state in ("open", "connected")}

    @log_async_operation("webhook_test_send")
    async def test_send(self, instance_name: str, phone: str) -> dict[str, Any]:
        config = await get_active_global_config(self.db)
        if config is None:
            return {"status": "error", "reason": "API not active"}

        formatted = PhoneNumberValidator.format_for_provider(phone, settings.DEFAULT_COUNTRY_CODE)
        provider = get_whatsapp_provider(config.api_url, config.api_token)
        body: dict[str, Any] = {
            "test": "send",
            "instance": instance_name,
            "phone": PhoneNumberValidator.mask(formatted),
        }
        try:
            response = await provider.send_text(instance_name, formatted, TEST_MESSAGE)
        except ProviderError as exc:
            logger.warning(
                "Teste de envio falhou",
                extra_data={"instance": instance_name, "phone": body["phone"], "error": exc.message},
            )
            return {
                **body,
                "status": "error",
                "success": False,
                "statusCode": exc.provider_status_code,
                "error": exc.message,
            }
        return {**body, "status": "ok", "success": True, "statusCode": response.status_code}
