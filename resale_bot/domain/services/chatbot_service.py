"""
Chatbot Services - per-tenant message processing

SellerChatbotService runs the layered pipeline of a seller:

    gates -> awaiting human -> active flow session -> keyword
          -> flow trigger -> rules (cooldown, interactive gate) -> delivery

AdminChatbotService runs the single admin menu tree with its own response
mode. Both return the JSON body the webhook answers with.
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from resale_bot.core.config import settings
from resale_bot.core.logging import get_logger
from resale_bot.db.database import utcnow
from resale_bot.db.models import (
    AdminChatbotKeyword,
    AdminChatbotNode,
    AppSetting,
    ChatbotContact,
    ChatbotKeyword,
    ChatbotRule,
    ChatbotSettings,
    CooldownMode,
    PlanStatus,
    ResponseType,
    SellerInstance,
)
from resale_bot.domain.services.audit import record_admin_interaction, record_seller_interaction
from resale_bot.domain.services.contact_service import AdminContactService, ContactService
from resale_bot.domain.services.cooldown import (
    AdminResponseMode,
    can_respond,
    can_respond_admin,
    can_send_interactive,
)
from resale_bot.domain.services.delivery_service import (
    DeliveryPipeline,
    DeliveryResult,
    DeliveryTarget,
    PacingPolicy,
)
from resale_bot.domain.services.identity_resolver import ResolvedTenant
from resale_bot.domain.services.inbound import CanonicalMessage
from resale_bot.domain.services.responses import (
    ImageResponse,
    OutboundResponse,
    TextResponse,
    build_rule_response,
    downgrade_to_text,
)
from resale_bot.domain.services.rule_matcher import find_matching_rule
from resale_bot.domain.services.whatsapp.base_provider import BaseWhatsAppProvider
from resale_bot.state_machine.admin_menu import AdminMenuTree, process_admin_input
from resale_bot.state_machine.flow_handler import FlowDecision, FlowDecisionKind, FlowHandler
from resale_bot.state_machine.manager import state_of
from resale_bot.state_machine.states import FlowState

logger = get_logger(__name__)

Clock = Callable[[], datetime]
SleepFn = Callable[[float], Awaitable[None]]

NO_MATCHING_RULE = "No matching rule"

_RESPONSE_TYPE_BY_MESSAGE_TYPE = {
    "text": ResponseType.TEXT,
    "image": ResponseType.TEXT_IMAGE,
    "buttons": ResponseType.TEXT_BUTTONS,
    "list": ResponseType.TEXT_LIST,
}


def _ignored(reason: str) -> dict[str, Any]:
    return {"status": "ignored", "reason": reason}


def _blocked(reason: str) -> dict[str, Any]:
    return {"status": "blocked", "reason": reason}


def _delivery_status(result: DeliveryResult) -> dict[str, Any]:
    body: dict[str, Any] = {"status": "sent" if result.success else "failed"}
    if result.aborted_reason:
        body["reason"] = result.aborted_reason
    return body


def _is_empty(response: OutboundResponse) -> bool:
    return isinstance(response, TextResponse) and not response.text.strip()


def _find_keyword(keywords, text: str):
    normalized = text.strip().lower()
    for keyword in keywords:
        if keyword.keyword.strip().lower() == normalized:
            return keyword
    return None


def _keyword_response(keyword) -> OutboundResponse:
    if keyword.image_url:
        return ImageResponse(text=keyword.response_text, image_url=keyword.image_url)
    return TextResponse(text=keyword.response_text)


# ============================================================================
# Seller
# ============================================================================


class SellerChatbotService:
    """Processa mensagens recebidas na instância de um revendedor"""

    def __init__(
        self,
        db: AsyncSession,
        provider: BaseWhatsAppProvider,
        *,
        clock: Clock | None = None,
        sleep: SleepFn | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.db = db
        self.contacts = ContactService(db)
        self.flows = FlowHandler(db)
        self.delivery = DeliveryPipeline(db, provider, sleep=sleep, rng=rng)
        self._clock = clock or utcnow

    async def handle(self, tenant: ResolvedTenant, message: CanonicalMessage) -> dict[str, Any]:
        instance = tenant.seller_instance
        seller_id = instance.seller_id

        if instance.instance_blocked:
            return _blocked("Instance blocked")

        if instance.plan_status in PlanStatus.BLOCKING:
            await self._auto_block(instance)
            return _blocked(f"Plan {instance.plan_status}")

        chatbot_settings = await self.get_or_create_settings(seller_id)
        if not chatbot_settings.is_enabled:
            return _ignored("Chatbot disabled")
        if chatbot_settings.ignore_groups and message.is_group:
            return _ignored("Group message")
        if chatbot_settings.ignore_own_messages and message.from_me:
            return _ignored("Own message")
        if not message.text:
            return _ignored("No text content")

        now = self._clock()
        text = message.text
        phone = message.phone
        contact = await self.contacts.get_or_create(seller_id, phone, message.push_name)
        target = DeliveryTarget(
            instance_name=tenant.instance_name,
            phone=phone,
            seller_id=seller_id,
            seller_instance=instance,
        )
        pacing = PacingPolicy.from_chatbot_settings(chatbot_settings)

        session = await self.flows.get_session(seller_id, phone)
        if state_of(session) == FlowState.AWAITING_HUMAN:
            logger.info(
                "Contato aguardando atendimento humano, mensagem ignorada",
                extra_data={"seller_id": seller_id, "phone": message.masked_phone},
            )
            return _ignored("Awaiting human")

        decision = await self.flows.continue_session(session, text)
        if decision is not None:
            return await self._deliver_flow(decision, contact, target, pacing, text, now)

        keywords = await self._active_keywords(seller_id)
        keyword = _find_keyword(keywords, text)
        if keyword is not None:
            return await self._deliver_keyword(keyword, contact, target, pacing, message, now)

        decision = await self.flows.start_from_trigger(seller_id, phone, text)
        if decision is not None:
            return await self._deliver_flow(decision, contact, target, pacing, text, now)

        return await self._apply_rules(contact, target, pacing, chatbot_settings, message, now)

    # ── gates ──

    async def _auto_block(self, instance: SellerInstance) -> None:
        """Plano expirado/suspenso: bloqueia a instância do revendedor"""
        await self.db.execute(
            update(SellerInstance)
            .where(SellerInstance.seller_id == instance.seller_id)
            .values(
                instance_blocked=True,
                blocked_at=utcnow(),
                blocked_reason=f"Plano {instance.plan_status}",
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.warning(
            "Instância bloqueada automaticamente",
            extra_data={"seller_id": instance.seller_id, "plan_status": instance.plan_status},
        )

    async def get_or_create_settings(self, seller_id: str) -> ChatbotSettings:
        result = await self.db.execute(
            select(ChatbotSettings).where(ChatbotSettings.seller_id == seller_id)
        )
        chatbot_settings = result.scalar_one_or_none()
        if chatbot_settings is not None:
            return chatbot_settings

        chatbot_settings = ChatbotSettings.defaults_for(seller_id)
        self.db.add(chatbot_settings)
        await self.db.commit()
        logger.info("Configuração padrão do chatbot criada", extra_data={"seller_id": seller_id})
        return chatbot_settings

    # ── camadas ──

    async def _active_keywords(self, seller_id: str) -> list[ChatbotKeyword]:
        result = await self.db.execute(
            select(ChatbotKeyword).where(
                ChatbotKeyword.seller_id == seller_id,
                ChatbotKeyword.is_active.is_(True),
            )
        )
        return list(result.scalars())

    async def _active_rules(self, seller_id: str) -> list[ChatbotRule]:
        result = await self.db.execute(
            select(ChatbotRule)
            .where(ChatbotRule.seller_id == seller_id, ChatbotRule.is_active.is_(True))
            .order_by(ChatbotRule.priority.desc(), ChatbotRule.id)
        )
        return list(result.scalars())

    async def _deliver_flow(
        self,
        decision: FlowDecision,
        contact: ChatbotContact,
        target: DeliveryTarget,
        pacing: PacingPolicy,
        text: str,
        now: datetime,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"type": decision.kind}
        if decision.kind == FlowDecisionKind.NODE and decision.node is not None:
            body["node"] = decision.node.title

        # a sessão já foi movida; nó sem texto não envia nada
        if _is_empty(decision.response):
            return {"status": "ignored", "reason": "Empty flow response", **body}

        result = await self.delivery.deliver(target, decision.response, pacing)
        if result.success:
            # fluxo só conta a interação: navegar no menu não inicia cooldown
            await self.contacts.record_interaction(contact, now)
            await record_seller_interaction(
                self.db,
                seller_id=target.seller_id,
                contact_id=contact.id,
                incoming_message=text,
                response_sent=decision.response.text,
                flow_node_id=decision.node.id if decision.node else None,
            )
        return {**_delivery_status(result), **body}

    async def _deliver_keyword(
        self,
        keyword: ChatbotKeyword,
        contact: ChatbotContact,
        target: DeliveryTarget,
        pacing: PacingPolicy,
        message: CanonicalMessage,
        now: datetime,
    ) -> dict[str, Any]:
        response = _keyword_response(keyword)
        if _is_empty(response):
            return _ignored("Empty keyword response")

        result = await self.delivery.deliver(target, response, pacing)
        if result.success:
            await self.contacts.record_response(contact, response, now, message.push_name)
            await record_seller_interaction(
                self.db,
                seller_id=target.seller_id,
                contact_id=contact.id,
                incoming_message=message.text,
                response_sent=response.text,
            )
        return {**_delivery_status(result), "type": "keyword"}

    async def _apply_rules(
        self,
        contact: ChatbotContact,
        target: DeliveryTarget,
        pacing: PacingPolicy,
        chatbot_settings: ChatbotSettings,
        message: CanonicalMessage,
        now: datetime,
    ) -> dict[str, Any]:
        seller_id = target.seller_id
        rules = await self._active_rules(seller_id)
        rule = find_matching_rule(rules, message.text, contact.status.value)

        if rule is None:
            await record_seller_interaction(
                self.db,
                seller_id=seller_id,
                contact_id=contact.id,
                incoming_message=message.text,
                block_reason=NO_MATCHING_RULE,
            )
            if not chatbot_settings.silent_mode and (chatbot_settings.fallback_message or "").strip():
                return await self._deliver_fallback(
                    contact, target, pacing, chatbot_settings.fallback_message, message, now
                )
            logger.info(
                "Nenhuma regra correspondente",
                extra_data={"seller_id": seller_id, "phone": message.masked_phone},
            )
            return _ignored(NO_MATCHING_RULE)

        cooldown = can_respond(
            contact.last_response_at,
            rule.cooldown_mode,
            rule.cooldown_hours,
            now,
            polite_hours=settings.POLITE_COOLDOWN_HOURS,
        )
        if not cooldown:
            await record_seller_interaction(
                self.db,
                seller_id=seller_id,
                contact_id=contact.id,
                incoming_message=message.text,
                rule_id=rule.id,
                block_reason=cooldown.reason,
            )
            return _blocked(cooldown.reason)

        response = build_rule_response(rule.response_type, rule.response_content)
        # modo livre nunca manda interativo
        if rule.cooldown_mode == CooldownMode.FREE:
            response = downgrade_to_text(response)
        if not can_send_interactive(
            rule.response_type,
            contact.last_buttons_sent_at,
            contact.last_list_sent_at,
            now,
            hours=settings.INTERACTIVE_COOLDOWN_HOURS,
        ):
            response = downgrade_to_text(response)

        response_type = _RESPONSE_TYPE_BY_MESSAGE_TYPE[response.message_type]
        if _is_empty(response):
            return {**_ignored("Empty rule response"), "rule": rule.name}

        result = await self.delivery.deliver(target, response, pacing)
        if result.success:
            await self.contacts.record_response(contact, response, now, message.push_name)
            await record_seller_interaction(
                self.db,
                seller_id=seller_id,
                contact_id=contact.id,
                incoming_message=message.text,
                response_sent=response.text,
                rule_id=rule.id,
            )
        return {**_delivery_status(result), "rule": rule.name, "type": response_type}

    async def _deliver_fallback(
        self,
        contact: ChatbotContact,
        target: DeliveryTarget,
        pacing: PacingPolicy,
        fallback_message: str,
        message: CanonicalMessage,
        now: datetime,
    ) -> dict[str, Any]:
        """Mensagem padrão sem regra: sujeita ao cooldown educado"""
        cooldown = can_respond(
            contact.last_response_at,
            CooldownMode.POLITE,
            None,
            now,
            polite_hours=settings.POLITE_COOLDOWN_HOURS,
        )
        if not cooldown:
            logger.info(
                "Fallback bloqueado pelo cooldown",
                extra_data={"seller_id": target.seller_id, "phone": message.masked_phone},
            )
            return {**_blocked(cooldown.reason), "type": "fallback"}

        response = TextResponse(fallback_message)
        result = await self.delivery.deliver(target, response, pacing)
        if result.success:
            await self.contacts.record_response(contact, response, now, message.push_name)
        return {**_delivery_status(result), "type": "fallback"}


# ============================================================================
# Admin
# ============================================================================


@dataclass(frozen=True)
class AdminChatbotSettings:
    enabled: bool = False
    response_mode: str = AdminResponseMode.DEFAULT
    delay_min: int = 2
    delay_max: int = 5
    typing_enabled: bool = True

    KEYS = (
        "admin_chatbot_enabled",
        "admin_chatbot_response_mode",
        "admin_chatbot_delay_min",
        "admin_chatbot_delay_max",
        "admin_chatbot_typing_enabled",
    )

    @classmethod
    def from_values(cls, values: dict[str, str | None]) -> "AdminChatbotSettings":
        def _int(key: str, default: int) -> int:
            try:
                return int(values.get(key) or default)
            except ValueError:
                return default

        return cls(
            enabled=values.get("admin_chatbot_enabled") == "true",
            response_mode=values.get("admin_chatbot_response_mode") or AdminResponseMode.DEFAULT,
            delay_min=_int("admin_chatbot_delay_min", 2),
            delay_max=_int("admin_chatbot_delay_max", 5),
            typing_enabled=values.get("admin_chatbot_typing_enabled") != "false",
        )

    def pacing(self) -> PacingPolicy:
        return PacingPolicy(
            typing_enabled=self.typing_enabled,
            typing_min_seconds=self.delay_min,
            typing_max_seconds=self.delay_max,
            delay_min_seconds=self.delay_min,
            delay_max_seconds=self.delay_max,
        )


async def load_admin_settings(db: AsyncSession) -> AdminChatbotSettings:
    result = await db.execute(
        select(AppSetting.key, AppSetting.value).where(AppSetting.key.in_(AdminChatbotSettings.KEYS))
    )
    return AdminChatbotSettings.from_values({row.key: row.value for row in result})


class AdminChatbotService:
    """Menu único do admin: palavra-chave > árvore de nós > saudação"""

    def __init__(
        self,
        db: AsyncSession,
        provider: BaseWhatsAppProvider,
        *,
        clock: Clock | None = None,
        sleep: SleepFn | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.db = db
        self.contacts = AdminContactService(db)
        self.delivery = DeliveryPipeline(db, provider, sleep=sleep, rng=rng)
        self._clock = clock or utcnow

    async def handle(self, tenant: ResolvedTenant, message: CanonicalMessage) -> dict[str, Any]:
        if message.from_me or message.is_group:
            return _ignored("Own message or group")
        if not message.text:
            return _ignored("No text content")

        admin_settings = await load_admin_settings(self.db)
        if not admin_settings.enabled:
            return _ignored("Admin chatbot disabled")

        now = self._clock()
        phone = message.phone
        contact = await self.contacts.get_or_create(phone, message.push_name)

        cooldown = can_respond_admin(contact.last_response_at, admin_settings.response_mode, now)
        if not cooldown:
            logger.info(
                "Cooldown do chatbot admin ativo",
                extra_data={"phone": message.masked_phone, "reason": cooldown.reason},
            )
            return _blocked(cooldown.reason)

        tree = await self._load_tree()
        main = tree.main_node()
        if main is None:
            return _ignored("No chatbot nodes configured")

        next_key = contact.current_node_key or main.node_key
        reply = ""
        image_url: str | None = None

        keyword = _find_keyword(await self._active_keywords(), message.text)
        if keyword is not None:
            # palavra-chave não move o contato na árvore
            reply, image_url = keyword.response_text, keyword.image_url
        else:
            result = process_admin_input(tree, contact.current_node_key, message.text)
            if result.next_node is not None:
                reply, image_url = result.message, result.next_node.image_url
                next_key = result.next_node.node_key
            elif contact.last_response_at is None:
                # primeiro contato sem opção válida recebe o menu principal
                reply, image_url = main.content, main.image_url
                next_key = main.node_key

        if not reply.strip():
            return _ignored("Invalid option - silent mode")

        response: OutboundResponse = (
            ImageResponse(text=reply, image_url=image_url) if image_url else TextResponse(reply)
        )
        target = DeliveryTarget(
            instance_name=tenant.instance_name,
            phone=phone,
            abort_when_disconnected=False,
        )
        delivery = await self.delivery.deliver(target, response, admin_settings.pacing())

        if delivery.success:
            await self.contacts.record_response(contact, next_key, now, message.push_name)
            await record_admin_interaction(
                self.db,
                contact_id=contact.id,
                phone=phone,
                incoming_message=message.text,
                response_sent=reply,
                node_key=next_key,
            )
        return {**_delivery_status(delivery), "sent": delivery.success}

    async def _load_tree(self) -> AdminMenuTree:
        result = await self.db.execute(
            select(AdminChatbotNode)
            .where(AdminChatbotNode.is_active.is_(True))
            .order_by(AdminChatbotNode.sort_order)
        )
        return AdminMenuTree.from_models(result.scalars())

    async def _active_keywords(self) -> list[AdminChatbotKeyword]:
        result = await self.db.execute(
            select(AdminChatbotKeyword).where(AdminChatbotKeyword.is_active.is_(True))
        )
        return list(result.scalars())
