"""
Delivery Pipeline

Sends one outbound response through the provider:

    connection gate -> pacing (typing or delay) -> ordered stages

Buttons and lists go native -> interactive -> plain text; text and image
have a single stage. Every stage is an independent attempt written to the
send log, and the result is a success only if the last stage tried
succeeded.
"""
from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from resale_bot.core.config import settings
from resale_bot.core.exceptions import ProviderError
from resale_bot.core.logging import get_logger
from resale_bot.core.validation import PhoneNumberValidator
from resale_bot.db.models import ChatbotSettings, SellerInstance, SendLog
from resale_bot.domain.services.responses import (
    ButtonsResponse,
    ImageResponse,
    ListResponse,
    OutboundResponse,
    TextResponse,
    render_buttons_as_text,
    render_list_as_text,
)
from resale_bot.domain.services.whatsapp.base_provider import (
    BaseWhatsAppProvider,
    ProviderResponse,
)

logger = get_logger(__name__)

SendFn = Callable[[BaseWhatsAppProvider, str, str], Awaitable[ProviderResponse]]


@dataclass(frozen=True)
class DeliveryStage:
    """Uma tentativa: tipo registrado no send log + chamada ao provedor"""

    message_type: str
    send: SendFn


@dataclass
class DeliveryTarget:
    instance_name: str
    phone: str
    seller_id: str | None = None
    # presente para revendedores: marcada desconectada quando o gate falha
    seller_instance: SellerInstance | None = None
    # admin: instância desconectada só é registrada, o envio segue
    abort_when_disconnected: bool = True


@dataclass(frozen=True)
class PacingPolicy:
    typing_enabled: bool = True
    typing_min_seconds: int = 2
    typing_max_seconds: int = 5
    delay_min_seconds: int = 2
    delay_max_seconds: int = 5

    @classmethod
    def from_chatbot_settings(cls, chatbot_settings: ChatbotSettings) -> "PacingPolicy":
        return cls(
            typing_enabled=chatbot_settings.typing_enabled,
            typing_min_seconds=chatbot_settings.typing_duration_min,
            typing_max_seconds=chatbot_settings.typing_duration_max,
            delay_min_seconds=chatbot_settings.response_delay_min,
            delay_max_seconds=chatbot_settings.response_delay_max,
        )


@dataclass
class AttemptResult:
    message_type: str
    success: bool
    status_code: int | None = None
    response_text: str = ""
    error: str | None = None


@dataclass
class DeliveryResult:
    success: bool
    attempts: list[AttemptResult] = field(default_factory=list)
    aborted_reason: str | None = None

    @property
    def final_message_type(self) -> str | None:
        return self.attempts[-1].message_type if self.attempts else None


def delivery_stages(response: OutboundResponse) -> list[DeliveryStage]:
    """Ordered stages for each response shape"""
    if isinstance(response, TextResponse):
        return [
            DeliveryStage("text", lambda p, inst, phone: p.send_text(inst, phone, response.text)),
        ]

    if isinstance(response, ImageResponse):
        return [
            DeliveryStage(
                "image",
                lambda p, inst, phone: p.send_media(inst, phone, response.image_url, response.text),
            ),
        ]

    if isinstance(response, ButtonsResponse):
        fallback_text = render_buttons_as_text(response.text, response.buttons)
        return [
            DeliveryStage(
                "buttons",
                lambda p, inst, phone: p.send_buttons(inst, phone, response.text, response.buttons),
            ),
            DeliveryStage(
                "interactive_buttons",
                lambda p, inst, phone: p.send_interactive_buttons(
                    inst, phone, response.text, response.buttons
                ),
            ),
            DeliveryStage(
                "buttons_as_text",
                lambda p, inst, phone: p.send_text(inst, phone, fallback_text),
            ),
        ]

    if isinstance(response, ListResponse):
        fallback_text = render_list_as_text(response.text, response.sections)
        return [
            DeliveryStage(
                "list",
                lambda p, inst, phone: p.send_list(
                    inst, phone, response.text, response.button_text, response.sections
                ),
            ),
            DeliveryStage(
                "interactive_list",
                lambda p, inst, phone: p.send_interactive_list(
                    inst, phone, response.text, response.button_text, response.sections
                ),
            ),
            DeliveryStage(
                "list_as_text",
                lambda p, inst, phone: p.send_text(inst, phone, fallback_text),
            ),
        ]

    raise TypeError(f"Unsupported response type: {type(response).__name__}")


class DeliveryPipeline:
    """Entrega de uma resposta com gate de conexão, ritmo e fallback"""

    def __init__(
        self,
        db: AsyncSession,
        provider: BaseWhatsAppProvider,
        *,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.db = db
        self.provider = provider
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def deliver(
        self,
        target: DeliveryTarget,
        response: OutboundResponse,
        pacing: PacingPolicy | None = None,
    ) -> DeliveryResult:
        phone = PhoneNumberValidator.format_for_provider(
            target.phone, settings.DEFAULT_COUNTRY_CODE
        )

        if not await self._connection_gate(target) and target.abort_when_disconnected:
            return DeliveryResult(success=False, aborted_reason="Instance not connected")

        await self._pace(target.instance_name, phone, pacing or PacingPolicy())

        attempts: list[AttemptResult] = []
        for stage in delivery_stages(response):
            attempt = await self._attempt(target, phone, stage)
            attempts.append(attempt)
            if attempt.success:
                break

        result = DeliveryResult(success=attempts[-1].success, attempts=attempts)
        log = logger.info if result.success else logger.error
        log(
            "Entrega concluída" if result.success else "Entrega falhou em todos os estágios",
            extra_data={
                "instance": target.instance_name,
                "phone": PhoneNumberValidator.mask(phone),
                "stages": [a.message_type for a in attempts],
                "final_stage": result.final_message_type,
            },
        )
        return result

    # ── gate ──

    async def _connection_gate(self, target: DeliveryTarget) -> bool:
        state: str | None = None
        error: str | None = None
        status_code: int | None = None
        try:
            state = await self.provider.connection_state(target.instance_name)
        except ProviderError as exc:
            error = exc.message
            status_code = exc.provider_status_code

        connected = state in ("open", "connected")
        await self._sync_connection_flag(target, connected)
        if connected:
            return True

        error = error or f"Instância não conectada: {state}"
        logger.warning(
            "Instância desconectada, envio abortado"
            if target.abort_when_disconnected
            else "Instância desconectada, tentando enviar mesmo assim",
            extra_data={"instance": target.instance_name, "state": state, "error": error},
        )
        await self._write_send_log(
            target,
            AttemptResult(
                message_type="connection_check",
                success=False,
                status_code=status_code,
                error=error,
            ),
        )
        return False

    async def _sync_connection_flag(self, target: DeliveryTarget, connected: bool) -> None:
        instance = target.seller_instance
        if instance is None or bool(instance.is_connected) == connected:
            return
        await self.db.execute(
            update(SellerInstance)
            .where(SellerInstance.id == instance.id)
            .values(is_connected=connected)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        instance.is_connected = connected

    # ── ritmo ──

    def _pick_seconds(self, low: int, high: int) -> int:
        low, high = sorted((max(low, 0), max(high, 0)))
        return self._rng.randint(low, high)

    async def _pace(self, instance_name: str, phone: str, pacing: PacingPolicy) -> None:
        sleep = self._sleep or asyncio.sleep
        if pacing.typing_enabled:
            seconds = self._pick_seconds(pacing.typing_min_seconds, pacing.typing_max_seconds)
            # só espera se o provedor aceitou o "digitando..."
            if await self.provider.send_presence(instance_name, phone, seconds * 1000):
                await sleep(seconds)
            return
        await sleep(self._pick_seconds(pacing.delay_min_seconds, pacing.delay_max_seconds))

    # ── tentativas ──

    async def _attempt(self, target: DeliveryTarget, phone: str, stage: DeliveryStage) -> AttemptResult:
        try:
            provider_response = await stage.send(self.provider, target.instance_name, phone)
            attempt = AttemptResult(
                message_type=stage.message_type,
                success=True,
                status_code=provider_response.status_code,
                response_text=provider_response.text,
            )
        except ProviderError as exc:
            logger.warning(
                f"Estágio {stage.message_type} falhou",
                extra_data={
                    "instance": target.instance_name,
                    "phone": PhoneNumberValidator.mask(phone),
                    "status_code": exc.provider_status_code,
                    "error": exc.message,
                },
            )
            attempt = AttemptResult(
                message_type=stage.message_type,
                success=False,
                status_code=exc.provider_status_code,
                response_text=exc.response_text,
                error=exc.message,
            )
        await self._write_send_log(target, attempt)
        return attempt

    async def _write_send_log(self, target: DeliveryTarget, attempt: AttemptResult) -> None:
        """Best-effort: falha ao gravar o log nunca bloqueia a resposta"""
        max_chars = settings.SEND_LOG_MAX_RESPONSE_CHARS
        try:
            # savepoint: desfaz só o insert, o contato carregado continua válido
            async with self.db.begin_nested():
                self.db.add(SendLog(
                    seller_id=target.seller_id,
                    contact_phone=target.phone,
                    instance_name=target.instance_name,
                    message_type=attempt.message_type,
                    success=attempt.success,
                    api_status_code=attempt.status_code,
                    api_response=(attempt.response_text or "")[:max_chars] or None,
                    error_message=attempt.error,
                ))
            await self.db.commit()
        except SQLAlchemyError as exc:
            logger.error(
                "Falha ao gravar send log",
                extra_data={"instance": target.instance_name, "error": str(exc)},
            )
