"""
Webhook idempotency.

Providers deliver at least once; the same message id arriving twice must
not answer twice. A row is acquired optimistically (INSERT in a savepoint)
and only ``completed`` rows block reprocessing.
"""
from __future__ import annotations

from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from resale_bot.core.config import settings
from resale_bot.core.logging import get_logger
from resale_bot.db.database import utcnow
from resale_bot.db.models import WebhookEvent

logger = get_logger(__name__)


class EventStatus:
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def message_key(instance_name: str, message_id: str | None) -> str | None:
    if not message_id:
        return None
    return f"{instance_name.strip().lower()}:{message_id}"


async def try_acquire_message(db: AsyncSession, key: str | None, instance_name: str) -> bool:
    """
    Tenta reservar a mensagem para processamento.

    True = nova (ou travada há mais de WEBHOOK_STALE_PROCESSING_SECONDS, ou
    falhou antes); False = duplicada.
    """
    if not key:
        return True

    try:
        async with db.begin_nested():
            db.add(WebhookEvent(
                message_id=key,
                instance_name=instance_name,
                status=EventStatus.PROCESSING,
                created_at=utcnow(),
            ))
        # commit imediato: a reserva vale mesmo se o processamento cair
        await db.commit()
        return True
    except IntegrityError:
        pass

    result = await db.execute(
        select(WebhookEvent.status, WebhookEvent.created_at).where(WebhookEvent.message_id == key)
    )
    row = result.one_or_none()
    if not row:
        return False

    if row.status == EventStatus.COMPLETED:
        logger.info("Mensagem duplicada ignorada", extra_data={"message_key": key})
        return False

    # retry atômico: só quem conseguir o UPDATE processa
    threshold = utcnow() - timedelta(seconds=settings.WEBHOOK_STALE_PROCESSING_SECONDS)
    update_result = await db.execute(
        update(WebhookEvent)
        .where(
            WebhookEvent.message_id == key,
            (WebhookEvent.status == EventStatus.FAILED)
            | (
                (WebhookEvent.status == EventStatus.PROCESSING)
                & (WebhookEvent.created_at < threshold)
            ),
        )
        .values(status=EventStatus.PROCESSING, created_at=utcnow())
    )
    if update_result.rowcount > 0:
        await db.commit()
        logger.warning("Reprocessando mensagem travada", extra_data={"message_key": key})
        return True

    logger.info("Mensagem já em processamento", extra_data={"message_key": key})
    return False


async def mark_message(db: AsyncSession, key: str | None, status: str) -> None:
    if not key:
        return
    await db.execute(
        update(WebhookEvent).where(WebhookEvent.message_id == key).values(status=status)
    )
    await db.commit()
