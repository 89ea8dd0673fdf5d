"""
Interaction audit trail.

Every seller decision and every admin send leaves one row. Writes are
best-effort: a failed insert is rolled back to its savepoint and logged,
never raised.
"""
from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from resale_bot.core.logging import get_logger
from resale_bot.core.validation import PhoneNumberValidator
from resale_bot.db.models import AdminChatbotInteraction, ChatbotInteraction

logger = get_logger(__name__)


async def _insert(db: AsyncSession, row, context: dict) -> None:
    try:
        # savepoint: um rollback da sessão expiraria as linhas já carregadas
        async with db.begin_nested():
            db.add(row)
        await db.commit()
    except SQLAlchemyError as exc:
        logger.error(
            "Falha ao gravar interação",
            extra_data={**context, "error": str(exc)},
        )


async def record_seller_interaction(
    db: AsyncSession,
    *,
    seller_id: str,
    contact_id: int | None,
    incoming_message: str,
    response_sent: str | None = None,
    rule_id: int | None = None,
    flow_node_id: int | None = None,
    block_reason: str | None = None,
) -> None:
    """block_reason preenchido marca a interação como bloqueada"""
    await _insert(
        db,
        ChatbotInteraction(
            seller_id=seller_id,
            contact_id=contact_id,
            rule_id=rule_id,
            flow_node_id=flow_node_id,
            incoming_message=incoming_message,
            response_sent=response_sent,
            was_blocked=block_reason is not None,
            block_reason=block_reason,
        ),
        {"seller_id": seller_id, "contact_id": contact_id},
    )


async def record_admin_interaction(
    db: AsyncSession,
    *,
    contact_id: int | None,
    phone: str,
    incoming_message: str,
    response_sent: str,
    node_key: str,
) -> None:
    await _insert(
        db,
        AdminChatbotInteraction(
            contact_id=contact_id,
            phone=phone,
            incoming_message=incoming_message,
            response_sent=response_sent,
            node_key=node_key,
        ),
        {"phone": PhoneNumberValidator.mask(phone), "node_key": node_key},
    )
