"""
Fixtures and helpers for end-to-end webhook scenarios.

Provides:
- Evolution API payload builders (text, button and list replies)
- Concise send helpers against /api/chatbot/webhook
- DB assertion helpers (contacts, sessions, interactions, send log)
"""
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from resale_bot.db.models import (
    AdminChatbotContact,
    ChatbotContact,
    ChatbotFlowSession,
    ChatbotInteraction,
    SendLog,
)

WEBHOOK_URL = "/api/chatbot/webhook"

# ============================================================================
# Payload builders
# ============================================================================

_message_counter = 0


def _next_message_id() -> str:
    """id único por mensagem para não cair na idempotência"""
    global _message_counter
    _message_counter += 1
    return f"3EB0{_message_counter:08d}"


def build_message_payload(
    instance: str,
    phone: str,
    text: str | None = "oi",
    *,
    from_me: Any = False,
    group: bool = False,
    push_name: str = "Maria",
    message_id: str | None = None,
    event: str = "messages.upsert",
    message: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Payload no formato da Evolution API v2"""
    remote_jid = f"{phone}@g.us" if group else f"{phone}@s.whatsapp.net"
    return {
        "event": event,
        "instance": instance,
        "data": {
            "key": {
                "remoteJid": remote_jid,
                "fromMe": from_me,
                "id": message_id or _next_message_id(),
            },
            "pushName": push_name,
            "message": message if message is not None else {"conversation": text},
        },
    }


def build_button_reply(instance: str, phone: str, button_id: str) -> dict[str, Any]:
    return build_message_payload(
        instance,
        phone,
        message={"buttonsResponseMessage": {"selectedButtonId": button_id}},
    )


def build_list_reply(instance: str, phone: str, row_id: str) -> dict[str, Any]:
    return build_message_payload(
        instance,
        phone,
        message={"listResponseMessage": {"singleSelectReply": {"selectedRowId": row_id}}},
    )


# ============================================================================
# Send helpers
# ============================================================================

async def post_webhook(client, payload: dict[str, Any], *, admin: bool = False) -> dict[str, Any]:
    """POST no webhook: assert 200 e devolve o JSON"""
    url = f"{WEBHOOK_URL}?admin=true" if admin else WEBHOOK_URL
    resp = await client.post(url, json=payload)
    assert resp.status_code == 200, f"Webhook returned {resp.status_code}: {resp.text}"
    return resp.json()


async def send_text(client, instance: str, phone: str, text: str, **kwargs) -> dict[str, Any]:
    admin = kwargs.pop("admin", False)
    return await post_webhook(client, build_message_payload(instance, phone, text, **kwargs), admin=admin)


# ============================================================================
# DB assertions
# ============================================================================

async def fetch_contact(db_session: AsyncSession, seller_id: str, phone: str) -> ChatbotContact | None:
    result = await db_session.execute(
        select(ChatbotContact)
        .where(ChatbotContact.seller_id == seller_id, ChatbotContact.phone == phone)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def fetch_admin_contact(db_session: AsyncSession, phone: str) -> AdminChatbotContact | None:
    result = await db_session.execute(
        select(AdminChatbotContact)
        .where(AdminChatbotContact.phone == phone)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def fetch_session(db_session: AsyncSession, seller_id: str, phone: str) -> ChatbotFlowSession | None:
    result = await db_session.execute(
        select(ChatbotFlowSession)
        .where(
            ChatbotFlowSession.seller_id == seller_id,
            ChatbotFlowSession.contact_phone == phone,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def interactions_for(db_session: AsyncSession, seller_id: str) -> list[ChatbotInteraction]:
    result = await db_session.execute(
        select(ChatbotInteraction)
        .where(ChatbotInteraction.seller_id == seller_id)
        .order_by(ChatbotInteraction.id)
    )
    return list(result.scalars())


async def send_log_types(db_session: AsyncSession, instance_name: str) -> list[str]:
    result = await db_session.execute(
        select(SendLog.message_type)
        .where(SendLog.instance_name == instance_name)
        .order_by(SendLog.id)
    )
    return list(result.scalars())


async def assert_send_log_count(db_session: AsyncSession, expected: int) -> None:
    result = await db_session.execute(select(func.count(SendLog.id)))
    count = result.scalar()
    assert count == expected, f"esperado {expected} registros no send log, encontrados {count}"
