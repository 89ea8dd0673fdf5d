"""
Contact Store Adapter

Get-or-create of per-tenant contact rows and the state updates that follow
a successful send. Updates go by row id; concurrent messages from the same
contact are last-write-wins except for the counter, which is incremented
in SQL.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from resale_bot.core.logging import get_logger
from resale_bot.core.validation import PhoneNumberValidator
from resale_bot.db.database import utcnow
from resale_bot.db.models import AdminChatbotContact, ChatbotContact, Client, ContactStatus
from resale_bot.domain.services.responses import ButtonsResponse, ListResponse, OutboundResponse

logger = get_logger(__name__)

ADMIN_ROOT_NODE_KEY = "inicial"
CLIENT_PHONE_SUFFIX_LENGTH = 8


class ContactService:
    """Contatos do revendedor"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, seller_id: str, phone: str) -> ChatbotContact | None:
        result = await self.db.execute(
            select(ChatbotContact).where(
                ChatbotContact.seller_id == seller_id,
                ChatbotContact.phone == phone,
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create(
        self,
        seller_id: str,
        phone: str,
        push_name: str | None = None,
    ) -> ChatbotContact:
        """
        Contato do (seller, telefone), criado no primeiro contato.

        Contato novo é vinculado a um cliente do revendedor com os mesmos
        últimos 8 dígitos e nasce como CLIENT; senão nasce NEW.
        """
        contact = await self.get(seller_id, phone)
        if contact:
            return contact

        client = await self.find_client(seller_id, phone)
        contact = ChatbotContact(
            seller_id=seller_id,
            phone=phone,
            name=push_name or None,
            status=ContactStatus.CLIENT if client else ContactStatus.NEW,
            client_id=client.id if client else None,
            interaction_count=0,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(contact)
            await self.db.commit()
            await self.db.refresh(contact)
            logger.info(
                "Contato criado",
                extra_data={
                    "seller_id": seller_id,
                    "phone": PhoneNumberValidator.mask(phone),
                    "status": contact.status.value,
                },
            )
            return contact
        except IntegrityError:
            # criado em paralelo por outra invocação: o savepoint já foi desfeito
            logger.info(
                "IntegrityError ao criar contato, relendo",
                extra_data={"seller_id": seller_id, "phone": PhoneNumberValidator.mask(phone)},
            )
            existing = await self.get(seller_id, phone)
            if existing:
                return existing
            raise

    async def find_client(self, seller_id: str, phone: str) -> Client | None:
        suffix = PhoneNumberValidator.phone_suffix(phone, CLIENT_PHONE_SUFFIX_LENGTH)
        if len(suffix) < CLIENT_PHONE_SUFFIX_LENGTH:
            return None
        result = await self.db.execute(
            select(Client)
            .where(Client.seller_id == seller_id, Client.phone.is_not(None))
            .order_by(Client.id)
        )
        for client in result.scalars():
            if PhoneNumberValidator.phone_suffix(client.phone, CLIENT_PHONE_SUFFIX_LENGTH) == suffix:
                return client
        return None

    async def record_response(
        self,
        contact: ChatbotContact,
        response: OutboundResponse,
        now: datetime | None = None,
        push_name: str | None = None,
    ) -> None:
        """Efeitos de um envio bem-sucedido"""
        now = now or utcnow()
        values: dict = {
            "last_interaction_at": now,
            "last_response_at": now,
            "interaction_count": ChatbotContact.interaction_count + 1,
        }
        if push_name:
            values["name"] = push_name
        if contact.status == ContactStatus.NEW:
            values["status"] = ContactStatus.KNOWN
        if isinstance(response, ButtonsResponse):
            values["last_buttons_sent_at"] = now
        elif isinstance(response, ListResponse):
            values["last_list_sent_at"] = now

        await self.db.execute(
            update(ChatbotContact)
            .where(ChatbotContact.id == contact.id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(contact)

    async def record_interaction(self, contact: ChatbotContact, now: datetime | None = None) -> None:
        """Mensagem atendida pelo fluxo: conta a interação sem mexer no cooldown"""
        await self.db.execute(
            update(ChatbotContact)
            .where(ChatbotContact.id == contact.id)
            .values(
                last_interaction_at=now or utcnow(),
                interaction_count=ChatbotContact.interaction_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(contact)


class AdminContactService:
    """Contatos do chatbot admin (uma linha por telefone)"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, phone: str) -> AdminChatbotContact | None:
        result = await self.db.execute(
            select(AdminChatbotContact).where(AdminChatbotContact.phone == phone)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, phone: str, push_name: str | None = None) -> AdminChatbotContact:
        contact = await self.get(phone)
        if contact:
            return contact

        contact = AdminChatbotContact(
            phone=phone,
            name=push_name or None,
            current_node_key=ADMIN_ROOT_NODE_KEY,
            interaction_count=0,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(contact)
            await self.db.commit()
            await self.db.refresh(contact)
            return contact
        except IntegrityError:
            existing = await self.get(phone)
            if existing:
                return existing
            raise

    async def record_response(
        self,
        contact: AdminChatbotContact,
        node_key: str,
        now: datetime | None = None,
        push_name: str | None = None,
    ) -> None:
        now = now or utcnow()
        values: dict = {
            "current_node_key": node_key,
            "last_response_at": now,
            "last_interaction_at": now,
            "interaction_count": AdminChatbotContact.interaction_count + 1,
        }
        if push_name:
            values["name"] = push_name
        await self.db.execute(
            update(AdminChatbotContact)
            .where(AdminChatbotContact.id == contact.id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(contact)
