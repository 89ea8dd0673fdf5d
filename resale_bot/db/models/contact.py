"""
Contact Models - seller contacts and the clients they may link to
"""
import enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)

from resale_bot.db.database import Base, utcnow


class ContactStatus(str, enum.Enum):
    NEW = "NEW"
    KNOWN = "KNOWN"
    CLIENT = "CLIENT"


class Client(Base):
    """Cliente cadastrado pelo revendedor (gerido pelo painel)"""

    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(String(36), nullable=False, index=True)
    name = Column(String(150), nullable=True)
    phone = Column(String(30), nullable=True)

    created_at = Column(DateTime, default=utcnow)


class ChatbotContact(Base):
    """Um contato por (seller, telefone)"""

    __tablename__ = "chatbot_contacts"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(String(36), nullable=False, index=True)
    phone = Column(String(30), nullable=False)
    name = Column(String(150), nullable=True)
    status = Column(
        SQLEnum(
            ContactStatus,
            name="contact_status",
            native_enum=False,
            length=20,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=ContactStatus.NEW,
        nullable=False,
    )
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True)

    last_interaction_at = Column(DateTime, nullable=True)
    last_response_at = Column(DateTime, nullable=True)
    last_buttons_sent_at = Column(DateTime, nullable=True)
    last_list_sent_at = Column(DateTime, nullable=True)
    interaction_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("seller_id", "phone", name="uq_chatbot_contacts_seller_phone"),
    )
