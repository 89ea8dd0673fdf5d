"""
Audit Models - seller decisions and every outbound provider attempt
"""
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from resale_bot.db.database import Base, utcnow


class ChatbotInteraction(Base):
    """Decisão tomada para uma mensagem de um contato do revendedor"""

    __tablename__ = "chatbot_interactions"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(String(36), nullable=False, index=True)
    contact_id = Column(Integer, nullable=True, index=True)
    rule_id = Column(Integer, nullable=True)
    flow_node_id = Column(Integer, nullable=True)
    incoming_message = Column(Text, nullable=True)
    response_sent = Column(Text, nullable=True)
    was_blocked = Column(Boolean, default=False, nullable=False)
    block_reason = Column(String(200), nullable=True)
    created_at = Column(DateTime, default=utcnow)


class SendLog(Base):
    """Append-only: uma linha por tentativa de envio ao provedor"""

    __tablename__ = "chatbot_send_logs"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(String(36), nullable=True, index=True)
    contact_phone = Column(String(30), nullable=False)
    instance_name = Column(String(100), nullable=False)
    # text | image | buttons | list | interactive_buttons | interactive_list | buttons_fallback | ...
    message_type = Column(String(40), nullable=False)
    success = Column(Boolean, nullable=False)
    api_status_code = Column(Integer, nullable=True)
    api_response = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
