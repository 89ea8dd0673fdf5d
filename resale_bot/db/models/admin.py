"""
Admin Chatbot Models - the single global menu tree of the admin tenant
"""
from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from resale_bot.db.database import Base, utcnow


class AdminChatbotNode(Base):
    """
    Nó do menu admin.

    options: [{"key": "1", "label": "Planos", "target": "planos"}, ...]
    """

    __tablename__ = "admin_chatbot_config"

    id = Column(Integer, primary_key=True, index=True)
    node_key = Column(String(100), nullable=False, unique=True, index=True)
    title = Column(String(200), nullable=True)
    parent_key = Column(String(100), nullable=True)
    response_type = Column(String(20), default="menu", nullable=False)  # menu | text
    content = Column(Text, nullable=False, default="")
    icon = Column(String(20), nullable=True)
    image_url = Column(String(1000), nullable=True)
    options = Column(JSON, default=list)
    sort_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class AdminChatbotContact(Base):
    __tablename__ = "admin_chatbot_contacts"

    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String(30), nullable=False, unique=True)
    name = Column(String(150), nullable=True)
    current_node_key = Column(String(100), default="inicial", nullable=False)
    last_interaction_at = Column(DateTime, nullable=True)
    last_response_at = Column(DateTime, nullable=True)
    interaction_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=utcnow)


class AdminChatbotKeyword(Base):
    __tablename__ = "admin_chatbot_keywords"

    id = Column(Integer, primary_key=True, index=True)
    keyword = Column(String(200), nullable=False)
    response_text = Column(Text, nullable=False)
    image_url = Column(String(1000), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)


class AdminChatbotInteraction(Base):
    """Auditoria das respostas do chatbot admin"""

    __tablename__ = "admin_chatbot_interactions"

    id = Column(Integer, primary_key=True, index=True)
    contact_id = Column(Integer, nullable=True, index=True)
    phone = Column(String(30), nullable=False)
    incoming_message = Column(Text, nullable=True)
    response_sent = Column(Text, nullable=True)
    node_key = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow)
