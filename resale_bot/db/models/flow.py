"""
Flow Models - seller menu trees and the sessions walking them
"""
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from resale_bot.db.database import Base, utcnow


class ChatbotFlow(Base):
    """Árvore de menu nomeada de um revendedor"""

    __tablename__ = "chatbot_flows"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(String(36), nullable=False, index=True)
    name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    is_main_menu = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ChatbotFlowNode(Base):
    """Opção numerada dentro de um fluxo"""

    __tablename__ = "chatbot_flow_nodes"

    id = Column(Integer, primary_key=True, index=True)
    flow_id = Column(Integer, ForeignKey("chatbot_flows.id"), nullable=False, index=True)
    parent_node_id = Column(Integer, ForeignKey("chatbot_flow_nodes.id"), nullable=True)

    option_number = Column(String(10), nullable=False)
    title = Column(String(200), nullable=False)
    # text | text_image | submenu | template | human_transfer | end_chat
    response_type = Column(String(20), default="text", nullable=False)
    # {"text": ..., "image_url": ...}
    response_content = Column(JSON, default=dict)
    template_id = Column(Integer, ForeignKey("chatbot_templates.id"), nullable=True)
    sort_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow)


class ChatbotFlowSession(Base):
    """Ponteiro do contato dentro do fluxo (uma linha por seller+telefone)"""

    __tablename__ = "chatbot_flow_sessions"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(String(36), nullable=False, index=True)
    contact_phone = Column(String(30), nullable=False)
    current_flow_id = Column(Integer, ForeignKey("chatbot_flows.id"), nullable=True)
    # None = menu raiz
    current_node_id = Column(Integer, ForeignKey("chatbot_flow_nodes.id"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    awaiting_human = Column(Boolean, default=False, nullable=False)

    started_at = Column(DateTime, default=utcnow)
    last_interaction_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("seller_id", "contact_phone", name="uq_flow_sessions_seller_phone"),
    )


class ChatbotTemplate(Base):
    """Texto reutilizável referenciado por nós do tipo template"""

    __tablename__ = "chatbot_templates"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(String(36), nullable=False, index=True)
    name = Column(String(150), nullable=False)
    response_type = Column(String(20), default="text", nullable=False)
    response_content = Column(JSON, default=dict)

    created_at = Column(DateTime, default=utcnow)
