"""
Rule and Keyword Models - trigger based canned responses
"""
from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from resale_bot.db.database import Base, utcnow


class CooldownMode:
    FREE = "free"
    POLITE = "polite"
    MODERATE = "moderate"


class ResponseType:
    TEXT = "text"
    TEXT_IMAGE = "text_image"
    TEXT_BUTTONS = "text_buttons"
    TEXT_LIST = "text_list"

    INTERACTIVE = (TEXT_BUTTONS, TEXT_LIST)


class ChatbotRule(Base):
    """Regra do revendedor: gatilho -> resposta"""

    __tablename__ = "chatbot_rules"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(String(36), nullable=False, index=True)
    name = Column(String(150), nullable=True)

    trigger_text = Column(String(500), nullable=False)
    is_global_trigger = Column(Boolean, default=False, nullable=False)
    # "ALL" ou um ContactStatus ("NEW", "KNOWN", "CLIENT")
    contact_filter = Column(String(20), default="ALL", nullable=False)

    cooldown_mode = Column(String(20), default=CooldownMode.FREE, nullable=False)
    cooldown_hours = Column(Integer, nullable=True)

    response_type = Column(String(20), default=ResponseType.TEXT, nullable=False)
    # {"text", "image_url", "buttons": [{id, text, trigger}], "list_button",
    #  "sections": [{title, items: [{id, title, description, trigger}]}]}
    response_content = Column(JSON, default=dict)

    priority = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ChatbotKeyword(Base):
    """Palavra-chave exata do revendedor"""

    __tablename__ = "chatbot_keywords"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(String(36), nullable=False, index=True)
    keyword = Column(String(200), nullable=False)
    response_text = Column(Text, nullable=False)
    image_url = Column(String(1000), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow)
