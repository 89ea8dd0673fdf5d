"""
Chatbot Settings Model - per-seller behaviour switches
"""
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from resale_bot.db.database import Base, utcnow


class ChatbotSettings(Base):
    """Configuração do chatbot de um revendedor (uma linha por seller)"""

    __tablename__ = "chatbot_settings"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(String(36), nullable=False, unique=True, index=True)
    is_enabled = Column(Boolean, default=True, nullable=False)

    response_delay_min = Column(Integer, default=2, nullable=False)
    response_delay_max = Column(Integer, default=5, nullable=False)
    typing_enabled = Column(Boolean, default=True, nullable=False)
    typing_duration_min = Column(Integer, default=2, nullable=False)
    typing_duration_max = Column(Integer, default=5, nullable=False)

    ignore_groups = Column(Boolean, default=True, nullable=False)
    ignore_own_messages = Column(Boolean, default=True, nullable=False)

    # silent_mode=False + fallback_message => responde quando nada casa
    silent_mode = Column(Boolean, default=True, nullable=False)
    fallback_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @classmethod
    def defaults_for(cls, seller_id: str) -> "ChatbotSettings":
        return cls(
            seller_id=seller_id,
            is_enabled=True,
            response_delay_min=2,
            response_delay_max=5,
            typing_enabled=True,
            typing_duration_min=2,
            typing_duration_max=5,
            ignore_groups=True,
            ignore_own_messages=True,
            silent_mode=True,
        )
