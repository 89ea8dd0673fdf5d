"""
Webhook Event Model - idempotency de entregas repetidas do provedor.

Cada mensagem recebida é registrada por "<instância>:<key.id>". Só
status=completed bloqueia reprocessamento; processing antigo ou failed
permitem retry.
"""
from sqlalchemy import Column, DateTime, Index, String

from resale_bot.db.database import Base, utcnow


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    message_id = Column(String(255), primary_key=True)
    instance_name = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default="processing")
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_webhook_events_status_created", "status", "created_at"),
    )
