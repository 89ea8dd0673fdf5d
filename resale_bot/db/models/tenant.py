"""
Tenant Models - WhatsApp instances, global provider config and roles
"""
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from resale_bot.db.database import Base, utcnow


class PlanStatus:
    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"

    BLOCKING = (EXPIRED, SUSPENDED)


class SellerInstance(Base):
    """Instância WhatsApp de um revendedor"""

    __tablename__ = "whatsapp_seller_instances"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(String(36), nullable=False, index=True)
    instance_name = Column(String(100), nullable=False, index=True)
    # nome anterior à renomeação pelo onboarding
    original_instance_name = Column(String(100), nullable=True)
    is_connected = Column(Boolean, default=False, nullable=False)

    instance_blocked = Column(Boolean, default=False, nullable=False)
    blocked_reason = Column(String(200), nullable=True)
    blocked_at = Column(DateTime, nullable=True)
    plan_status = Column(String(20), default=PlanStatus.ACTIVE, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class GlobalConfig(Base):
    """Credenciais do provedor (Evolution API) + instância do admin"""

    __tablename__ = "whatsapp_global_config"

    id = Column(Integer, primary_key=True, index=True)
    api_url = Column(String(500), nullable=False)
    api_token = Column(Text, nullable=False)
    instance_name = Column(String(100), nullable=True)
    admin_user_id = Column(String(36), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class UserRoleAssignment(Base):
    """Papel de um usuário do painel (admin, seller)"""

    __tablename__ = "user_roles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    role = Column(String(20), nullable=False)


class AppSetting(Base):
    """Chave/valor global; guarda as configurações do chatbot admin"""

    __tablename__ = "app_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
