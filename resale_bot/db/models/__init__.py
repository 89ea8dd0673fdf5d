"""
Database Models
"""
from resale_bot.db.models.admin import (
    AdminChatbotContact,
    AdminChatbotInteraction,
    AdminChatbotKeyword,
    AdminChatbotNode,
)
from resale_bot.db.models.chatbot_settings import ChatbotSettings
from resale_bot.db.models.contact import ChatbotContact, Client, ContactStatus
from resale_bot.db.models.flow import (
    ChatbotFlow,
    ChatbotFlowNode,
    ChatbotFlowSession,
    ChatbotTemplate,
)
from resale_bot.db.models.interaction import ChatbotInteraction, SendLog
from resale_bot.db.models.rule import ChatbotKeyword, ChatbotRule, CooldownMode, ResponseType
from resale_bot.db.models.tenant import (
    AppSetting,
    GlobalConfig,
    PlanStatus,
    SellerInstance,
    UserRoleAssignment,
)
from resale_bot.db.models.webhook_event import WebhookEvent

__all__ = [
    "AdminChatbotContact",
    "AdminChatbotInteraction",
    "AdminChatbotKeyword",
    "AdminChatbotNode",
    "AppSetting",
    "ChatbotContact",
    "ChatbotFlow",
    "ChatbotFlowNode",
    "ChatbotFlowSession",
    "ChatbotInteraction",
    "ChatbotKeyword",
    "ChatbotRule",
    "ChatbotSettings",
    "ChatbotTemplate",
    "Client",
    "ContactStatus",
    "CooldownMode",
    "GlobalConfig",
    "PlanStatus",
    "ResponseType",
    "SellerInstance",
    "SendLog",
    "UserRoleAssignment",
    "WebhookEvent",
]
