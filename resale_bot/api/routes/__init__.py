"""
API Routes
"""
from fastapi import APIRouter

from resale_bot.api.webhooks.chatbot import router as chatbot_router

router = APIRouter()

# Canonical webhook endpoint (documented)
router.include_router(chatbot_router, prefix="/chatbot", tags=["webhooks"])

# Backwards-compatible webhook endpoint
router.include_router(
    chatbot_router,
    prefix="/webhooks/chatbot",
    tags=["webhooks"],
    include_in_schema=False
)
