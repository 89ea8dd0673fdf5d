"""
Canonical inbound message, produced by the webhook normalizer and consumed
by the chatbot services.
"""
from __future__ import annotations

from dataclasses import dataclass

from resale_bot.core.validation import PhoneNumberValidator


@dataclass(frozen=True)
class CanonicalMessage:
    instance_name: str
    remote_jid: str
    text: str | None = None
    from_me: bool = False
    push_name: str = ""
    message_id: str | None = None
    event: str | None = None

    @property
    def phone(self) -> str:
        return PhoneNumberValidator.extract_from_jid(self.remote_jid)

    @property
    def is_group(self) -> bool:
        return PhoneNumberValidator.is_group_jid(self.remote_jid)

    @property
    def masked_phone(self) -> str:
        return PhoneNumberValidator.mask(self.phone)
