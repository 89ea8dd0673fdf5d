"""
Cooldown Policy Engine

Pure decisions about whether an automated response may go out now. The
current time is always passed in, so callers (and tests) own the clock.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from resale_bot.db.models.rule import CooldownMode, ResponseType


class AdminResponseMode:
    ALWAYS = "always"
    SIX_HOURS = "6h"
    TWELVE_HOURS = "12h"
    DAILY = "24h"

    DEFAULT = DAILY
    HOURS = {SIX_HOURS: 6, TWELVE_HOURS: 12, DAILY: 24}


@dataclass(frozen=True)
class CooldownDecision:
    allow: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allow


ALLOWED = CooldownDecision(allow=True)


def _hours_since(then: datetime, now: datetime) -> float:
    return (now - then).total_seconds() / 3600


def _window(last_response_at: datetime | None, hours: float, now: datetime) -> CooldownDecision:
    if last_response_at is None:
        return ALLOWED
    if _hours_since(last_response_at, now) < hours:
        label = f"{hours:g}"
        return CooldownDecision(allow=False, reason=f"Cooldown {label}h ainda ativo")
    return ALLOWED


def can_respond(
    last_response_at: datetime | None,
    mode: str,
    mode_hours: float | None,
    now: datetime,
    *,
    polite_hours: float = 24,
) -> CooldownDecision:
    """
    Decide se a regra pode responder ao contato.

    free: sempre. polite: 24h desde a última resposta. moderate: mode_hours
    (sem horas configuradas, não bloqueia). Sem última resposta: sempre.
    """
    if mode == CooldownMode.FREE or last_response_at is None:
        return ALLOWED
    if mode == CooldownMode.POLITE:
        return _window(last_response_at, polite_hours, now)
    if mode == CooldownMode.MODERATE and mode_hours:
        return _window(last_response_at, mode_hours, now)
    return ALLOWED


def can_respond_admin(
    last_response_at: datetime | None,
    mode: str | None,
    now: datetime,
) -> CooldownDecision:
    """Variante do chatbot admin: always | 6h | 12h | 24h (padrão 24h)"""
    mode = mode or AdminResponseMode.DEFAULT
    if mode == AdminResponseMode.ALWAYS:
        return ALLOWED
    hours = AdminResponseMode.HOURS.get(mode, AdminResponseMode.HOURS[AdminResponseMode.DEFAULT])
    return _window(last_response_at, hours, now)


def can_send_interactive(
    response_type: str,
    last_buttons_sent_at: datetime | None,
    last_list_sent_at: datetime | None,
    now: datetime,
    *,
    hours: float = 24,
) -> bool:
    """Botões e listas saem no máximo uma vez a cada `hours` por contato"""
    if response_type == ResponseType.TEXT_BUTTONS:
        last_sent = last_buttons_sent_at
    elif response_type == ResponseType.TEXT_LIST:
        last_sent = last_list_sent_at
    else:
        return True
    return last_sent is None or _hours_since(last_sent, now) >= hours
