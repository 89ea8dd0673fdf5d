"""
Rule Matcher

Selects at most one rule for an inbound message.
"""
from __future__ import annotations

from typing import Protocol, Sequence, TypeVar

GLOBAL_TRIGGERS = frozenset({"*", "**", "***"})
ALL_CONTACTS = "ALL"

CALLBACK_PREFIXES = ("__button__:", "__list__:")


class MatchableRule(Protocol):
    trigger_text: str
    is_global_trigger: bool
    contact_filter: str
    priority: int


R = TypeVar("R", bound=MatchableRule)


def _applies_to(rule: MatchableRule, contact_status: str) -> bool:
    return rule.contact_filter == ALL_CONTACTS or rule.contact_filter == contact_status


def callback_id(message: str) -> str | None:
    """'__BUTTON__:planos' -> 'planos'; None se não for callback"""
    lowered = message.strip().lower()
    for prefix in CALLBACK_PREFIXES:
        if lowered.startswith(prefix):
            # só o trecho até o próximo ":" é o id (ids com ":" são truncados)
            return lowered.split(":", 2)[1]
    return None


def find_matching_rule(rules: Sequence[R], message: str, contact_status: str) -> R | None:
    """
    Escolhe a regra que responde à mensagem.

    Callback de botão/lista: casa só com trigger_text igual ao id.
    Texto livre: prioridade desc, não-globais antes; 1ª passada por
    igualdade ou substring do gatilho, 2ª passada pelos gatilhos globais.
    """
    if not rules:
        return None

    lowered = message.strip().lower()

    selected_id = callback_id(message)
    if selected_id is not None:
        for rule in rules:
            if rule.trigger_text.lower() == selected_id and _applies_to(rule, contact_status):
                return rule
        return None

    ordered = sorted(rules, key=lambda r: (-(r.priority or 0), bool(r.is_global_trigger)))

    for rule in ordered:
        if rule.is_global_trigger or not _applies_to(rule, contact_status):
            continue
        trigger = rule.trigger_text.lower().strip()
        # gatilho vazio casaria com tudo
        if trigger and (lowered == trigger or trigger in lowered):
            return rule

    for rule in ordered:
        if not rule.is_global_trigger or not _applies_to(rule, contact_status):
            continue
        if rule.trigger_text.strip() in GLOBAL_TRIGGERS:
            return rule

    return None
