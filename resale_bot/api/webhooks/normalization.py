"""
Webhook payload normalization.

Provider versions put the event, the instance name and the message envelope
in different places. Each lookup is an ordered list of extraction
strategies; the first one that yields a value wins.
"""
from __future__ import annotations

import re
from typing import Any, Callable, Iterable

from resale_bot.domain.services.inbound import CanonicalMessage

Strategy = Callable[[dict[str, Any]], Any]

MESSAGE_EVENTS = ("messages.upsert", "message", "message.received", "received", "incoming")

_SEPARATORS_RE = re.compile(r"[_\-\s/]+")


def _path(*keys: str | int) -> Strategy:
    """Strategy que segue as chaves/índices e devolve None no primeiro buraco"""

    def extract(raw: dict[str, Any]) -> Any:
        current: Any = raw
        for key in keys:
            if isinstance(key, int):
                if not isinstance(current, list) or len(current) <= key:
                    return None
                current = current[key]
            else:
                if not isinstance(current, dict):
                    return None
                current = current.get(key)
            if current is None:
                return None
        return current

    return extract


EVENT_STRATEGIES: tuple[Strategy, ...] = (
    _path("event"),
    _path("type"),
    _path("data", "event"),
    _path("data", "type"),
)

INSTANCE_STRATEGIES: tuple[Strategy, ...] = (
    _path("instance"),
    _path("instanceName"),
    _path("data", "instance"),
    _path("data", "instanceName"),
    _path("data", "instance", "instanceName"),
    _path("data", "instance", "name"),
    _path("instance", "instanceName"),
    _path("instance", "name"),
)

ENVELOPE_STRATEGIES: tuple[Strategy, ...] = (
    _path("data"),
    _path("message"),
    _path("messages", 0),
    _path("data", "data"),
    _path("data", "message"),
    _path("data", "messages", 0),
    _path("data", "messages", 0, "message"),
    _path("data", "payload"),
    _path("payload"),
)


def first_match(
    raw: dict[str, Any],
    strategies: Iterable[Strategy],
    accept: Callable[[Any], bool] = lambda value: value is not None,
) -> Any:
    for strategy in strategies:
        value = strategy(raw)
        if accept(value):
            return value
    return None


def _has_remote_jid(candidate: Any) -> bool:
    return (
        isinstance(candidate, dict)
        and isinstance(candidate.get("key"), dict)
        and bool(candidate["key"].get("remoteJid"))
    )


def extract_event(raw: dict[str, Any]) -> str:
    event = first_match(raw, EVENT_STRATEGIES)
    return str(event) if event else ""


def extract_instance_name(raw: dict[str, Any]) -> str:
    """Nome da instância; aceita string ou objeto {instanceName|name|instance}"""
    value = first_match(raw, INSTANCE_STRATEGIES)
    if isinstance(value, dict):
        value = value.get("instanceName") or value.get("name") or value.get("instance") or ""
    return str(value or "").strip()


def extract_envelope(raw: dict[str, Any]) -> dict[str, Any] | None:
    return first_match(raw, ENVELOPE_STRATEGIES, accept=_has_remote_jid)


def normalize_event_name(event: str) -> str:
    """'MESSAGES_UPSERT' -> 'messages.upsert'"""
    return _SEPARATORS_RE.sub(".", event.strip().lower())


def is_message_event(event: str | None) -> bool:
    """Evento ausente é tolerado; presente precisa ser uma variante de mensagem"""
    if not event:
        return True
    normalized = normalize_event_name(event)
    return any(candidate in normalized for candidate in MESSAGE_EVENTS)


def extract_message_text(message: dict[str, Any] | None) -> str | None:
    """
    Texto da mensagem; respostas de botão/lista viram __BUTTON__:<id> /
    __LIST__:<id>. Áudio, vídeo e figurinha não têm texto.
    """
    if not isinstance(message, dict):
        return None

    if message.get("audioMessage") or message.get("videoMessage") or message.get("stickerMessage"):
        return None

    if message.get("conversation"):
        return str(message["conversation"])

    extended = message.get("extendedTextMessage") or {}
    if isinstance(extended, dict) and extended.get("text"):
        return str(extended["text"])

    buttons = message.get("buttonsResponseMessage") or {}
    if isinstance(buttons, dict) and buttons.get("selectedButtonId"):
        return f"__BUTTON__:{buttons['selectedButtonId']}"

    list_reply = (message.get("listResponseMessage") or {})
    single = list_reply.get("singleSelectReply") if isinstance(list_reply, dict) else None
    if isinstance(single, dict) and single.get("selectedRowId"):
        return f"__LIST__:{single['selectedRowId']}"

    return None


def is_from_me(value: Any) -> bool:
    if value is True:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true")
    return False


class PayloadIgnored(Exception):
    """Payload válido que não deve ser processado (responde 200 + reason)"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def normalize_payload(raw: dict[str, Any]) -> CanonicalMessage:
    """
    Converte o payload cru em CanonicalMessage.

    Raises:
        PayloadIgnored: não é evento de mensagem, sem envelope ou sem instância
    """
    event = extract_event(raw)
    if not is_message_event(event):
        raise PayloadIgnored("Not a message event")

    envelope = extract_envelope(raw)
    if envelope is None:
        raise PayloadIgnored("No message data")

    instance_name = extract_instance_name(raw)
    if not instance_name:
        raise PayloadIgnored("No instance name")

    key = envelope["key"]
    return CanonicalMessage(
        instance_name=instance_name,
        remote_jid=str(key["remoteJid"]),
        text=extract_message_text(envelope.get("message")),
        from_me=is_from_me(key.get("fromMe")),
        push_name=str(envelope.get("pushName") or ""),
        message_id=str(key["id"]) if key.get("id") else None,
        event=event or None,
    )
