"""
Outbound response types.

A response is one of four shapes; every delivery tier renders each shape
explicitly, and the plain-text renderers below are the final fallback for
the interactive ones.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from resale_bot.db.models.rule import ResponseType

DEFAULT_LIST_BUTTON_TEXT = "Ver opções"

_KEYCAPS = {n: f"{n}\ufe0f\u20e3" for n in range(10)}
_KEYCAP_TEN = "\U0001f51f"


@dataclass(frozen=True)
class ButtonOption:
    id: str
    text: str


@dataclass(frozen=True)
class ListItem:
    id: str
    title: str
    description: str = ""


@dataclass(frozen=True)
class ListSection:
    title: str
    items: tuple[ListItem, ...] = ()


@dataclass(frozen=True)
class TextResponse:
    text: str
    message_type: str = field(default="text", init=False)


@dataclass(frozen=True)
class ImageResponse:
    text: str
    image_url: str
    message_type: str = field(default="image", init=False)


@dataclass(frozen=True)
class ButtonsResponse:
    text: str
    buttons: tuple[ButtonOption, ...]
    message_type: str = field(default="buttons", init=False)


@dataclass(frozen=True)
class ListResponse:
    text: str
    sections: tuple[ListSection, ...]
    button_text: str = DEFAULT_LIST_BUTTON_TEXT
    message_type: str = field(default="list", init=False)


OutboundResponse = Union[TextResponse, ImageResponse, ButtonsResponse, ListResponse]


def keycap(number: int) -> str:
    """1 -> '1️⃣', 10 -> '🔟', acima disso 'n.'"""
    if number in _KEYCAPS:
        return _KEYCAPS[number]
    if number == 10:
        return _KEYCAP_TEN
    return f"{number}."


def render_buttons_as_text(text: str, buttons: tuple[ButtonOption, ...]) -> str:
    lines = "\n".join(f"{keycap(i)} {button.text}" for i, button in enumerate(buttons, start=1))
    return f"{text}\n\n{lines}\n\n_Responda com o número da opção desejada._"


def render_list_as_text(text: str, sections: tuple[ListSection, ...]) -> str:
    rendered = f"{text}\n\n📋 *Opções disponíveis:*\n"
    for section in sections:
        rendered += f"\n*{section.title}*\n"
        for i, item in enumerate(section.items, start=1):
            suffix = f" - {item.description}" if item.description else ""
            rendered += f"{i}. {item.title}{suffix}\n"
    rendered += "\n_Responda com o nome ou número da opção desejada._"
    return rendered


def build_rule_response(response_type: str, content: dict[str, Any] | None) -> OutboundResponse:
    """
    Monta a resposta de uma regra a partir de response_content.

    Botões e itens de lista usam o `trigger` como id, para que o clique volte
    como __BUTTON__:<trigger> / __LIST__:<trigger> e case com outra regra.
    Conteúdo interativo vazio vira texto simples.
    """
    content = content or {}
    text = content.get("text") or ""

    if response_type == ResponseType.TEXT_IMAGE and content.get("image_url"):
        return ImageResponse(text=text, image_url=content["image_url"])

    if response_type == ResponseType.TEXT_BUTTONS and content.get("buttons"):
        return ButtonsResponse(
            text=text,
            buttons=tuple(
                ButtonOption(id=str(b.get("trigger") or b.get("id") or ""), text=b.get("text") or "")
                for b in content["buttons"]
            ),
        )

    if response_type == ResponseType.TEXT_LIST and content.get("sections"):
        return ListResponse(
            text=text,
            button_text=content.get("list_button") or DEFAULT_LIST_BUTTON_TEXT,
            sections=tuple(
                ListSection(
                    title=section.get("title") or "",
                    items=tuple(
                        ListItem(
                            id=str(item.get("trigger") or item.get("id") or ""),
                            title=item.get("title") or "",
                            description=item.get("description") or "",
                        )
                        for item in section.get("items") or []
                    ),
                )
                for section in content["sections"]
            ),
        )

    return TextResponse(text=text)


def downgrade_to_text(response: OutboundResponse) -> OutboundResponse:
    """Interativo vira só o texto do corpo; texto e imagem passam intactos"""
    if isinstance(response, (ButtonsResponse, ListResponse)):
        return TextResponse(text=response.text)
    return response
