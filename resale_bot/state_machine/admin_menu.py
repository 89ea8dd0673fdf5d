"""
Admin Menu Engine

A single global tree keyed by node_key. Unknown input is answered with an
empty message, which callers treat as "send nothing".
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from resale_bot.db.models import AdminChatbotNode

ROOT_NODE_KEY = "inicial"
RESET_COMMANDS = frozenset({"*", "voltar", "menu", "0"})

_NUMBER_WORDS = {
    "um": "1", "one": "1",
    "dois": "2", "two": "2",
    "tres": "3", "três": "3", "three": "3",
    "quatro": "4", "four": "4",
    "cinco": "5", "five": "5",
    "seis": "6", "six": "6",
    "sete": "7", "seven": "7",
    "oito": "8", "eight": "8",
    "nove": "9", "nine": "9",
}

# "1️⃣" com ou sem o seletor de variação
_KEYCAP_RE = re.compile("([1-9])\ufe0f?\u20e3")


@dataclass(frozen=True)
class AdminOption:
    key: str
    label: str
    target: str


@dataclass(frozen=True)
class AdminNodeView:
    node_key: str
    parent_key: str | None
    content: str
    image_url: str | None = None
    options: tuple[AdminOption, ...] = ()
    sort_order: int = 0

    @classmethod
    def from_model(cls, node: AdminChatbotNode) -> "AdminNodeView":
        return cls(
            node_key=node.node_key,
            parent_key=node.parent_key,
            content=node.content or "",
            image_url=node.image_url or None,
            options=tuple(
                AdminOption(
                    key=str(opt.get("key", "")).strip(),
                    label=opt.get("label") or "",
                    target=opt.get("target") or "",
                )
                for opt in (node.options or [])
                if isinstance(opt, dict)
            ),
            sort_order=node.sort_order or 0,
        )


@dataclass(frozen=True)
class AdminMenuResult:
    next_node: AdminNodeView | None
    message: str

    @property
    def is_silent(self) -> bool:
        return not self.message.strip()


SILENCE = AdminMenuResult(next_node=None, message="")


def normalize_admin_input(text: str) -> str:
    """'Um', ' 1️⃣ ', 'one' -> '1'; anything else lower-cased and trimmed"""
    cleaned = text.strip().lower()
    if cleaned in _NUMBER_WORDS:
        return _NUMBER_WORDS[cleaned]
    keycap = _KEYCAP_RE.search(cleaned)
    if keycap:
        return keycap.group(1)
    return cleaned


class AdminMenuTree:
    def __init__(self, nodes: Iterable[AdminNodeView]):
        self._nodes: dict[str, AdminNodeView] = {}
        self._ordered: list[AdminNodeView] = []
        for node in nodes:
            self._nodes.setdefault(node.node_key, node)
        self._ordered = sorted(self._nodes.values(), key=lambda n: n.sort_order)

    @classmethod
    def from_models(cls, nodes: Iterable[AdminChatbotNode]) -> "AdminMenuTree":
        return cls(AdminNodeView.from_model(n) for n in nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_key: str | None) -> AdminNodeView | None:
        if not node_key:
            return None
        return self._nodes.get(node_key)

    def main_node(self) -> AdminNodeView | None:
        """'inicial', else the first root node, else the lowest sort_order"""
        if ROOT_NODE_KEY in self._nodes:
            return self._nodes[ROOT_NODE_KEY]
        for node in self._ordered:
            if node.parent_key is None:
                return node
        return self._ordered[0] if self._ordered else None


def process_admin_input(tree: AdminMenuTree, current_node_key: str | None, text: str) -> AdminMenuResult:
    """
    Próximo nó do menu admin para a entrada do contato.

    Comandos de reset e nó atual inexistente levam ao nó principal; opção
    inexistente devolve silêncio sem mover o contato.
    """
    main = tree.main_node()
    if main is None:
        return SILENCE

    raw = text.strip().lower()
    if raw in RESET_COMMANDS:
        return AdminMenuResult(next_node=main, message=main.content)

    current = tree.get(current_node_key)
    if current is None:
        return AdminMenuResult(next_node=main, message=main.content)

    key = normalize_admin_input(raw)
    for option in current.options:
        if option.key == key and option.target:
            target = tree.get(option.target)
            if target is not None:
                return AdminMenuResult(next_node=target, message=target.content)
            break

    return SILENCE
