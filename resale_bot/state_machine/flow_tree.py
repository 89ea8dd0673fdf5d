"""
Flow tree.

Nodes live in a flat map keyed by id with a children index per parent, so
lookups never recurse and a dangling parent id simply resolves to the root.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable

from resale_bot.db.models import ChatbotFlowNode

DEFAULT_MENU_HEADER = "Escolha uma opção:\n\n"
MENU_FOOTER = "\n_Responda com o número da opção desejada._"
BACK_OPTION = "\n*0* - Voltar ao menu anterior"
BACK_COMMANDS = frozenset({"0", "voltar"})


@dataclass(frozen=True)
class FlowNodeView:
    id: int
    parent_id: int | None
    option_number: str
    title: str
    response_type: str
    text: str = ""
    image_url: str | None = None
    template_id: int | None = None
    sort_order: int = 0
    is_active: bool = True

    @classmethod
    def from_model(cls, node: ChatbotFlowNode) -> "FlowNodeView":
        content = node.response_content or {}
        return cls(
            id=node.id,
            parent_id=node.parent_node_id,
            option_number=str(node.option_number).strip(),
            title=node.title,
            response_type=node.response_type,
            text=content.get("text") or "",
            image_url=content.get("image_url") or None,
            template_id=node.template_id,
            sort_order=node.sort_order or 0,
            is_active=bool(node.is_active),
        )


def build_menu_text(nodes: Iterable[FlowNodeView], header: str | None = None) -> str:
    """Numbered menu of the active nodes, in sort_order"""
    lines = "".join(
        f"*{node.option_number}* - {node.title}\n"
        for node in sorted(nodes, key=lambda n: n.sort_order)
        if node.is_active
    )
    return f"{header or DEFAULT_MENU_HEADER}{lines}{MENU_FOOTER}"


def is_back_command(text: str) -> bool:
    return text.strip().lower() in BACK_COMMANDS


class FlowTree:
    """Árvore de um fluxo; só nós ativos participam da navegação"""

    def __init__(self, nodes: Iterable[FlowNodeView], description: str | None = None):
        self.description = description
        self._nodes: dict[int, FlowNodeView] = {}
        self._children: dict[int | None, list[FlowNodeView]] = defaultdict(list)
        for node in nodes:
            if not node.is_active:
                continue
            self._nodes[node.id] = node
        for node in self._nodes.values():
            # pai inexistente/inativo: nó fica inalcançável em vez de virar raiz
            if node.parent_id is None or node.parent_id in self._nodes:
                self._children[node.parent_id].append(node)
        for children in self._children.values():
            children.sort(key=lambda n: n.sort_order)

    @classmethod
    def from_models(
        cls,
        nodes: Iterable[ChatbotFlowNode],
        description: str | None = None,
    ) -> "FlowTree":
        return cls((FlowNodeView.from_model(n) for n in nodes), description=description)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_id: int | None) -> FlowNodeView | None:
        if node_id is None:
            return None
        return self._nodes.get(node_id)

    def children(self, parent_id: int | None) -> list[FlowNodeView]:
        return list(self._children.get(parent_id, ()))

    def root_nodes(self) -> list[FlowNodeView]:
        return self.children(None)

    def level_of(self, node_id: int | None) -> int | None:
        """Nível válido para a sessão: o próprio nó se existe, senão a raiz"""
        return node_id if node_id in self._nodes else None

    def find_option(self, level_id: int | None, option: str) -> FlowNodeView | None:
        """Exact option_number among the children of the current level only"""
        cleaned = option.strip()
        if not cleaned or is_back_command(cleaned):
            return None
        for node in self.children(self.level_of(level_id)):
            if node.option_number == cleaned:
                return node
        return None

    def parent_level(self, level_id: int | None) -> int | None:
        """One level up; the root when the parent is missing or inactive"""
        node = self.get(self.level_of(level_id))
        if node is None or node.parent_id is None:
            return None
        return node.parent_id if node.parent_id in self._nodes else None

    def menu_for_level(self, level_id: int | None) -> str:
        level_id = self.level_of(level_id)
        if level_id is None:
            header = f"{self.description}\n\n" if self.description else None
            return build_menu_text(self.root_nodes(), header)
        node = self._nodes[level_id]
        return self.submenu_text(node)

    def submenu_text(self, node: FlowNodeView) -> str:
        return build_menu_text(self.children(node.id), f"{node.text}\n\n") + BACK_OPTION
