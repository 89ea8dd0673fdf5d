"""
Flow State Machine handler.

Decides what a seller's menu flow answers for an inbound message and
applies the session transition. Sending is left to the caller, so a
``None`` decision means "not handled by the flow" and the message falls
through to the next layer.
"""
from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from resale_bot.core.config import settings
from resale_bot.core.logging import get_logger
from resale_bot.core.validation import PhoneNumberValidator
from resale_bot.db.models import ChatbotFlowSession, ChatbotTemplate
from resale_bot.domain.services.responses import ImageResponse, OutboundResponse, TextResponse
from resale_bot.state_machine.flow_tree import FlowNodeView, FlowTree, is_back_command
from resale_bot.state_machine.manager import FlowSessionManager, state_of
from resale_bot.state_machine.states import FlowNodeType, FlowState

logger = get_logger(__name__)

HUMAN_TRANSFER_TEXT = "Aguarde, você será atendido por um de nossos atendentes."
END_CHAT_TEXT = "Obrigado pelo contato! Até a próxima."


class FlowDecisionKind:
    START = "flow_start"
    BACK = "flow_main_menu"
    NODE = "flow_node"


@dataclass
class FlowDecision:
    response: OutboundResponse
    session: ChatbotFlowSession
    kind: str
    node: FlowNodeView | None = None


def is_flow_trigger(text: str, keywords: list[str] | None = None) -> bool:
    lowered = text.strip().lower()
    return any(keyword in lowered for keyword in (keywords or settings.flow_trigger_keywords))


class FlowHandler:
    def __init__(self, db: AsyncSession, trigger_keywords: list[str] | None = None):
        self.db = db
        self.sessions = FlowSessionManager(db)
        self.trigger_keywords = trigger_keywords or settings.flow_trigger_keywords

    async def get_session(self, seller_id: str, phone: str) -> ChatbotFlowSession | None:
        return await self.sessions.get_session(seller_id, phone)

    async def continue_session(
        self,
        session: ChatbotFlowSession | None,
        text: str,
    ) -> FlowDecision | None:
        """Opção numerada ou "voltar" dentro de uma sessão ativa"""
        if state_of(session) != FlowState.AT_NODE or session.current_flow_id is None:
            return None

        tree = await self.sessions.load_tree(session.current_flow_id)
        if not len(tree):
            return None

        if is_back_command(text):
            level = tree.parent_level(session.current_node_id)
            await self.sessions.move_to(session, level)
            return FlowDecision(
                response=TextResponse(tree.menu_for_level(level)),
                session=session,
                kind=FlowDecisionKind.BACK,
            )

        node = tree.find_option(session.current_node_id, text)
        if node is None:
            return None

        response = await self._apply_node(session, tree, node)
        logger.info(
            "Opção do fluxo selecionada",
            extra_data={
                "seller_id": session.seller_id,
                "phone": PhoneNumberValidator.mask(session.contact_phone),
                "node_id": node.id,
                "response_type": node.response_type,
            },
        )
        return FlowDecision(
            response=response,
            session=session,
            kind=FlowDecisionKind.NODE,
            node=node,
        )

    async def start_from_trigger(self, seller_id: str, phone: str, text: str) -> FlowDecision | None:
        """Palavra-gatilho abre o menu principal na raiz"""
        if not is_flow_trigger(text, self.trigger_keywords):
            return None

        flow = await self.sessions.get_main_flow(seller_id)
        if flow is None:
            return None

        tree = await self.sessions.load_tree(flow.id)
        if not tree.root_nodes():
            return None

        session = await self.sessions.start(seller_id, phone, flow)
        if state_of(session) != FlowState.AT_NODE:
            return None
        return FlowDecision(
            response=TextResponse(tree.menu_for_level(None)),
            session=session,
            kind=FlowDecisionKind.START,
        )

    async def _apply_node(
        self,
        session: ChatbotFlowSession,
        tree: FlowTree,
        node: FlowNodeView,
    ) -> OutboundResponse:
        node_type = node.response_type

        if node_type == FlowNodeType.SUBMENU:
            if tree.children(node.id):
                await self.sessions.move_to(session, node.id)
                return TextResponse(tree.submenu_text(node))
            await self.sessions.touch(session)
            return TextResponse(node.text)

        if node_type == FlowNodeType.TEMPLATE:
            await self.sessions.touch(session)
            return TextResponse(await self._template_text(session.seller_id, node))

        if node_type == FlowNodeType.HUMAN_TRANSFER:
            await self.sessions.await_human(session)
            return TextResponse(node.text or HUMAN_TRANSFER_TEXT)

        if node_type == FlowNodeType.END_CHAT:
            await self.sessions.end(session)
            return TextResponse(node.text or END_CHAT_TEXT)

        await self.sessions.touch(session)
        if node_type == FlowNodeType.TEXT_IMAGE and node.image_url:
            return ImageResponse(text=node.text, image_url=node.image_url)
        return TextResponse(node.text)

    async def _template_text(self, seller_id: str, node: FlowNodeView) -> str:
        if node.template_id is None:
            return node.text
        result = await self.db.execute(
            select(ChatbotTemplate).where(
                ChatbotTemplate.id == node.template_id,
                ChatbotTemplate.seller_id == seller_id,
            )
        )
        template = result.scalar_one_or_none()
        if template is None:
            logger.warning(
                "Template do fluxo não encontrado, usando texto do nó",
                extra_data={"template_id": node.template_id, "node_id": node.id},
            )
            return node.text
        return (template.response_content or {}).get("text") or node.text
