"""
Flow Session Manager - persists where each contact stands in a seller flow
"""
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from resale_bot.core.logging import get_logger
from resale_bot.core.validation import PhoneNumberValidator
from resale_bot.db.database import utcnow
from resale_bot.db.models import ChatbotFlow, ChatbotFlowNode, ChatbotFlowSession
from resale_bot.state_machine.flow_tree import FlowTree
from resale_bot.state_machine.states import FlowState, is_valid_transition

logger = get_logger(__name__)


def state_of(session: ChatbotFlowSession | None) -> FlowState:
    if session is None:
        return FlowState.NO_SESSION
    if not session.is_active:
        return FlowState.ENDED
    if session.awaiting_human:
        return FlowState.AWAITING_HUMAN
    return FlowState.AT_NODE


class FlowSessionManager:
    """Manages flow session transitions (one row per seller + phone)"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_session(self, seller_id: str, phone: str) -> ChatbotFlowSession | None:
        result = await self.db.execute(
            select(ChatbotFlowSession).where(
                ChatbotFlowSession.seller_id == seller_id,
                ChatbotFlowSession.contact_phone == phone,
            )
        )
        return result.scalar_one_or_none()

    async def get_main_flow(self, seller_id: str) -> ChatbotFlow | None:
        result = await self.db.execute(
            select(ChatbotFlow)
            .where(
                ChatbotFlow.seller_id == seller_id,
                ChatbotFlow.is_active.is_(True),
                ChatbotFlow.is_main_menu.is_(True),
            )
            .order_by(ChatbotFlow.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def load_tree(self, flow_id: int) -> FlowTree:
        flow = await self.db.get(ChatbotFlow, flow_id)
        result = await self.db.execute(
            select(ChatbotFlowNode).where(
                ChatbotFlowNode.flow_id == flow_id,
                ChatbotFlowNode.is_active.is_(True),
            )
        )
        return FlowTree.from_models(
            result.scalars().all(),
            description=flow.description if flow else None,
        )

    async def start(self, seller_id: str, phone: str, flow: ChatbotFlow) -> ChatbotFlowSession:
        """Abre (ou reabre) a sessão no menu raiz do fluxo"""
        session = await self.get_session(seller_id, phone)
        if session is None:
            session = ChatbotFlowSession(
                seller_id=seller_id,
                contact_phone=phone,
                current_flow_id=flow.id,
                current_node_id=None,
                is_active=True,
                awaiting_human=False,
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(session)
                await self.db.commit()
                await self.db.refresh(session)
                return session
            except IntegrityError:
                # outra invocação criou a sessão em paralelo
                session = await self.get_session(seller_id, phone)
                if session is None:
                    raise

        if not await self._transition(session, FlowState.AT_NODE):
            return session
        session.current_flow_id = flow.id
        session.current_node_id = None
        session.is_active = True
        session.awaiting_human = False
        session.last_interaction_at = utcnow()
        await self.db.commit()
        return session

    async def move_to(self, session: ChatbotFlowSession, node_id: int | None) -> None:
        if await self._transition(session, FlowState.AT_NODE):
            session.current_node_id = node_id
            session.last_interaction_at = utcnow()
            await self.db.commit()

    async def await_human(self, session: ChatbotFlowSession) -> None:
        if await self._transition(session, FlowState.AWAITING_HUMAN):
            session.awaiting_human = True
            session.last_interaction_at = utcnow()
            await self.db.commit()

    async def end(self, session: ChatbotFlowSession) -> None:
        if await self._transition(session, FlowState.ENDED):
            session.is_active = False
            session.last_interaction_at = utcnow()
            await self.db.commit()

    async def touch(self, session: ChatbotFlowSession) -> None:
        session.last_interaction_at = utcnow()
        await self.db.commit()

    async def _transition(
        self,
        session: ChatbotFlowSession,
        target: FlowState,
    ) -> bool:
        current = state_of(session)
        if is_valid_transition(current, target):
            return True
        logger.warning(
            "Invalid flow transition attempted",
            extra_data={
                "seller_id": session.seller_id,
                "phone": PhoneNumberValidator.mask(session.contact_phone),
                "current_state": current.value,
                "target_state": target.value,
            },
        )
        return False
