"""
State Definitions for seller flow sessions
"""
from enum import Enum


class FlowState(str, Enum):
    """Where a contact stands inside a seller's menu flow"""

    NO_SESSION = "FLOW.NO_SESSION"
    # current_node_id None = menu raiz
    AT_NODE = "FLOW.AT_NODE"
    AWAITING_HUMAN = "FLOW.AWAITING_HUMAN"
    ENDED = "FLOW.ENDED"


class FlowNodeType(str, Enum):
    TEXT = "text"
    TEXT_IMAGE = "text_image"
    SUBMENU = "submenu"
    TEMPLATE = "template"
    HUMAN_TRANSFER = "human_transfer"
    END_CHAT = "end_chat"


# AWAITING_HUMAN não tem saída aqui: quem retoma é o atendimento humano
FLOW_TRANSITIONS: dict[FlowState, set[FlowState]] = {
    FlowState.NO_SESSION: {FlowState.AT_NODE},
    FlowState.AT_NODE: {FlowState.AT_NODE, FlowState.AWAITING_HUMAN, FlowState.ENDED},
    FlowState.AWAITING_HUMAN: set(),
    FlowState.ENDED: {FlowState.AT_NODE},
}


def is_valid_transition(current: FlowState, target: FlowState) -> bool:
    return target in FLOW_TRANSITIONS.get(current, set())
