"""
State Machine Module for seller flows and the admin menu
"""
from resale_bot.state_machine.manager import FlowSessionManager
from resale_bot.state_machine.states import FlowNodeType, FlowState

__all__ = ["FlowNodeType", "FlowSessionManager", "FlowState"]
