"""
hms/engine - 核心引擎模块

- state_machine: 状态机引擎（状态转换）
"""
from hms.engine.state_machine import (
    StateTransition,
    StateMachineConfig,
    StateMachine,
)

__all__ = [
    "StateTransition",
    "StateMachineConfig",
    "StateMachine",
]
