"""
hms/engine/state_machine.py

状态机引擎 - 基于转换表的显式状态转换
不持有实体，只根据 (当前状态, 触发动作) 计算新状态，由调用方写回
"""
from typing import Dict, List, Any, Optional, Callable
from dataclasses import dataclass, field
import logging

from hms.errors import InvalidTransition

logger = logging.getLogger(__name__)


@dataclass
class StateTransition:
    """
    状态转换定义

    Attributes:
        from_state: 源状态
        to_state: 目标状态
        trigger: 触发动作
        condition: 可选的转换条件（守卫）
    """

    from_state: str
    to_state: str
    trigger: str
    condition: Optional[Callable[[Dict[str, Any]], bool]] = None

    def is_allowed(self, context: Dict[str, Any]) -> bool:
        """检查守卫条件"""
        if self.condition is None:
            return True
        return bool(self.condition(context))


@dataclass
class StateMachineConfig:
    """
    状态机配置

    Attributes:
        name: 状态机名称
        states: 所有状态的列表
        transitions: 转换列表
        initial_state: 初始状态
        final_states: 终态列表
    """

    name: str
    states: List[str]
    transitions: List[StateTransition]
    initial_state: str
    final_states: List[str] = field(default_factory=list)


class StateMachine:
    """
    状态机引擎

    Example:
        >>> machine = StateMachine(StateMachineConfig(
        ...     name="Booking",
        ...     states=["requested", "approved"],
        ...     transitions=[StateTransition("requested", "approved", "approve")],
        ...     initial_state="requested",
        ... ))
        >>> machine.fire("requested", "approve")
        'approved'
    """

    def __init__(self, config: StateMachineConfig):
        self._config = config
        self._transition_map: Dict[str, Dict[str, StateTransition]] = {}

        # 构建转换映射: (from_state, trigger) -> transition
        for t in config.transitions:
            if t.from_state not in config.states or t.to_state not in config.states:
                raise ValueError(f"Unknown state in transition {t.from_state} -> {t.to_state}")
            self._transition_map.setdefault(t.from_state, {})[t.trigger] = t

    @property
    def config(self) -> StateMachineConfig:
        """获取状态机配置"""
        return self._config

    @property
    def name(self) -> str:
        return self._config.name

    def get_transition(self, state: str, trigger: str) -> Optional[StateTransition]:
        """查找 (state, trigger) 对应的转换"""
        return self._transition_map.get(state, {}).get(trigger)

    def can_fire(self, state: str, trigger: str, context: Optional[Dict[str, Any]] = None) -> bool:
        """检查当前状态下能否执行触发动作"""
        transition = self.get_transition(state, trigger)
        if transition is None:
            return False
        return transition.is_allowed(context or {})

    def fire(self, state: str, trigger: str, context: Optional[Dict[str, Any]] = None) -> str:
        """
        执行状态转换，返回新状态

        Raises:
            InvalidTransition: 转换不存在或守卫条件不满足
        """
        transition = self.get_transition(state, trigger)
        if transition is None or not transition.is_allowed(context or {}):
            logger.warning(f"{self.name}: invalid transition '{trigger}' from state '{state}'")
            raise InvalidTransition(
                f"状态为 {state} 的{self.name}不允许执行 {trigger}",
                {"entity": self.name, "state": state, "trigger": trigger},
            )

        logger.info(f"{self.name}: {state} -> {transition.to_state} (trigger: {trigger})")
        return transition.to_state

    def allowed_triggers(self, state: str) -> List[str]:
        """当前状态下所有可用的触发动作"""
        return list(self._transition_map.get(state, {}).keys())

    def is_valid_transition(self, from_state: str, to_state: str) -> bool:
        """是否存在 from_state -> to_state 的转换"""
        return any(t.to_state == to_state for t in self._transition_map.get(from_state, {}).values())

    def is_final(self, state: str) -> bool:
        """是否为终态"""
        return state in self._config.final_states


__all__ = [
    "StateTransition",
    "StateMachineConfig",
    "StateMachine",
]
