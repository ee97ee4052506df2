"""
State Machines

분개, 은행 대사, 회계기간의 상태 전이 관리.
"""

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class StateMachineError(Exception):
    """상태 전이 오류"""
    pass


class StateMachine:
    """상태 머신 기본 클래스
    
    Args:
        initial_state: 초기 상태
        transitions: 허용된 전이 정의 {from_state: [to_states]}
        name: 머신 이름 (로깅용)
    """
    
    def __init__(
        self,
        initial_state: str | Enum,
        transitions: dict[str, list[str]],
        name: str = "StateMachine",
    ):
        self._state = initial_state.value if isinstance(initial_state, Enum) else initial_state
        self._transitions = transitions
        self._name = name
        self._history: list[tuple[str, str]] = []
    
    @property
    def state(self) -> str:
        """현재 상태"""
        return self._state
    
    def can_transition(self, to_state: str | Enum) -> bool:
        """전이 가능 여부 확인"""
        target = to_state.value if isinstance(to_state, Enum) else to_state
        allowed = self._transitions.get(self._state, [])
        return target in allowed
    
    def transition(self, to_state: str | Enum) -> str:
        """상태 전이
        
        Args:
            to_state: 목표 상태
            
        Returns:
            새 상태
            
        Raises:
            StateMachineError: 허용되지 않은 전이
        """
        target = to_state.value if isinstance(to_state, Enum) else to_state
        
        if not self.can_transition(target):
            allowed = self._transitions.get(self._state, [])
            raise StateMachineError(
                f"{self._name}: Cannot transition from {self._state} to {target}. "
                f"Allowed: {allowed}"
            )
        
        old_state = self._state
        self._state = target
        self._history.append((old_state, target))
        
        logger.debug(f"{self._name}: {old_state} → {target}")
        
        return target
    
    @property
    def is_terminal(self) -> bool:
        """종료 상태 여부 (더 이상 전이 불가)"""
        return not self._transitions.get(self._state)
    
    @property
    def history(self) -> list[tuple[str, str]]:
        """상태 전이 이력"""
        return self._history.copy()


class JournalEntryStateMachine(StateMachine):
    """분개 상태 머신
    
    전이 규칙:
    - draft → posted: 전기
    - posted → void: 무효화
    
    posted에서 draft로 되돌리는 전이는 없음.
    """
    
    TRANSITIONS: dict[str, list[str]] = {
        "draft": ["posted"],
        "posted": ["void"],
    }
    
    def __init__(self, initial_state: str | Enum = "draft"):
        super().__init__(
            initial_state=initial_state,
            transitions=self.TRANSITIONS,
            name="JournalEntryStateMachine",
        )
    
    @property
    def is_mutable(self) -> bool:
        """라인/헤더 변경 가능 여부 (draft만 가능)"""
        return self._state == "draft"


class ReconciliationStateMachine(StateMachine):
    """은행 대사 상태 머신
    
    전이 규칙:
    - in_progress → completed: 차액 0으로 완료
    - in_progress → cancelled: 취소
    """
    
    TRANSITIONS: dict[str, list[str]] = {
        "in_progress": ["completed", "cancelled"],
    }
    
    def __init__(
        self,
        initial_state: str | Enum = "in_progress",
    ):
        super().__init__(
            initial_state=initial_state,
            transitions=self.TRANSITIONS,
            name="ReconciliationStateMachine",
        )
    
    @property
    def is_editable(self) -> bool:
        """항목 체크/해제 가능 여부"""
        return self._state == "in_progress"


class FiscalStateMachine(StateMachine):
    """회계연도/기간 상태 머신
    
    전이 규칙:
    - open → closed: 마감
    - closed → open: 재개 (관리 작업)
    """
    
    TRANSITIONS: dict[str, list[str]] = {
        "open": ["closed"],
        "closed": ["open"],
    }
    
    def __init__(self, initial_state: str | Enum = "open"):
        super().__init__(
            initial_state=initial_state,
            transitions=self.TRANSITIONS,
            name="FiscalStateMachine",
        )
