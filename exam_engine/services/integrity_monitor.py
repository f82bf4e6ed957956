"""
services/integrity_monitor.py

시험 이탈 감지 기록기.

포커스 이탈(focus_lost)과 화면 숨김(visibility_lost)은 따로 기록하고,
lockdown_violation은 버전의 잠금 모드가 켜져 있을 때만 기록한다.
첫 위반 때 한 번만 경고 상태를 켜고 이후로는 조용히 누적한다.
누적 횟수는 채점자에게 참고 정보로만 보이며, 자동 불합격 처리는 하지 않는다.
응시 상태(status)는 절대 바꾸지 않는다.
"""

import logging
from collections import Counter
from typing import Dict, Optional

from pydantic import BaseModel, Field

from config import MAX_VIOLATION_LOG, VIOLATION_DEBOUNCE_SECONDS
from exam_engine.models.session_state import Attempt, ViolationKind, ViolationRecord
from exam_engine.services.session_controller import SessionController

logger = logging.getLogger(__name__)


class ViolationOutcome(BaseModel):
    """recordViolation 호출 결과 (응시자 화면 경고 표시용)."""

    attempt_id: str
    kind: ViolationKind
    recorded: bool = False
    warning_triggered: bool = False
    warning_active: bool = False
    violation_count: int = 0


class IntegritySummary(BaseModel):
    """채점자용 이탈 요약. 참고 정보일 뿐 합격/불합격 판단에 쓰지 않는다."""

    attempt_id: str
    violation_count: int = 0
    by_kind: Dict[str, int] = Field(default_factory=dict)
    warning_issued_at: Optional[float] = None
    first_at: Optional[float] = None
    last_at: Optional[float] = None
    log_truncated: bool = False


class IntegrityMonitor:
    """
    Args:
        controller:       쓰기를 직렬화하는 세션 컨트롤러
        max_log:          응시당 보관하는 이탈 기록 최대 개수. 넘으면 기록은 버리고 횟수만 센다.
        debounce_seconds: 같은 종류 이탈이 이 간격 안에 반복되면 하나로 합친다 (0이면 끔).
    """

    def __init__(
        self,
        controller: SessionController,
        max_log: int = MAX_VIOLATION_LOG,
        debounce_seconds: float = VIOLATION_DEBOUNCE_SECONDS,
    ):
        self.controller = controller
        self.max_log = max_log
        self.debounce_seconds = debounce_seconds

    def _is_bounced(self, attempt: Attempt, kind: ViolationKind, now: float) -> bool:
        if self.debounce_seconds <= 0 or not attempt.violations:
            return False
        last = attempt.violations[-1]
        return last.kind == kind and now - last.at < self.debounce_seconds

    def record_violation(self, attempt_id: str, kind: ViolationKind,
                         detail: Optional[str] = None) -> ViolationOutcome:
        """
        이탈 기록 (추가 전용).

        진행 중이 아닌 응시, 잠금 모드가 꺼진 버전의 lockdown_violation,
        디바운스에 걸린 반복 신호는 기록하지 않고 recorded=False로 돌려준다.
        저장 실패도 예외 없이 recorded=False.
        """
        kind = ViolationKind(kind)
        outcome = ViolationOutcome(attempt_id=attempt_id, kind=kind)

        def _append(attempt: Attempt) -> bool:
            outcome.violation_count = attempt.violation_count
            outcome.warning_active = attempt.warning_active
            if not attempt.is_in_progress:
                return False
            if kind == ViolationKind.LOCKDOWN_VIOLATION:
                version = self.controller.catalog.get_test_version(attempt.version_id)
                if not version.options.lockdown_mode:
                    return False

            now = self.controller.clock()
            if self._is_bounced(attempt, kind, now):
                return False

            if len(attempt.violations) < self.max_log:
                attempt.violations.append(ViolationRecord(at=now, kind=kind, detail=detail))
            attempt.violation_count += 1

            if attempt.warning_issued_at is None:
                attempt.warning_issued_at = now
                outcome.warning_triggered = True

            outcome.recorded = True
            outcome.violation_count = attempt.violation_count
            outcome.warning_active = True
            return True

        if self.controller.update_attempt(attempt_id, _append) is None:
            # 저장 실패: 기록되지 않았으므로 계산해 둔 결과를 되돌린다
            return ViolationOutcome(attempt_id=attempt_id, kind=kind)

        if outcome.warning_triggered:
            logger.warning(f"첫 이탈 감지, 경고 표시: attempt={attempt_id} kind={kind.value}")
        elif outcome.recorded:
            logger.debug(f"이탈 누적: attempt={attempt_id} kind={kind.value} count={outcome.violation_count}")
        return outcome

    def summary(self, attempt_id: str) -> IntegritySummary:
        attempt = self.controller.get_attempt(attempt_id)
        by_kind = Counter(v.kind.value for v in attempt.violations)
        return IntegritySummary(
            attempt_id=attempt_id,
            violation_count=attempt.violation_count,
            by_kind=dict(by_kind),
            warning_issued_at=attempt.warning_issued_at,
            first_at=attempt.violations[0].at if attempt.violations else None,
            last_at=attempt.violations[-1].at if attempt.violations else None,
            log_truncated=attempt.violation_count > len(attempt.violations),
        )
