"""
services/timer_service.py

남은 시험 시간 계산 + 재개 체크포인트 자동 저장 + 시간 만료 자동 제출.

남은 시간은 틱을 누적하지 않고 항상 벽시계 기준으로 다시 계산한다:
    remaining = 제한 시간 - (now - started_at)
페이지 새로고침이나 프로세스 재시작 뒤에도 오차 없이 같은 값이 나온다.

재개 체크포인트(resume)를 쓰는 것과 자동 제출을 호출하는 것은 이 모듈만 한다.
"""

from __future__ import annotations

import logging
import math
import threading
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel

from config import AUTOSAVE_INTERVAL_SECONDS
from exam_engine.errors import InputValidationError, InvalidTransitionError, StorageError
from exam_engine.models.session_state import Attempt, ResumeCheckpoint, SubmitTrigger

if TYPE_CHECKING:
    from exam_engine.services.session_controller import SessionController, SubmissionResult

logger = logging.getLogger(__name__)

_WARNING_THRESHOLD_SECONDS = 600  # 10분 미만이면 경고 표시


def remaining_seconds(duration: int, started_at: Optional[float], now: float) -> Optional[int]:
    """
    남은 시간 (초, 올림). 만료되면 0.

    Returns:
        시간 제한이 없거나(duration <= 0) 아직 시작 전이면 None.
    """
    if duration <= 0 or started_at is None:
        return None
    left = round(duration - (now - started_at), 3)  # 부동소수 오차 제거 후 올림
    return max(0, math.ceil(left))


def format_remaining(seconds: int) -> str:
    """H:MM:SS (1시간 이상) 또는 M:SS."""
    hours, rest = divmod(max(0, seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


class TimerSnapshot(BaseModel):
    attempt_id: str
    remaining_seconds: Optional[int] = None
    display: str = ""
    is_warning: bool = False
    expired: bool = False

    @property
    def untimed(self) -> bool:
        return self.remaining_seconds is None


class ResumeState(BaseModel):
    """재개 시 복원할 표시 위치와 남은 시간."""

    attempt_id: str
    section_index: int = 0
    question_index: int = 0
    remaining_seconds: Optional[int] = None
    resumed: bool = False
    auto_submitted: bool = False


class SweepSummary(BaseModel):
    checked: int = 0
    checkpointed: int = 0
    auto_submitted: int = 0


class TimerCoordinator:
    """
    진행 중인 응시의 카운트다운 / 체크포인트 / 자동 제출 담당.

    Args:
        controller: 모든 쓰기를 직렬화하는 세션 컨트롤러
        interval:   주기적 sweep 간격 (초)
    """

    def __init__(self, controller: SessionController, interval: float = AUTOSAVE_INTERVAL_SECONDS):
        self.controller = controller
        self.interval = interval

        self._in_flight_lock = threading.Lock()
        self._in_flight: set[str] = set()

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ── 시간 계산 ────────────────────────────────────────────────────────────

    def _remaining_for(self, attempt: Attempt, now: Optional[float] = None) -> Optional[int]:
        version = self.controller.catalog.get_test_version(attempt.version_id)
        now = self.controller.clock() if now is None else now
        return remaining_seconds(version.total_duration_seconds, attempt.started_at, now)

    def snapshot(self, attempt_id: str) -> TimerSnapshot:
        attempt = self.controller.get_attempt(attempt_id)
        remaining = self._remaining_for(attempt) if attempt.is_in_progress else 0
        if remaining is None:
            return TimerSnapshot(attempt_id=attempt_id)
        return TimerSnapshot(
            attempt_id=attempt_id,
            remaining_seconds=remaining,
            display=format_remaining(remaining),
            is_warning=remaining < _WARNING_THRESHOLD_SECONDS,
            expired=remaining == 0,
        )

    # ── 체크포인트 ───────────────────────────────────────────────────────────

    def checkpoint(
        self,
        attempt_id: str,
        section_index: Optional[int] = None,
        question_index: Optional[int] = None,
        forward_only: bool = False,
    ) -> Optional[ResumeCheckpoint]:
        """
        재개 지점 저장. 저장 실패는 로그만 남기고 None을 반환한다
        (재개 정확도가 떨어질 뿐 시험 진행은 막지 않는다).

        위치를 생략하면 락 안에서 읽은 현재 체크포인트 위치를 유지하고 남은 시간만 갱신한다.
        forward_only이면 락 안에서 읽은 현재 위치보다 앞으로 가는 이동만 허용한다
        (InvalidTransitionError).
        """
        saved: list[ResumeCheckpoint] = []

        def _write(attempt: Attempt) -> bool:
            if not attempt.is_in_progress:
                return False
            now = self.controller.clock()
            current = attempt.resume or ResumeCheckpoint()
            target = (
                current.section_index if section_index is None else section_index,
                current.question_index if question_index is None else question_index,
            )
            moving_back = target < (current.section_index, current.question_index)
            if forward_only and attempt.resume is not None and moving_back:
                raise InvalidTransitionError("이 시험은 이전 문항으로 돌아갈 수 없습니다.")
            cp = ResumeCheckpoint(
                section_index=target[0],
                question_index=target[1],
                remaining_seconds=self._remaining_for(attempt, now),
                saved_at=now,
            )
            attempt.resume = cp
            saved.append(cp)
            return True

        if self.controller.update_attempt(attempt_id, _write) is None:
            return None
        return saved[0] if saved else None

    def navigate(self, attempt_id: str, section_index: int, question_index: int) -> Optional[ResumeCheckpoint]:
        """
        이전/다음 문항 이동. 위치를 검증한 뒤 체크포인트를 남긴다.
        뒤로 가기가 허용되지 않는 버전에서 이전 위치로 가면 InvalidTransitionError.
        """
        attempt = self.controller.get_attempt(attempt_id)
        if not attempt.is_in_progress:
            raise InvalidTransitionError("진행 중인 응시가 아닙니다.")

        version = self.controller.catalog.get_test_version(attempt.version_id)
        laid_out = self.controller.get_layout(attempt_id)
        if laid_out.question_at(section_index, question_index) is None:
            raise InputValidationError(f"존재하지 않는 문항 위치입니다: ({section_index}, {question_index})")

        return self.checkpoint(
            attempt_id, section_index, question_index,
            forward_only=not version.options.allow_backtrack,
        )

    # ── 재개 ─────────────────────────────────────────────────────────────────

    def resume(self, attempt_id: str) -> ResumeState:
        """
        새로고침/재접속 후 복원할 상태.

        체크포인트가 있으면 그 위치로 돌아가고, 남은 시간은
        min(벽시계 재계산 값, 체크포인트 값)을 쓴다 (응시자에게 유리하게 낡은 체크포인트 방지).
        이미 만료됐으면 자동 제출한다.
        """
        attempt = self.controller.get_attempt(attempt_id)
        if not attempt.is_in_progress:
            raise InvalidTransitionError(f"진행 중인 응시가 아닙니다 (상태: {attempt.status.value}).")

        remaining = self._remaining_for(attempt)
        state = ResumeState(attempt_id=attempt_id, remaining_seconds=remaining)

        cp = attempt.resume
        if cp is not None:
            laid_out = self.controller.get_layout(attempt_id)
            if laid_out.question_at(cp.section_index, cp.question_index) is not None:
                state.section_index = cp.section_index
                state.question_index = cp.question_index
                state.resumed = True
                if remaining is not None and cp.remaining_seconds is not None:
                    state.remaining_seconds = min(remaining, cp.remaining_seconds)
            else:
                logger.warning(f"체크포인트 위치가 레이아웃 밖이라 처음부터 재개: attempt={attempt_id}")

        if state.remaining_seconds == 0:
            state.auto_submitted = self._auto_submit(attempt_id) is not None
        return state

    # ── 자동 제출 ────────────────────────────────────────────────────────────

    def _auto_submit(self, attempt_id: str) -> Optional[SubmissionResult]:
        """
        시간 만료 제출. 같은 응시에 대해 동시에 한 번만 진입한다.
        제출 저장이 끝내 실패하면 로그를 남기고 다음 tick에서 다시 시도한다.
        """
        with self._in_flight_lock:
            if attempt_id in self._in_flight:
                return None
            self._in_flight.add(attempt_id)

        try:
            result = self.controller.submit(attempt_id, trigger=SubmitTrigger.TIMEOUT)
        except StorageError as e:
            logger.error(f"자동 제출 실패, 다음 주기에 재시도: attempt={attempt_id} - {e}")
            return None
        except InvalidTransitionError as e:
            # 그 사이 중단(abandoned)된 응시
            logger.info(f"자동 제출 건너뜀: attempt={attempt_id} - {e}")
            return None
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(attempt_id)

        if result.already_submitted:
            return None
        logger.info(f"시간 만료 자동 제출: attempt={attempt_id}")
        return result

    def tick(self, attempt_id: str) -> Optional[SubmissionResult]:
        """
        남은 시간을 확인하고 0이면 자동 제출한다.

        Returns:
            이번 호출이 자동 제출을 수행했으면 그 결과, 아니면 None.
        """
        attempt = self.controller.get_attempt(attempt_id)
        if not attempt.is_in_progress:
            return None
        if self._remaining_for(attempt) != 0:
            return None
        return self._auto_submit(attempt_id)

    def sweep(self) -> SweepSummary:
        """진행 중인 모든 응시를 tick하고, 남은 응시는 체크포인트를 갱신한다."""
        summary = SweepSummary()
        try:
            attempts = self.controller.list_in_progress()
        except StorageError as e:
            logger.warning(f"sweep: 진행 중 응시 목록 조회 실패 - {e}")
            return summary

        for attempt in attempts:
            summary.checked += 1
            remaining = self._remaining_for(attempt)
            if remaining == 0:
                if self._auto_submit(attempt.id) is not None:
                    summary.auto_submitted += 1
                continue

            if self.checkpoint(attempt.id) is not None:
                summary.checkpointed += 1
        return summary

    # ── 백그라운드 루프 ──────────────────────────────────────────────────────

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                summary = self.sweep()
            except Exception:
                logger.exception("sweep 중 예상치 못한 오류")
                continue
            if summary.auto_submitted:
                logger.info(f"sweep: 자동 제출 {summary.auto_submitted}건")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="exam-timer", daemon=True)
        self._thread.start()
        logger.info(f"타이머 sweep 시작 (간격 {self.interval}초)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
