"""
services/session_controller.py

응시 생명주기 상태 기계.

    created → preflight_pending → candidate_pending → in_progress → submitted
                                                                  ↘ abandoned

상태(status) 전이는 이 모듈만 수행한다. 같은 응시에 대한 쓰기
(답안 저장, 체크포인트, 이탈 기록, 제출)는 응시별 락으로 직렬화되므로
타이머·답안·감시 쓰기가 뒤섞여 반쯤 쓰인 상태가 저장되는 일이 없다.
응시 간에는 공유 락이 없다.
"""

import logging
import secrets
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel, Field

from config import SUBMIT_BACKOFF_BASE, SUBMIT_MAX_RETRIES
from exam_engine.errors import (
    AlreadySubmittedError,
    InputValidationError,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
)
from exam_engine.models.layout_state import LayoutState
from exam_engine.models.question_model import QuestionType, TestVersion
from exam_engine.models.session_state import (
    Attempt,
    AttemptStatus,
    CandidateInfo,
    PreflightResult,
    QuestionScore,
    ReviewStatus,
    SubmitTrigger,
)
from exam_engine.services.exam_service import (
    GradeReport,
    calculate_section_scores,
    final_score,
    get_incorrect_questions,
    grade,
    validate_human_scores,
)
from exam_engine.services.layout_service import layout
from exam_engine.services.session_store import SessionStore
from exam_engine.services.test_catalog import TestCatalog
from exam_engine.services.timer_service import remaining_seconds

logger = logging.getLogger(__name__)

# Speaking 문항에 녹음이 첨부되면 답안지에 남기는 표식
RECORDED_MARKER = "recorded"

_SEED_BOUND = 2 ** 31


class SubmissionResult(BaseModel):
    attempt_id: str
    auto_total: float
    max_total: float
    submitted_at: float
    submitted_by: Optional[SubmitTrigger] = None
    already_submitted: bool = False
    per_question: List[QuestionScore] = Field(default_factory=list)


class AttemptResult(BaseModel):
    """채점 화면(리뷰 인터페이스)에 넘기는 결과."""

    attempt_id: str
    status: AttemptStatus
    review_status: Optional[ReviewStatus] = None
    auto_total: float
    max_total: float
    human_total: Optional[float] = None
    final_total: Optional[float] = None
    per_question: List[QuestionScore] = Field(default_factory=list)
    section_scores: List[Dict[str, object]] = Field(default_factory=list)
    incorrect_question_ids: List[str] = Field(default_factory=list)
    pending_review_ids: List[str] = Field(default_factory=list)
    violation_count: int = 0
    warning_issued: bool = False


class RegradeSummary(BaseModel):
    version_id: str
    examined: int = 0
    updated: int = 0
    updated_attempt_ids: List[str] = Field(default_factory=list)


def _default_seed() -> int:
    return secrets.randbelow(_SEED_BOUND)


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class SessionController:
    """
    응시 상태 기계 + 단일 작성자(single-writer) 접근 규율.

    Args:
        catalog:             시험 카탈로그 (읽기 전용)
        store:               세션 저장소
        clock:               현재 시각 함수 (Unix 초). 테스트에서 교체.
        seed_source:         레이아웃 시드 발급 함수
        submit_max_retries:  제출 저장 재시도 횟수
        submit_backoff_base: 재시도 대기 기본값 (초, 지수 증가)
        sleep:               대기 함수. 테스트에서 교체.
    """

    def __init__(
        self,
        catalog: TestCatalog,
        store: SessionStore,
        clock: Callable[[], float] = time.time,
        seed_source: Callable[[], int] = _default_seed,
        submit_max_retries: int = SUBMIT_MAX_RETRIES,
        submit_backoff_base: float = SUBMIT_BACKOFF_BASE,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.catalog = catalog
        self.store = store
        self.clock = clock
        self._seed_source = seed_source
        self._submit_max_retries = max(1, submit_max_retries)
        self._submit_backoff_base = submit_backoff_base
        self._sleep = sleep

        self._locks_guard = threading.Lock()
        self._locks: Dict[str, _LockEntry] = {}

    # ── 내부 헬퍼 ─────────────────────────────────────────────────────────────

    @contextmanager
    def _lock_for(self, attempt_id: str):
        """
        응시별 락. 락을 잡고 있거나 기다리는 호출이 없으면 레지스트리에서 지운다
        (존재하지 않는 ID나 끝난 응시의 락이 쌓이지 않도록).
        """
        with self._locks_guard:
            entry = self._locks.get(attempt_id)
            if entry is None:
                entry = self._locks[attempt_id] = _LockEntry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[attempt_id]

    def _load(self, attempt_id: str) -> Attempt:
        attempt = self.store.load(attempt_id)
        if attempt is None:
            raise NotFoundError(f"응시 정보를 찾을 수 없습니다: {attempt_id}")
        return attempt

    @staticmethod
    def _require(attempt: Attempt, allowed: Iterable[AttemptStatus], action: str) -> None:
        allowed = tuple(allowed)
        if attempt.status not in allowed:
            expected = ", ".join(s.value for s in allowed)
            raise InvalidTransitionError(
                f"{action}: 현재 상태({attempt.status.value})에서는 불가능합니다 (허용: {expected})."
            )

    def _claim_submission(self, attempt: Attempt) -> None:
        """제출 CAS의 비교 단계. 이미 제출된 응시면 AlreadySubmittedError."""
        if attempt.status == AttemptStatus.SUBMITTED:
            raise AlreadySubmittedError(attempt.id)
        self._require(attempt, [AttemptStatus.IN_PROGRESS], "제출")

    def _save_with_retry(self, attempt: Attempt, action: str) -> None:
        """제출처럼 유실되면 안 되는 쓰기. 지수 백오프로 재시도 후 실패하면 StorageError."""
        last_exception: Optional[StorageError] = None
        for n in range(1, self._submit_max_retries + 1):
            try:
                self.store.save(attempt)
                return
            except StorageError as e:
                last_exception = e
                if n < self._submit_max_retries:
                    wait = self._submit_backoff_base * (2 ** (n - 1))
                    logger.warning(f"{action} 저장 실패, {wait:.1f}초 후 재시도 ({n}/{self._submit_max_retries}): {e}")
                    self._sleep(wait)

        logger.error(f"{action} 저장 최종 실패: attempt={attempt.id} - {last_exception}")
        raise StorageError(
            f"{action} 결과를 저장하지 못했습니다. 잠시 후 다시 시도해 주세요."
        ) from last_exception

    def _version_of(self, attempt: Attempt) -> TestVersion:
        return self.catalog.get_test_version(attempt.version_id)

    @staticmethod
    def _submission_result(attempt: Attempt, already_submitted: bool) -> SubmissionResult:
        return SubmissionResult(
            attempt_id=attempt.id,
            auto_total=attempt.auto_total or 0.0,
            max_total=attempt.max_total or 0.0,
            submitted_at=attempt.submitted_at,
            submitted_by=attempt.submitted_by,
            already_submitted=already_submitted,
            per_question=attempt.per_question,
        )

    # ── 조회 ─────────────────────────────────────────────────────────────────

    def get_attempt(self, attempt_id: str) -> Attempt:
        return self._load(attempt_id)

    def get_version(self, attempt_id: str) -> TestVersion:
        return self._version_of(self._load(attempt_id))

    def get_layout(self, attempt_id: str) -> LayoutState:
        """응시자에게 보이는 순서. (version, seed)에서 매번 재생성."""
        attempt = self._load(attempt_id)
        return layout(self._version_of(attempt), attempt.layout_seed)

    def list_in_progress(self) -> List[Attempt]:
        return self.store.list_attempts(status=AttemptStatus.IN_PROGRESS)

    # ── 생명주기 ─────────────────────────────────────────────────────────────

    def create_attempt(self, test_id: str, version_id: str) -> Attempt:
        """새 응시 생성. 레이아웃 시드는 여기서 한 번 정해지고 바뀌지 않는다."""
        if not self.catalog.has_test(test_id):
            raise NotFoundError(f"시험을 찾을 수 없습니다: {test_id}")
        version = self.catalog.get_test_version(version_id)
        if version.test_id != test_id:
            raise NotFoundError(f"시험 {test_id}에 버전 {version_id}가 없습니다.")

        attempt = Attempt(
            test_id=test_id,
            version_id=version_id,
            layout_seed=self._seed_source(),
            created_at=self.clock(),
        )
        self.store.save(attempt)
        logger.info(f"응시 생성: attempt={attempt.id} test={test_id} version={version_id}")
        return attempt

    def begin_preflight(self, attempt_id: str) -> Attempt:
        with self._lock_for(attempt_id):
            attempt = self._load(attempt_id)
            if attempt.status == AttemptStatus.PREFLIGHT_PENDING:
                return attempt
            self._require(attempt, [AttemptStatus.CREATED], "사전 점검 시작")
            attempt.status = AttemptStatus.PREFLIGHT_PENDING
            self.store.save(attempt)
            return attempt

    def record_preflight(self, attempt_id: str, result: PreflightResult) -> Attempt:
        with self._lock_for(attempt_id):
            attempt = self._load(attempt_id)
            self._require(
                attempt,
                [AttemptStatus.CREATED, AttemptStatus.PREFLIGHT_PENDING],
                "사전 점검 기록",
            )
            attempt.preflight = result
            attempt.status = AttemptStatus.CANDIDATE_PENDING
            self.store.save(attempt)

        if not result.passed:
            logger.warning(f"사전 점검 미통과 상태로 진행: attempt={attempt_id}")
        return attempt

    def record_candidate_info(self, attempt_id: str, info: CandidateInfo) -> Attempt:
        """응시자 정보 저장 후 시험 시작 (started_at 기록)."""
        with self._lock_for(attempt_id):
            attempt = self._load(attempt_id)
            if attempt.preflight is None:
                raise InvalidTransitionError("사전 점검을 먼저 완료해야 합니다.")
            self._require(attempt, [AttemptStatus.CANDIDATE_PENDING], "응시자 정보 입력")

            name = (info.name or "").strip()
            grade_level = (info.grade or "").strip()
            missing = [
                label for label, ok in (
                    ("이름", bool(name)),
                    ("학제", info.system is not None),
                    ("학년", bool(grade_level)),
                ) if not ok
            ]
            if missing:
                raise InputValidationError(f"필수 응시자 정보가 비어 있습니다: {', '.join(missing)}")

            attempt.candidate = CandidateInfo(
                name=name,
                system=info.system,
                grade=grade_level,
                phone=(info.phone or "").strip() or None,
                note=(info.note or "").strip() or None,
            )
            attempt.status = AttemptStatus.IN_PROGRESS
            attempt.started_at = self.clock()
            self.store.save(attempt)

        logger.info(f"시험 시작: attempt={attempt_id}")
        return attempt

    def _check_deadline(self, attempt: Attempt, version: TestVersion) -> None:
        remaining = remaining_seconds(version.total_duration_seconds, attempt.started_at, self.clock())
        if remaining == 0:
            raise InvalidTransitionError("시험 시간이 종료되어 답안을 저장할 수 없습니다.")

    def record_answer(self, attempt_id: str, question_id: str, raw_answer: str) -> Attempt:
        """
        답안 upsert. 같은 문항은 덮어쓴다. 빈 문자열은 답안 삭제.
        MCQ 답안은 화면에 보인 보기 텍스트 그대로 저장한다.
        """
        with self._lock_for(attempt_id):
            attempt = self._load(attempt_id)
            self._require(attempt, [AttemptStatus.IN_PROGRESS], "답안 저장")
            version = self._version_of(attempt)

            question = version.find_question(question_id)
            if question is None:
                raise InputValidationError(f"이 시험에 없는 문항입니다: {question_id}")
            if not isinstance(raw_answer, str):
                raise InputValidationError("답안은 문자열이어야 합니다.")
            if raw_answer and question.type == QuestionType.MCQ and raw_answer not in question.choices:
                raise InputValidationError(f"문항 {question_id}의 보기에 없는 답안입니다.")
            self._check_deadline(attempt, version)

            if raw_answer:
                attempt.answers[question_id] = raw_answer
            else:
                attempt.answers.pop(question_id, None)
            self.store.save(attempt)
            return attempt

    def record_audio_answer(self, attempt_id: str, question_id: str, audio_ref: str) -> Attempt:
        """Speaking 문항 녹음 참조 저장. 내용은 엔진에 불투명하다."""
        with self._lock_for(attempt_id):
            attempt = self._load(attempt_id)
            self._require(attempt, [AttemptStatus.IN_PROGRESS], "녹음 답안 저장")
            version = self._version_of(attempt)

            question = version.find_question(question_id)
            if question is None:
                raise InputValidationError(f"이 시험에 없는 문항입니다: {question_id}")
            if question.type != QuestionType.SPEAKING:
                raise InputValidationError(f"녹음 답안은 Speaking 문항에만 저장할 수 있습니다: {question_id}")
            if not audio_ref or not audio_ref.strip():
                raise InputValidationError("녹음 파일 참조가 비어 있습니다.")
            self._check_deadline(attempt, version)

            attempt.audio_answers[question_id] = audio_ref.strip()
            attempt.answers[question_id] = RECORDED_MARKER
            self.store.save(attempt)
            return attempt

    def submit(self, attempt_id: str, trigger: SubmitTrigger = SubmitTrigger.MANUAL) -> SubmissionResult:
        """
        제출 + 채점. in_progress → submitted 비교 후 교환(CAS).

        이미 제출된 응시는 재채점 없이 저장된 결과를 그대로 돌려준다.
        수동 제출과 시간 만료 자동 제출이 경합해도 채점은 한 번만 일어난다.
        """
        with self._lock_for(attempt_id):
            attempt = self._load(attempt_id)
            try:
                self._claim_submission(attempt)
            except AlreadySubmittedError:
                logger.info(f"중복 제출 무시: attempt={attempt_id} trigger={trigger.value}")
                return self._submission_result(attempt, already_submitted=True)

            version = self._version_of(attempt)
            report = grade(version, attempt.answers)

            attempt.status = AttemptStatus.SUBMITTED
            attempt.review_status = ReviewStatus.PENDING
            attempt.submitted_at = self.clock()
            attempt.submitted_by = trigger
            attempt.auto_total = report.auto_total
            attempt.max_total = report.max_total
            attempt.final_total = report.auto_total
            attempt.per_question = report.per_question
            self._save_with_retry(attempt, "제출")

        logger.info(
            f"제출 완료: attempt={attempt_id} trigger={trigger.value} "
            f"점수={report.auto_total}/{report.max_total}"
        )
        return self._submission_result(attempt, already_submitted=False)

    def abandon(self, attempt_id: str) -> Attempt:
        with self._lock_for(attempt_id):
            attempt = self._load(attempt_id)
            self._require(attempt, [AttemptStatus.IN_PROGRESS], "응시 중단")
            attempt.status = AttemptStatus.ABANDONED
            attempt.abandoned_at = self.clock()
            self.store.save(attempt)

        logger.info(f"응시 중단: attempt={attempt_id}")
        return attempt

    # ── 채점자 검토 ──────────────────────────────────────────────────────────

    def review_attempt(self, attempt_id: str, human_scores: Mapping[str, float]) -> Attempt:
        """
        수동 채점 반영. 최종 점수 = 자동 + 수동, [0, 만점] 범위 밖이면 InputValidationError.
        다시 호출하면 이전 검토를 덮어쓴다.
        """
        with self._lock_for(attempt_id):
            attempt = self._load(attempt_id)
            self._require(attempt, [AttemptStatus.SUBMITTED], "채점 검토")

            report = GradeReport(
                auto_total=attempt.auto_total or 0.0,
                max_total=attempt.max_total or 0.0,
                per_question=attempt.per_question,
            )
            human_total = validate_human_scores(report, human_scores)
            total = final_score(report.auto_total, human_total, report.max_total)

            attempt.human_scores = dict(human_scores)
            attempt.human_total = human_total
            attempt.final_total = total
            attempt.review_status = ReviewStatus.COMPLETED
            self._save_with_retry(attempt, "채점 검토")

        logger.info(f"채점 검토 완료: attempt={attempt_id} 최종={total}/{report.max_total}")
        return attempt

    def get_result(self, attempt_id: str) -> AttemptResult:
        attempt = self._load(attempt_id)
        self._require(attempt, [AttemptStatus.SUBMITTED], "결과 조회")
        version = self._version_of(attempt)
        report = GradeReport(
            auto_total=attempt.auto_total or 0.0,
            max_total=attempt.max_total or 0.0,
            per_question=attempt.per_question,
        )
        return AttemptResult(
            attempt_id=attempt.id,
            status=attempt.status,
            review_status=attempt.review_status,
            auto_total=report.auto_total,
            max_total=report.max_total,
            human_total=attempt.human_total,
            final_total=attempt.final_total,
            per_question=report.per_question,
            section_scores=calculate_section_scores(version, report),
            incorrect_question_ids=get_incorrect_questions(report),
            pending_review_ids=report.pending_review_ids,
            violation_count=attempt.violation_count,
            warning_issued=attempt.warning_active,
        )

    # ── 정답 키 정정 / 재채점 ────────────────────────────────────────────────

    def regrade_version(self, version_id: str) -> RegradeSummary:
        """
        버전의 모든 제출 응시를 현재 정답 키로 재채점한다.
        바뀌는 것은 auto_total, per_question, final_total 뿐이며 답안과 시드는 그대로다.
        """
        version = self.catalog.get_test_version(version_id)
        summary = RegradeSummary(version_id=version_id)

        # 제출된 응시만 고르지 않는다: 제출 저장 중인 응시는 아직 in_progress로 보이므로
        # 락을 기다렸다가 다시 읽어 판단한다
        for candidate in self.store.list_attempts(version_id=version_id):
            if candidate.status not in (AttemptStatus.IN_PROGRESS, AttemptStatus.SUBMITTED):
                continue
            with self._lock_for(candidate.id):
                attempt = self._load(candidate.id)
                if attempt.status != AttemptStatus.SUBMITTED:
                    continue
                summary.examined += 1

                report = grade(version, attempt.answers)
                if report.auto_total == attempt.auto_total and report.per_question == attempt.per_question:
                    continue

                attempt.auto_total = report.auto_total
                attempt.per_question = report.per_question
                attempt.final_total = report.auto_total + (attempt.human_total or 0.0)
                self._save_with_retry(attempt, "재채점")

            summary.updated += 1
            summary.updated_attempt_ids.append(attempt.id)

        logger.info(f"재채점 완료: version={version_id} 대상={summary.examined} 변경={summary.updated}")
        return summary

    def correct_answer_key(self, version_id: str, question_id: str,
                           new_answer: Union[str, List[str]]) -> RegradeSummary:
        """Short 문항 정답(또는 허용 정답 리스트) 정정 → 버전 전체 재채점."""
        self.catalog.amend_short_answer(version_id, question_id, new_answer)
        return self.regrade_version(version_id)

    # ── 단일 작성자 쓰기 (타이머/감시 모듈 전용) ─────────────────────────────

    def update_attempt(
        self,
        attempt_id: str,
        mutator: Callable[[Attempt], bool],
        critical: bool = False,
    ) -> Optional[Attempt]:
        """
        응시 락 안에서 mutator(attempt)를 적용하고 저장한다.

        mutator가 False를 반환하면 저장하지 않는다.
        critical=False이면 저장소 오류를 로그로 남기고 None을 반환한다
        (체크포인트, 이탈 기록처럼 유실돼도 시험 진행을 막으면 안 되는 쓰기).
        """
        with self._lock_for(attempt_id):
            try:
                attempt = self._load(attempt_id)
                if not mutator(attempt):
                    return attempt
                if critical:
                    self._save_with_retry(attempt, "응시 갱신")
                else:
                    self.store.save(attempt)
                return attempt
            except StorageError as e:
                if critical:
                    raise
                logger.warning(f"부가 기록 저장 실패 (무시): attempt={attempt_id} - {e}")
                return None
