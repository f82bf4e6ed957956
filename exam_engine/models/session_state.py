"""
models/session_state.py

응시(Attempt) 상태 모델: 시작부터 제출·채점까지 한 응시자의 OMR 카드.
Pydantic BaseModel 기반으로 세션 저장소에 그대로 직렬화/역직렬화된다.
UI 코드 없음.
"""

import time
import uuid
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class AttemptStatus(str, Enum):
    CREATED = "created"
    PREFLIGHT_PENDING = "preflight_pending"
    CANDIDATE_PENDING = "candidate_pending"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    ABANDONED = "abandoned"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class SubmitTrigger(str, Enum):
    MANUAL = "manual"
    TIMEOUT = "timeout"


class ViolationKind(str, Enum):
    FOCUS_LOST = "focus_lost"
    VISIBILITY_LOST = "visibility_lost"
    LOCKDOWN_VIOLATION = "lockdown_violation"


class GradingSystem(str, Enum):
    KR = "KR"
    US = "US"
    UK = "UK"


class ScoreStatus(str, Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    UNANSWERED = "unanswered"
    PENDING_REVIEW = "pending_review"


class CandidateInfo(BaseModel):
    """응시자 정보. 필수 항목(이름, 학제, 학년)의 공란 검증은 컨트롤러가 한다."""

    name: str = ""
    system: Optional[GradingSystem] = None
    grade: str = ""
    phone: Optional[str] = None
    note: Optional[str] = None


class PreflightResult(BaseModel):
    """기기/네트워크 사전 점검 결과."""

    mic: bool = False
    record: bool = False
    play: bool = False
    down_kbps: float = Field(default=0.0, ge=0)
    up_kbps: float = Field(default=0.0, ge=0)
    checked_at: float = Field(default_factory=time.time)

    @property
    def passed(self) -> bool:
        return self.mic and self.record and self.play and self.down_kbps > 0


class ResumeCheckpoint(BaseModel):
    """재개 지점. 표시 순서(레이아웃) 기준 인덱스."""

    section_index: int = Field(default=0, ge=0)
    question_index: int = Field(default=0, ge=0)
    remaining_seconds: Optional[int] = Field(
        default=None,
        description="저장 시점의 남은 시간 (초). 시간 제한이 없으면 None"
    )
    saved_at: float = Field(default_factory=time.time)


class ViolationRecord(BaseModel):
    at: float = Field(default_factory=time.time)
    kind: ViolationKind
    detail: Optional[str] = None


class QuestionScore(BaseModel):
    """문항 단위 채점 결과."""

    question_id: str
    section_id: str
    type: str
    status: ScoreStatus
    awarded: float = 0.0
    max_points: float = 0.0

    @property
    def pending_review(self) -> bool:
        return self.status == ScoreStatus.PENDING_REVIEW


class Attempt(BaseModel):
    """
    한 응시자가 한 시험 버전을 치르는 단위.

    Attributes:
        status:          created → preflight_pending → candidate_pending
                         → in_progress → submitted | abandoned (역행 없음).
        layout_seed:     생성 시 고정되는 레이아웃 시드.
        answers:         {question.id: 답안 원문}. MCQ는 선택한 보기 텍스트.
        audio_answers:   {question.id: 녹음 파일 참조} (Speaking 문항).
        violations:      이탈 기록 (추가 전용, 최대 길이 제한).
        violation_count: 누적 이탈 횟수. 로그 길이 제한과 무관하게 계속 증가한다.
        auto_total / human_total / final_total / max_total: 자동/수동/최종/만점.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    test_id: str
    version_id: str
    layout_seed: int
    status: AttemptStatus = AttemptStatus.CREATED
    review_status: Optional[ReviewStatus] = None
    candidate: Optional[CandidateInfo] = None
    preflight: Optional[PreflightResult] = None
    resume: Optional[ResumeCheckpoint] = None

    created_at: float = Field(default_factory=time.time)
    started_at: Optional[float] = None
    submitted_at: Optional[float] = None
    submitted_by: Optional[SubmitTrigger] = None
    abandoned_at: Optional[float] = None

    answers: Dict[str, str] = Field(default_factory=dict)
    audio_answers: Dict[str, str] = Field(default_factory=dict)

    violations: List[ViolationRecord] = Field(default_factory=list)
    violation_count: int = Field(default=0, ge=0)
    warning_issued_at: Optional[float] = None

    auto_total: Optional[float] = None
    max_total: Optional[float] = None
    human_scores: Dict[str, float] = Field(default_factory=dict)
    human_total: Optional[float] = None
    final_total: Optional[float] = None
    per_question: List[QuestionScore] = Field(default_factory=list)

    @field_validator('layout_seed')
    @classmethod
    def validate_seed(cls, v: int) -> int:
        if v < 0:
            raise ValueError("레이아웃 시드는 음수일 수 없습니다.")
        return v

    @property
    def is_in_progress(self) -> bool:
        return self.status == AttemptStatus.IN_PROGRESS

    @property
    def is_submitted(self) -> bool:
        return self.status == AttemptStatus.SUBMITTED

    @property
    def warning_active(self) -> bool:
        return self.warning_issued_at is not None
