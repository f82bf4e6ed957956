"""
api/routes.py — FastAPI 엔드포인트

응시자 화면(답안 제출, 이동, 재개, 이탈 신호)과 채점 화면(결과, 수동 채점,
정답 키 정정)이 호출하는 경계. 엔진 오류는 app.py의 핸들러가 HTTP 코드로 바꾼다.
엔진 호출은 락/재시도 대기를 포함하므로 동기 함수로 두어 스레드풀에서 실행된다.
"""

from typing import Dict, List, Optional, Union

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from api.engine import Engine
from exam_engine.models.session_state import (
    Attempt,
    CandidateInfo,
    GradingSystem,
    PreflightResult,
    ViolationKind,
)
from exam_engine.services.layout_service import preview_layout

router = APIRouter(prefix="/api")

# ── Pydantic request bodies ──────────────────────────────────────────────────

class CreateAttemptBody(BaseModel):
    test_id: str
    version_id: str

class PreflightBody(BaseModel):
    mic: bool = False
    record: bool = False
    play: bool = False
    down_kbps: float = Field(default=0.0, ge=0)
    up_kbps: float = Field(default=0.0, ge=0)

class CandidateBody(BaseModel):
    name: str = ""
    system: Optional[GradingSystem] = None
    grade: str = ""
    phone: Optional[str] = None
    note: Optional[str] = None

class SaveAnswerBody(BaseModel):
    question_id: str
    answer: str

class AudioAnswerBody(BaseModel):
    question_id: str
    audio_ref: str

class NavigateBody(BaseModel):
    section_index: int = Field(default=0, ge=0)
    question_index: int = Field(default=0, ge=0)

class ViolationBody(BaseModel):
    kind: ViolationKind
    detail: Optional[str] = Field(default=None, max_length=255)

class ReviewBody(BaseModel):
    scores: Dict[str, float] = Field(default_factory=dict)

class AnswerKeyBody(BaseModel):
    question_id: str
    answer: Union[str, List[str]]


# ── 헬퍼 ─────────────────────────────────────────────────────────────────────

def _engine(request: Request) -> Engine:
    return request.app.state.engine


def _attempt_to_dict(attempt: Attempt) -> dict:
    """응시자에게 보여도 되는 필드만. 이탈 횟수와 점수 상세는 채점 화면 전용."""
    return {
        "id": attempt.id,
        "test_id": attempt.test_id,
        "version_id": attempt.version_id,
        "status": attempt.status.value,
        "review_status": attempt.review_status.value if attempt.review_status else None,
        "started_at": attempt.started_at,
        "submitted_at": attempt.submitted_at,
        "answers": dict(attempt.answers),
        "answered_count": len(attempt.answers),
        "warning_active": attempt.warning_active,
        "preflight_passed": attempt.preflight.passed if attempt.preflight else None,
    }


# ── 응시 생명주기 ────────────────────────────────────────────────────────────

@router.post("/attempts")
def create_attempt(body: CreateAttemptBody, request: Request):
    attempt = _engine(request).controller.create_attempt(body.test_id, body.version_id)
    return _attempt_to_dict(attempt)


@router.get("/attempts/{attempt_id}")
def get_attempt(attempt_id: str, request: Request):
    return _attempt_to_dict(_engine(request).controller.get_attempt(attempt_id))


@router.post("/attempts/{attempt_id}/preflight/begin")
def begin_preflight(attempt_id: str, request: Request):
    return _attempt_to_dict(_engine(request).controller.begin_preflight(attempt_id))


@router.post("/attempts/{attempt_id}/preflight")
def record_preflight(attempt_id: str, body: PreflightBody, request: Request):
    engine = _engine(request)
    result = PreflightResult(**body.model_dump(), checked_at=engine.controller.clock())
    return _attempt_to_dict(engine.controller.record_preflight(attempt_id, result))


@router.post("/attempts/{attempt_id}/candidate")
def record_candidate(attempt_id: str, body: CandidateBody, request: Request):
    info = CandidateInfo(**body.model_dump())
    return _attempt_to_dict(_engine(request).controller.record_candidate_info(attempt_id, info))


@router.get("/attempts/{attempt_id}/layout")
def get_layout(attempt_id: str, request: Request):
    laid_out = _engine(request).controller.get_layout(attempt_id)
    return {
        "attempt_id": attempt_id,
        "sections": [
            {
                "section_id": s.section_id,
                "label": s.label,
                "time_limit_minutes": s.time_limit_minutes,
                "questions": [q.public_dict() for q in s.questions],
            }
            for s in laid_out.sections
        ],
        "total": laid_out.question_count(),
    }


@router.post("/attempts/{attempt_id}/answers")
def save_answer(attempt_id: str, body: SaveAnswerBody, request: Request):
    attempt = _engine(request).controller.record_answer(attempt_id, body.question_id, body.answer)
    return {"ok": True, "answered_count": len(attempt.answers)}


@router.post("/attempts/{attempt_id}/audio-answers")
def save_audio_answer(attempt_id: str, body: AudioAnswerBody, request: Request):
    attempt = _engine(request).controller.record_audio_answer(attempt_id, body.question_id, body.audio_ref)
    return {"ok": True, "answered_count": len(attempt.answers)}


@router.post("/attempts/{attempt_id}/navigate")
def navigate(attempt_id: str, body: NavigateBody, request: Request):
    cp = _engine(request).timer.navigate(attempt_id, body.section_index, body.question_index)
    # 체크포인트 저장 실패는 이동을 막지 않는다
    return {
        "ok": True,
        "section_index": body.section_index,
        "question_index": body.question_index,
        "checkpoint_saved": cp is not None,
        "remaining_seconds": cp.remaining_seconds if cp else None,
    }


@router.get("/attempts/{attempt_id}/resume")
def resume(attempt_id: str, request: Request):
    return _engine(request).timer.resume(attempt_id).model_dump()


@router.get("/attempts/{attempt_id}/timer")
def timer(attempt_id: str, request: Request):
    engine = _engine(request)
    engine.timer.tick(attempt_id)
    return engine.timer.snapshot(attempt_id).model_dump()


@router.post("/attempts/{attempt_id}/violations")
def record_violation(attempt_id: str, body: ViolationBody, request: Request):
    outcome = _engine(request).monitor.record_violation(attempt_id, body.kind, body.detail)
    # 응시자에게는 경고 여부만 알린다
    return {
        "recorded": outcome.recorded,
        "warning_triggered": outcome.warning_triggered,
        "warning_active": outcome.warning_active,
    }


@router.post("/attempts/{attempt_id}/submit")
def submit(attempt_id: str, request: Request):
    result = _engine(request).controller.submit(attempt_id)
    return {
        "ok": True,
        "already_submitted": result.already_submitted,
        "submitted_at": result.submitted_at,
    }


@router.post("/attempts/{attempt_id}/abandon")
def abandon(attempt_id: str, request: Request):
    return _attempt_to_dict(_engine(request).controller.abandon(attempt_id))


# ── 채점 화면 ────────────────────────────────────────────────────────────────

@router.get("/attempts/{attempt_id}/result")
def get_result(attempt_id: str, request: Request):
    return _engine(request).controller.get_result(attempt_id).model_dump(mode="json")


@router.get("/attempts/{attempt_id}/integrity")
def get_integrity(attempt_id: str, request: Request):
    return _engine(request).monitor.summary(attempt_id).model_dump()


@router.post("/attempts/{attempt_id}/review")
def review(attempt_id: str, body: ReviewBody, request: Request):
    attempt = _engine(request).controller.review_attempt(attempt_id, body.scores)
    return {
        "ok": True,
        "auto_total": attempt.auto_total,
        "human_total": attempt.human_total,
        "final_total": attempt.final_total,
        "max_total": attempt.max_total,
        "review_status": attempt.review_status.value,
    }


@router.post("/versions/{version_id}/answer-key")
def correct_answer_key(version_id: str, body: AnswerKeyBody, request: Request):
    summary = _engine(request).controller.correct_answer_key(version_id, body.question_id, body.answer)
    return summary.model_dump()


@router.post("/versions/{version_id}/regrade")
def regrade(version_id: str, request: Request):
    return _engine(request).controller.regrade_version(version_id).model_dump()


@router.get("/versions/{version_id}/preview")
def preview(version_id: str, request: Request):
    version = _engine(request).catalog.get_test_version(version_id)
    return preview_layout(version).model_dump()
