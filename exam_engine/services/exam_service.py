"""
services/exam_service.py

채점 엔진. 순수 Python 함수로 구성. 저장소 접근, 전역 상태 변경 없음.
항상 정규(섞이지 않은) 문항 순서를 기준으로 채점하므로
과거 응시에 대해 몇 번을 다시 돌려도 결과가 같다.
"""

from collections import defaultdict
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from exam_engine.errors import InputValidationError
from exam_engine.models.question_model import Question, QuestionType, TestVersion
from exam_engine.models.session_state import QuestionScore, ScoreStatus


class GradeReport(BaseModel):
    auto_total: float = 0.0
    max_total: float = 0.0
    per_question: List[QuestionScore] = Field(default_factory=list)

    def score_for(self, question_id: str) -> Optional[QuestionScore]:
        for qs in self.per_question:
            if qs.question_id == question_id:
                return qs
        return None

    @property
    def pending_review_ids(self) -> List[str]:
        return [qs.question_id for qs in self.per_question if qs.pending_review]


def normalize_short_answer(text: str) -> str:
    """앞뒤 공백 제거 후 casefold."""
    return text.strip().casefold()


def resolve_choice_index(question: Question, raw_answer: str) -> Optional[int]:
    """
    응시자가 고른 보기 텍스트 → 정규 보기 인덱스.
    표시 순서가 섞였어도 텍스트는 그대로이므로 원래 위치로 되돌릴 수 있다.
    보기에 없는 텍스트면 None.
    """
    try:
        return question.choices.index(raw_answer)
    except ValueError:
        return None


def grade_question(question: Question, section_id: str, raw_answer: Optional[str]) -> QuestionScore:
    """
    단일 문항 채점.

    - MCQ:      정규 정답 인덱스와 일치하면 만점, 아니면 0 (부분 점수 없음)
    - Short:    normalize_short_answer 후 허용 정답 중 하나와 완전 일치하면 만점, 아니면 0
    - Speaking: 자동 채점하지 않음 → 0점, pending_review
    - 미응답:   0점 (오류 아님)
    """
    base = dict(
        question_id=question.id,
        section_id=section_id,
        type=question.type.value,
        max_points=question.points,
    )

    if question.type == QuestionType.SPEAKING:
        return QuestionScore(status=ScoreStatus.PENDING_REVIEW, **base)

    if raw_answer is None or raw_answer == "":
        return QuestionScore(status=ScoreStatus.UNANSWERED, **base)

    if question.type == QuestionType.MCQ:
        correct = resolve_choice_index(question, raw_answer) == question.answer
    else:
        given = normalize_short_answer(raw_answer)
        correct = any(given == normalize_short_answer(a) for a in question.accepted_answers)

    if correct:
        return QuestionScore(status=ScoreStatus.CORRECT, awarded=question.points, **base)
    return QuestionScore(status=ScoreStatus.INCORRECT, **base)


def grade(version: TestVersion, answers: Mapping[str, str]) -> GradeReport:
    """
    답안지를 정답 키로 채점한다.

    Args:
        version: 정규 순서의 시험 버전 (레이아웃 적용 전).
        answers: {question.id: 답안 원문}

    Returns:
        GradeReport. max_total은 유형과 무관하게 전체 배점 합계.
        섹션이 없으면 0/0.
    """
    per_question: List[QuestionScore] = []
    auto_total = 0.0
    max_total = 0.0

    for section, q in version.iter_questions():
        qs = grade_question(q, section.id, answers.get(q.id))
        per_question.append(qs)
        auto_total += qs.awarded
        max_total += q.points

    return GradeReport(auto_total=auto_total, max_total=max_total, per_question=per_question)


def get_incorrect_questions(report: GradeReport) -> List[str]:
    """
    오답 문항 ID 리스트 (오답 노트용). 미응답 포함, 수동 채점 대상 제외.
    정규 순서 유지.
    """
    return [
        qs.question_id
        for qs in report.per_question
        if qs.status in (ScoreStatus.INCORRECT, ScoreStatus.UNANSWERED)
    ]


def calculate_section_scores(version: TestVersion, report: GradeReport) -> List[Dict[str, object]]:
    """
    섹션별 점수를 계산하여 반환한다.

    Returns:
        [{"section_id": str, "label": str, "total": int, "correct": int,
          "incorrect": int, "unanswered": int, "pending_review": int,
          "awarded": float, "max_points": float}, ...]
        정규 섹션 순서.
    """
    buckets: Dict[str, Dict[str, float]] = defaultdict(
        lambda: {"total": 0, "correct": 0, "incorrect": 0, "unanswered": 0,
                 "pending_review": 0, "awarded": 0.0, "max_points": 0.0}
    )

    for qs in report.per_question:
        b = buckets[qs.section_id]
        b["total"] += 1
        b[qs.status.value] += 1
        b["awarded"] += qs.awarded
        b["max_points"] += qs.max_points

    result = []
    for section in version.sections:
        b = buckets[section.id]
        result.append({"section_id": section.id, "label": section.label, **b})
    return result


def validate_human_scores(report: GradeReport, human_scores: Mapping[str, float]) -> float:
    """
    채점자 점수 검증 후 합계를 반환한다.

    수동 채점 대상(pending_review) 문항에만, 0 이상 배점 이하로 줄 수 있다.
    """
    total = 0.0
    for question_id, score in human_scores.items():
        qs = report.score_for(question_id)
        if qs is None:
            raise InputValidationError(f"존재하지 않는 문항입니다: {question_id}")
        if not qs.pending_review:
            raise InputValidationError(f"수동 채점 대상 문항이 아닙니다: {question_id}")
        if not 0 <= score <= qs.max_points:
            raise InputValidationError(
                f"문항 {question_id}의 점수({score})가 허용 범위(0 ~ {qs.max_points})를 벗어났습니다."
            )
        total += score
    return total


def final_score(auto_total: float, human_total: float, max_total: float) -> float:
    """
    최종 점수 = 자동 + 수동. [0, max_total] 밖이면 저장하지 않고 InputValidationError.
    """
    total = auto_total + human_total
    if not 0 <= total <= max_total:
        raise InputValidationError(
            f"최종 점수({total})가 허용 범위(0 ~ {max_total})를 벗어났습니다."
        )
    return total
