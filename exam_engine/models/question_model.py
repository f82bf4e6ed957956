"""
models/question_model.py

시험 버전(TestVersion) 모델: 섹션 > 문항 > 보기 순서의 정규(canonical) 구조.
Pydantic v2 적용. 세션 엔진에서는 읽기 전용(frozen)이며,
검증은 사용 시점이 아닌 버전 로딩 시점에 이루어진다.
"""

from enum import Enum
from typing import ClassVar, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class QuestionType(str, Enum):
    MCQ = "MCQ"
    SHORT = "Short"
    SPEAKING = "Speaking"


class Question(BaseModel):
    """
    단일 문항.

    answer 의미:
      - MCQ:      choices 안의 정답 인덱스 (0-based)
      - Short:    정답 문자열 또는 허용 정답 문자열 리스트
      - Speaking: 없음 (채점자가 수동 채점)
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="문항 고유 식별자")
    type: QuestionType = Field(..., description="문항 유형")
    prompt: str = Field(default="", description="발문")
    choices: Optional[List[str]] = Field(
        default=None,
        description="보기 리스트 (MCQ 전용)"
    )
    answer: Optional[Union[int, str, List[str]]] = Field(
        default=None,
        description="정답 (MCQ: 인덱스, Short: 문자열 또는 허용 정답 리스트, Speaking: 없음)"
    )
    points: float = Field(default=1.0, ge=0, description="배점")

    @model_validator(mode='after')
    def validate_answer_shape(self) -> 'Question':
        if self.type == QuestionType.MCQ:
            if not self.choices or len(self.choices) < 2:
                raise ValueError(f"MCQ 문항({self.id})의 보기는 최소 2개 이상이어야 합니다.")
            if len(set(self.choices)) != len(self.choices):
                # 답안은 보기 텍스트로 저장되므로 중복 보기는 채점을 모호하게 만든다
                raise ValueError(f"MCQ 문항({self.id})에 중복된 보기가 있습니다.")
            if not isinstance(self.answer, int) or isinstance(self.answer, bool):
                raise ValueError(f"MCQ 문항({self.id})의 정답은 보기 인덱스여야 합니다.")
            if not 0 <= self.answer < len(self.choices):
                raise ValueError(
                    f"MCQ 문항({self.id})의 정답 인덱스({self.answer})가 보기 범위를 벗어났습니다."
                )
        elif self.type == QuestionType.SHORT:
            if self.choices:
                raise ValueError(f"Short 문항({self.id})에는 보기가 없어야 합니다.")
            accepted = [self.answer] if isinstance(self.answer, str) else self.answer
            if not isinstance(accepted, list) or not accepted:
                raise ValueError(f"Short 문항({self.id})의 정답이 비어 있습니다.")
            if any(not isinstance(a, str) or not a.strip() for a in accepted):
                raise ValueError(f"Short 문항({self.id})의 정답 문자열이 비어 있습니다.")
        else:
            if self.choices or self.answer is not None:
                raise ValueError(f"Speaking 문항({self.id})에는 보기와 정답이 없어야 합니다.")
        return self

    @property
    def accepted_answers(self) -> Tuple[str, ...]:
        """Short 문항의 허용 정답들. 다른 유형은 빈 튜플."""
        if self.type != QuestionType.SHORT:
            return ()
        if isinstance(self.answer, str):
            return (self.answer,)
        return tuple(self.answer)

    @property
    def correct_choice(self) -> Optional[str]:
        """MCQ 정답 보기의 텍스트."""
        if self.type != QuestionType.MCQ:
            return None
        return self.choices[self.answer]


class ExamOptions(BaseModel):
    """
    버전 단위 응시 옵션.

    Attributes:
        shuffle_sections:  섹션 순서를 시드로 섞는다.
        shuffle_questions: 섹션 내부 문항 순서를 시드로 섞는다.
        shuffle_choices:   MCQ 보기 순서를 시드로 섞는다.
        allow_backtrack:   이전 문항으로 돌아가기 허용.
        lockdown_mode:     잠금 모드. 켜져 있을 때만 lockdown_violation을 기록한다.
    """
    model_config = ConfigDict(frozen=True)

    shuffle_sections: bool = True
    shuffle_questions: bool = True
    shuffle_choices: bool = True
    allow_backtrack: bool = True
    lockdown_mode: bool = False


class Section(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    label: str = ""
    time_limit_minutes: int = Field(default=0, ge=0, description="섹션 제한 시간 (분)")
    questions: List[Question] = Field(default_factory=list)


class TestVersion(BaseModel):
    """
    특정 시험의 한 버전. 외부에서 작성되며 세션 엔진에는 읽기 전용.
    """
    model_config = ConfigDict(frozen=True)
    __test__: ClassVar[bool] = False  # pytest 수집 대상 아님

    id: str = Field(..., min_length=1, description="버전 식별자")
    test_id: str = Field(..., min_length=1, description="소속 시험 식별자")
    name: str = ""
    options: ExamOptions = Field(default_factory=ExamOptions)
    sections: List[Section] = Field(default_factory=list)

    @field_validator('sections')
    @classmethod
    def validate_unique_question_ids(cls, v: List[Section]) -> List[Section]:
        seen = set()
        for section in v:
            for q in section.questions:
                if q.id in seen:
                    raise ValueError(f"문항 ID가 중복되었습니다: {q.id}")
                seen.add(q.id)
        return v

    @property
    def total_duration_seconds(self) -> int:
        """섹션 제한 시간 합계 (초). 0이면 시간 제한 없음."""
        return sum(s.time_limit_minutes for s in self.sections) * 60

    def iter_questions(self):
        """정규 순서대로 (섹션, 문항) 쌍을 순회."""
        for section in self.sections:
            for q in section.questions:
                yield section, q

    def find_question(self, question_id: str) -> Optional[Question]:
        for _, q in self.iter_questions():
            if q.id == question_id:
                return q
        return None
