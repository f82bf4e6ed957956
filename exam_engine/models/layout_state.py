"""
models/layout_state.py

시드로 섞인 표시용 레이아웃. 저장되지 않으며 (version, seed)로 언제든 재생성된다.

표시 위치 → 정규(canonical) 위치 매핑을 명시적으로 보관하므로
배열 인덱스가 우연히 일치하는 것에 기대지 않고 원래 문항/보기로 되돌릴 수 있다.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class LaidOutQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    question_id: str
    section_id: str
    type: str
    prompt: str = ""
    points: float = 0.0
    canonical_index: int = Field(..., description="섹션 안에서의 정규 순서 인덱스")
    choices: Optional[List[str]] = Field(default=None, description="표시 순서의 보기")
    choice_order: Optional[List[int]] = Field(
        default=None,
        description="표시 인덱스 i → 정규 보기 인덱스 choice_order[i]"
    )
    answer_display_index: Optional[int] = Field(
        default=None,
        description="표시 순서 기준 MCQ 정답 위치 (미리보기/검수용, 응시자에게 노출 금지)"
    )

    def canonical_choice_index(self, display_index: int) -> int:
        if self.choice_order is None:
            raise IndexError(f"{self.question_id}는 보기가 없는 문항입니다.")
        return self.choice_order[display_index]

    def public_dict(self) -> dict:
        """응시자 화면용: 정답 관련 정보 제외."""
        return self.model_dump(exclude={"answer_display_index", "choice_order", "canonical_index"})


class LaidOutSection(BaseModel):
    model_config = ConfigDict(frozen=True)

    section_id: str
    label: str = ""
    canonical_index: int
    time_limit_minutes: int = 0
    questions: List[LaidOutQuestion] = Field(default_factory=list)


class LayoutState(BaseModel):
    model_config = ConfigDict(frozen=True)

    version_id: str
    seed: int
    sections: List[LaidOutSection] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.sections

    @property
    def section_order(self) -> List[int]:
        """표시 순서 섹션 → 정규 섹션 인덱스."""
        return [s.canonical_index for s in self.sections]

    @property
    def question_orders(self) -> Dict[str, List[int]]:
        """{section_id: 표시 순서 문항 → 정규 문항 인덱스}."""
        return {s.section_id: [q.canonical_index for q in s.questions] for s in self.sections}

    @property
    def choice_orders(self) -> Dict[str, List[int]]:
        return {
            q.question_id: list(q.choice_order)
            for s in self.sections
            for q in s.questions
            if q.choice_order is not None
        }

    def question_at(self, section_index: int, question_index: int) -> Optional[LaidOutQuestion]:
        if not 0 <= section_index < len(self.sections):
            return None
        questions = self.sections[section_index].questions
        if not 0 <= question_index < len(questions):
            return None
        return questions[question_index]

    def find_question(self, question_id: str) -> Optional[LaidOutQuestion]:
        for s in self.sections:
            for q in s.questions:
                if q.question_id == question_id:
                    return q
        return None

    def question_count(self) -> int:
        return sum(len(s.questions) for s in self.sections)
