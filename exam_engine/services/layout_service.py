"""
services/layout_service.py

시드 기반 레이아웃 생성기. 순수 함수, 전역 상태 변경 없음.

같은 (version, seed)에 대해 항상 같은 순서를 돌려준다.
재개한 응시자가 처음과 같은 문항 순서를 보고, 채점기가 표시 순서와 무관하게
답안을 정규 문항으로 되돌릴 수 있는 근거가 된다.

섹션 순서 / 섹션별 문항 순서 / MCQ별 보기 순서는 각각 시드에서 파생된
독립 난수 스트림으로 섞는다 (순열 간 상관 방지).
"""

import random
from typing import List

from config import PREVIEW_SEED
from exam_engine.models.layout_state import LaidOutQuestion, LaidOutSection, LayoutState
from exam_engine.models.question_model import Question, QuestionType, TestVersion


def _substream(seed: int, *parts: object) -> random.Random:
    """
    시드에서 파생된 하위 난수 스트림.
    문자열 시드는 SHA-512로 정수화되므로 PYTHONHASHSEED와 무관하게 결정적이다.
    """
    key = ":".join([str(seed), *(str(p) for p in parts)])
    return random.Random(key)


def _permutation(rng: random.Random, n: int) -> List[int]:
    order = list(range(n))
    rng.shuffle(order)  # Fisher–Yates
    return order


def _lay_out_question(question: Question, canonical_index: int, section_id: str,
                      seed: int, shuffle_choices: bool) -> LaidOutQuestion:
    if question.type != QuestionType.MCQ:
        return LaidOutQuestion(
            question_id=question.id,
            section_id=section_id,
            type=question.type.value,
            prompt=question.prompt,
            points=question.points,
            canonical_index=canonical_index,
        )

    n = len(question.choices)
    if shuffle_choices:
        order = _permutation(_substream(seed, "choices", question.id), n)
    else:
        order = list(range(n))

    return LaidOutQuestion(
        question_id=question.id,
        section_id=section_id,
        type=question.type.value,
        prompt=question.prompt,
        points=question.points,
        canonical_index=canonical_index,
        choices=[question.choices[i] for i in order],
        choice_order=order,
        # 정답 인덱스를 새 위치로 재매핑
        answer_display_index=order.index(question.answer),
    )


def layout(version: TestVersion, seed: int) -> LayoutState:
    """
    (version, seed) → LayoutState.

    실패하지 않는다. 섹션이 없는 버전은 빈 레이아웃을 반환한다.
    """
    opts = version.options
    sections = version.sections

    if opts.shuffle_sections:
        section_order = _permutation(_substream(seed, "sections"), len(sections))
    else:
        section_order = list(range(len(sections)))

    laid_out: List[LaidOutSection] = []
    for s_idx in section_order:
        section = sections[s_idx]
        if opts.shuffle_questions:
            q_order = _permutation(_substream(seed, "questions", section.id), len(section.questions))
        else:
            q_order = list(range(len(section.questions)))

        laid_out.append(LaidOutSection(
            section_id=section.id,
            label=section.label,
            canonical_index=s_idx,
            time_limit_minutes=section.time_limit_minutes,
            questions=[
                _lay_out_question(section.questions[q_idx], q_idx, section.id, seed, opts.shuffle_choices)
                for q_idx in q_order
            ],
        ))

    return LayoutState(version_id=version.id, seed=seed, sections=laid_out)


def preview_layout(version: TestVersion) -> LayoutState:
    """출제자 미리보기용 고정 시드 레이아웃 (저장하지 않음)."""
    return layout(version, PREVIEW_SEED)
