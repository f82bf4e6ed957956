from exam_engine.models.question_model import ExamOptions, Question, Section, TestVersion
from exam_engine.services.layout_service import layout, preview_layout

from conftest import make_version


def _big_version(options=None):
    sections = []
    for s in range(4):
        questions = [
            Question(
                id=f"s{s}q{i}",
                type="MCQ",
                prompt=f"문항 {s}-{i}",
                choices=[f"c{j}" for j in range(5)],
                answer=i % 5,
            )
            for i in range(6)
        ]
        sections.append(Section(id=f"s{s}", label=f"섹션 {s}", time_limit_minutes=5, questions=questions))
    return TestVersion(id="big", test_id="t", options=options or ExamOptions(), sections=sections)


class TestDeterminism:
    def test_same_seed_same_layout(self):
        version = _big_version()
        assert layout(version, 7) == layout(version, 7)

    def test_orders_are_permutations(self):
        version = _big_version()
        laid_out = layout(version, 99)
        assert sorted(laid_out.section_order) == [0, 1, 2, 3]
        for order in laid_out.question_orders.values():
            assert sorted(order) == list(range(6))
        for order in laid_out.choice_orders.values():
            assert sorted(order) == list(range(5))

    def test_different_seeds_usually_differ(self):
        version = _big_version()
        layouts = {tuple(layout(version, seed).section_order) for seed in range(20)}
        assert len(layouts) > 1

    def test_preview_uses_fixed_seed(self):
        version = _big_version()
        assert preview_layout(version) == preview_layout(version)


class TestOptions:
    def test_no_shuffle_keeps_canonical_order(self):
        version = _big_version(ExamOptions(shuffle_sections=False, shuffle_questions=False, shuffle_choices=False))
        laid_out = layout(version, 123)
        assert laid_out.section_order == [0, 1, 2, 3]
        assert all(order == list(range(6)) for order in laid_out.question_orders.values())
        assert all(order == list(range(5)) for order in laid_out.choice_orders.values())

    def test_only_choices_shuffled(self):
        version = _big_version(ExamOptions(shuffle_sections=False, shuffle_questions=False))
        laid_out = layout(version, 5)
        assert laid_out.section_order == [0, 1, 2, 3]
        assert any(order != list(range(5)) for order in laid_out.choice_orders.values())

    def test_non_mcq_has_no_choice_order(self):
        laid_out = layout(make_version(), 42)
        short = laid_out.find_question("q3")
        speaking = laid_out.find_question("q4")
        assert short.choice_order is None and short.choices is None
        assert speaking.choice_order is None


class TestAnswerRemapping:
    def test_display_index_points_to_canonical_answer(self):
        version = _big_version()
        for seed in (1, 42, 1000):
            laid_out = layout(version, seed)
            for section in laid_out.sections:
                for q in section.questions:
                    canonical = version.find_question(q.question_id)
                    assert q.choices[q.answer_display_index] == canonical.correct_choice
                    assert q.canonical_choice_index(q.answer_display_index) == canonical.answer

    def test_public_dict_hides_answer(self):
        q = layout(make_version(), 42).find_question("q1")
        public = q.public_dict()
        assert "answer_display_index" not in public
        assert "choice_order" not in public
        assert public["choices"] == q.choices


class TestEdgeCases:
    def test_empty_version(self):
        version = TestVersion(id="empty", test_id="t")
        laid_out = layout(version, 1)
        assert laid_out.is_empty
        assert laid_out.question_count() == 0

    def test_single_item_section(self):
        version = TestVersion(
            id="one",
            test_id="t",
            sections=[Section(id="s", questions=[Question(id="x", type="Short", answer="a")])],
        )
        laid_out = layout(version, 3)
        assert laid_out.section_order == [0]
        assert laid_out.question_orders == {"s": [0]}

    def test_question_at_out_of_range(self):
        laid_out = layout(make_version(), 42)
        assert laid_out.question_at(5, 0) is None
        assert laid_out.question_at(0, 99) is None
        assert laid_out.question_at(-1, 0) is None
