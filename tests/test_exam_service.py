import pytest

from exam_engine.errors import InputValidationError
from exam_engine.models.question_model import Question, Section, TestVersion
from exam_engine.models.session_state import ScoreStatus
from exam_engine.services.exam_service import (
    calculate_section_scores,
    final_score,
    get_incorrect_questions,
    grade,
    normalize_short_answer,
    validate_human_scores,
)


def test_all_correct(version):
    report = grade(version, {"q1": "2", "q2": "blue", "q3": "Paris"})
    assert report.auto_total == 7
    assert report.max_total == 11
    assert report.pending_review_ids == ["q4"]


def test_short_answer_normalization(version):
    report = grade(version, {"q3": "  PARIS \n"})
    assert report.score_for("q3").status == ScoreStatus.CORRECT
    assert normalize_short_answer("  Straße ") == normalize_short_answer("STRASSE")


def test_wrong_and_unanswered(version):
    report = grade(version, {"q1": "3", "q3": ""})
    assert report.auto_total == 0
    assert report.score_for("q1").status == ScoreStatus.INCORRECT
    assert report.score_for("q2").status == ScoreStatus.UNANSWERED
    assert report.score_for("q3").status == ScoreStatus.UNANSWERED
    assert get_incorrect_questions(report) == ["q1", "q2", "q3"]


def test_speaking_is_pending_even_if_answered(version):
    report = grade(version, {"q4": "recorded"})
    qs = report.score_for("q4")
    assert qs.status == ScoreStatus.PENDING_REVIEW
    assert qs.awarded == 0


def test_unknown_choice_text_is_incorrect(version):
    report = grade(version, {"q1": "two"})
    assert report.score_for("q1").status == ScoreStatus.INCORRECT


def test_empty_version_scores_zero():
    report = grade(TestVersion(id="e", test_id="t"), {})
    assert (report.auto_total, report.max_total) == (0, 0)


def test_grading_is_repeatable(version):
    answers = {"q1": "2", "q2": "red", "q3": "paris"}
    assert grade(version, answers) == grade(version, answers)


def test_section_scores(version):
    report = grade(version, {"q1": "2", "q2": "red"})
    sections = calculate_section_scores(version, report)
    assert [s["section_id"] for s in sections] == ["A", "B"]
    reading = sections[0]
    assert reading["total"] == 3
    assert reading["correct"] == 1
    assert reading["incorrect"] == 1
    assert reading["unanswered"] == 1
    assert reading["awarded"] == 2
    assert reading["max_points"] == 7
    assert sections[1]["pending_review"] == 1


class TestHumanScores:
    def test_valid(self, version):
        report = grade(version, {})
        assert validate_human_scores(report, {"q4": 3.5}) == 3.5

    def test_rejects_auto_graded_question(self, version):
        report = grade(version, {})
        with pytest.raises(InputValidationError):
            validate_human_scores(report, {"q1": 1})

    def test_rejects_out_of_range(self, version):
        report = grade(version, {})
        with pytest.raises(InputValidationError):
            validate_human_scores(report, {"q4": 5})
        with pytest.raises(InputValidationError):
            validate_human_scores(report, {"q4": -1})

    def test_rejects_unknown_question(self, version):
        report = grade(version, {})
        with pytest.raises(InputValidationError):
            validate_human_scores(report, {"nope": 1})

    def test_final_score_bounds(self):
        assert final_score(7, 4, 11) == 11
        with pytest.raises(InputValidationError):
            final_score(7, 5, 11)


def test_short_answer_accepts_any_listed_answer():
    version = TestVersion(
        id="alt",
        test_id="t",
        sections=[Section(id="s", questions=[
            Question(id="cap", type="Short", answer=["Seoul", " 서울 "], points=2),
        ])],
    )
    assert grade(version, {"cap": "서울"}).auto_total == 2
    assert grade(version, {"cap": " SEOUL"}).auto_total == 2
    assert grade(version, {"cap": "Busan"}).score_for("cap").status == ScoreStatus.INCORRECT
