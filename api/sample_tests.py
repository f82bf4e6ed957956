"""
api/sample_tests.py — CATALOG_FILE 없이 실행할 때 쓰는 샘플 시험
"""

from exam_engine.models.question_model import ExamOptions, Question, Section, TestVersion

SAMPLE_VERSIONS = [
    TestVersion(
        id="placement-v1",
        test_id="placement",
        name="영어 배치고사 (샘플)",
        options=ExamOptions(lockdown_mode=True),
        sections=[
            Section(
                id="reading",
                label="Reading",
                time_limit_minutes=20,
                questions=[
                    Question(
                        id="r1",
                        type="MCQ",
                        prompt="Choose the word that best completes the sentence: She ___ to school every day.",
                        choices=["go", "goes", "going", "gone"],
                        answer=1,
                        points=2,
                    ),
                    Question(
                        id="r2",
                        type="MCQ",
                        prompt="Which word is a synonym of 'rapid'?",
                        choices=["slow", "quick", "late", "heavy"],
                        answer=1,
                        points=2,
                    ),
                    Question(
                        id="r3",
                        type="Short",
                        prompt="What is the capital of France?",
                        answer="Paris",
                        points=3,
                    ),
                ],
            ),
            Section(
                id="speaking",
                label="Speaking",
                time_limit_minutes=10,
                questions=[
                    Question(
                        id="s1",
                        type="Speaking",
                        prompt="Introduce yourself in three sentences.",
                        points=4,
                    ),
                ],
            ),
        ],
    ),
]
