"""
공용 픽스처: 가짜 시계, 메모리 카탈로그/저장소, 컨트롤러/타이머/감시기.
"""

import pytest

from exam_engine.errors import StorageError
from exam_engine.models.question_model import ExamOptions, Question, Section, TestVersion
from exam_engine.models.session_state import CandidateInfo, GradingSystem, PreflightResult
from exam_engine.services.integrity_monitor import IntegrityMonitor
from exam_engine.services.session_controller import SessionController
from exam_engine.services.session_store import MemorySessionStore
from exam_engine.services.test_catalog import InMemoryTestCatalog
from exam_engine.services.timer_service import TimerCoordinator

T0 = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyStore(MemorySessionStore):
    """save()가 fail_saves번 실패한 뒤 정상 동작하는 저장소."""

    def __init__(self):
        super().__init__()
        self.fail_saves = 0
        self.save_calls = 0

    def save(self, attempt):
        self.save_calls += 1
        if self.fail_saves > 0:
            self.fail_saves -= 1
            raise StorageError("저장소 사용 불가")
        super().save(attempt)


def make_version(version_id="v1", test_id="t1", options=None, minutes=(20, 10)):
    """MCQ 2문항 + Short 1문항 섹션, Speaking 1문항 섹션."""
    return TestVersion(
        id=version_id,
        test_id=test_id,
        name="테스트 시험",
        options=options or ExamOptions(),
        sections=[
            Section(
                id="A",
                label="Reading",
                time_limit_minutes=minutes[0],
                questions=[
                    Question(id="q1", type="MCQ", prompt="1+1?", choices=["1", "2", "3", "4"], answer=1, points=2),
                    Question(id="q2", type="MCQ", prompt="Color of sky?",
                             choices=["red", "blue", "green"], answer=1, points=2),
                    Question(id="q3", type="Short", prompt="Capital of France?", answer="Paris", points=3),
                ],
            ),
            Section(
                id="B",
                label="Speaking",
                time_limit_minutes=minutes[1],
                questions=[
                    Question(id="q4", type="Speaking", prompt="Introduce yourself.", points=4),
                ],
            ),
        ],
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def version():
    return make_version()


@pytest.fixture
def catalog(version):
    return InMemoryTestCatalog([version])


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def controller(catalog, store, clock, sleeps):
    return SessionController(
        catalog,
        store,
        clock=clock,
        seed_source=lambda: 42,
        sleep=sleeps.append,
    )


@pytest.fixture
def timer(controller):
    return TimerCoordinator(controller, interval=0.01)


@pytest.fixture
def monitor(controller):
    return IntegrityMonitor(controller)


def passing_preflight(at: float = T0) -> PreflightResult:
    return PreflightResult(mic=True, record=True, play=True, down_kbps=1000, up_kbps=500, checked_at=at)


def candidate() -> CandidateInfo:
    return CandidateInfo(name="홍길동", system=GradingSystem.KR, grade="고2")


@pytest.fixture
def start_attempt(controller):
    """created → in_progress 까지 진행한 응시를 만든다."""

    def _start(test_id="t1", version_id="v1"):
        attempt = controller.create_attempt(test_id, version_id)
        controller.begin_preflight(attempt.id)
        controller.record_preflight(attempt.id, passing_preflight())
        return controller.record_candidate_info(attempt.id, candidate())

    return _start
