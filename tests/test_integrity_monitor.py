import pytest

from exam_engine.errors import NotFoundError
from exam_engine.models.question_model import ExamOptions
from exam_engine.models.session_state import AttemptStatus, ViolationKind
from exam_engine.services.integrity_monitor import IntegrityMonitor

from conftest import make_version


def test_warning_only_on_first_violation(monitor, start_attempt, clock):
    attempt = start_attempt()
    outcomes = []
    for kind in ("visibility_lost", "visibility_lost", "visibility_lost", "focus_lost"):
        clock.advance(1)
        outcomes.append(monitor.record_violation(attempt.id, kind))

    assert [o.warning_triggered for o in outcomes] == [True, False, False, False]
    assert all(o.recorded and o.warning_active for o in outcomes)

    stored = monitor.controller.get_attempt(attempt.id)
    assert len(stored.violations) == 4
    assert stored.violation_count == 4
    assert stored.warning_issued_at == stored.violations[0].at
    assert stored.status == AttemptStatus.IN_PROGRESS

    summary = monitor.summary(attempt.id)
    assert summary.by_kind == {"visibility_lost": 3, "focus_lost": 1}
    assert summary.first_at < summary.last_at
    assert not summary.log_truncated


def test_ignored_when_not_in_progress(monitor, controller):
    attempt = controller.create_attempt("t1", "v1")
    outcome = monitor.record_violation(attempt.id, ViolationKind.FOCUS_LOST)
    assert not outcome.recorded
    assert controller.get_attempt(attempt.id).violations == []


def test_ignored_after_submit(monitor, start_attempt):
    attempt = start_attempt()
    monitor.controller.submit(attempt.id)
    assert not monitor.record_violation(attempt.id, ViolationKind.FOCUS_LOST).recorded


def test_lockdown_requires_lockdown_mode(monitor, start_attempt, controller, catalog):
    attempt = start_attempt()
    assert not monitor.record_violation(attempt.id, ViolationKind.LOCKDOWN_VIOLATION).recorded

    catalog.add_version(make_version(version_id="locked", options=ExamOptions(lockdown_mode=True)))
    locked = start_attempt(version_id="locked")
    assert monitor.record_violation(locked.id, ViolationKind.LOCKDOWN_VIOLATION).recorded


def test_log_is_capped_but_count_keeps_growing(controller, start_attempt):
    monitor = IntegrityMonitor(controller, max_log=2)
    attempt = start_attempt()
    for _ in range(5):
        monitor.record_violation(attempt.id, ViolationKind.FOCUS_LOST)

    stored = controller.get_attempt(attempt.id)
    assert len(stored.violations) == 2
    assert stored.violation_count == 5
    assert monitor.summary(attempt.id).log_truncated


def test_debounce_merges_repeats(controller, start_attempt, clock):
    monitor = IntegrityMonitor(controller, debounce_seconds=1.0)
    attempt = start_attempt()
    assert monitor.record_violation(attempt.id, ViolationKind.FOCUS_LOST).recorded
    clock.advance(0.2)
    assert not monitor.record_violation(attempt.id, ViolationKind.FOCUS_LOST).recorded
    assert monitor.record_violation(attempt.id, ViolationKind.VISIBILITY_LOST).recorded
    clock.advance(2)
    assert monitor.record_violation(attempt.id, ViolationKind.VISIBILITY_LOST).recorded
    assert controller.get_attempt(attempt.id).violation_count == 3


def test_storage_failure_is_not_raised(monitor, start_attempt, store):
    attempt = start_attempt()
    store.fail_saves = 1
    outcome = monitor.record_violation(attempt.id, ViolationKind.FOCUS_LOST)
    assert not outcome.recorded
    assert not outcome.warning_triggered
    assert monitor.controller.get_attempt(attempt.id).violation_count == 0


def test_unknown_attempt(monitor):
    with pytest.raises(NotFoundError):
        monitor.record_violation("missing", ViolationKind.FOCUS_LOST)


def test_unknown_kind(monitor, start_attempt):
    attempt = start_attempt()
    with pytest.raises(ValueError):
        monitor.record_violation(attempt.id, "tab_switch")
