import asyncio
from datetime import timedelta

import pytest

from classroom.dependencies import ExamServices
from classroom.errors import ExamAlreadySubmitted, ExamNotAvailableYet, ExamStillRunning, PersistenceError
from classroom.services.finalizer import FinalizeState, SubmissionFinalizer, Trigger
from classroom.services.results import ResultCalculator
from classroom.services.session_registry import SessionRegistry
from classroom.storage import MemoryGateway

from conftest import T0, SlowGateway, drain, events, make_exam, run


def count_recomputes(results):
    calls = []
    original = results.recompute

    async def spy(*args, **kwargs):
        calls.append(args)
        return await original(*args, **kwargs)

    results.recompute = spy
    return calls


async def answer_all(services, gateway, exam, questions, options, student="student-1"):
    attempt = await gateway.get_or_create_student_exam(student, exam.id, services.now())
    for question, option in zip(questions, options):
        await gateway.upsert_answer(attempt.id, question.id, option)
    return attempt


def test_manual_submit_scores_and_builds_result(services, gateway, clock):
    async def scenario():
        exam, questions = await make_exam(gateway, title="Mid-exam")
        connection = services.registry.register("student-1")
        clock.set(T0 + timedelta(minutes=10))
        await answer_all(services, gateway, exam, questions, ["A", "B", "D"])

        outcome = await services.finalizer.finalize("student-1", exam.id, Trigger.MANUAL, connection=connection)

        assert outcome.status == "success"
        assert (outcome.score, outcome.max_score) == (2, 4)
        attempt = await gateway.find_student_exam("student-1", exam.id)
        assert attempt.submitted_at == T0 + timedelta(minutes=10)
        assert (attempt.score, attempt.max_score) == (2, 4)

        result = await gateway.find_result("student-1", "course-1")
        assert result.mid_exam_score == 50
        assert result.final_exam_score is None
        assert result.overall_score == 50
        assert result.grade == "F"
        assert result.is_visible_to_student is False

        submitted = events(drain(connection), "exam-submitted")
        assert submitted == [outcome.to_wire()]
        assert services.finalizer.state_of("student-1", exam.id) is FinalizeState.SUBMITTED

    run(scenario())


def test_submit_with_no_answers_creates_attempt(services, gateway, clock):
    async def scenario():
        exam, _ = await make_exam(gateway)
        clock.set(T0 + timedelta(minutes=1))

        outcome = await services.finalizer.finalize("student-9", exam.id, Trigger.MANUAL)

        assert (outcome.score, outcome.max_score) == (0, 4)
        assert list(gateway.student_exams) == [("student-9", exam.id)]
        assert gateway.student_exams[("student-9", exam.id)].submitted_at is not None

    run(scenario())


def test_concurrent_triggers_collapse_into_one(settings, clock):
    gateway = SlowGateway()

    async def scenario():
        services = ExamServices(settings, gateway, now=clock)
        recomputes = count_recomputes(services.results)
        exam, questions = await make_exam(gateway)
        connection = services.registry.register("student-1")
        services.registry.join_exam(connection, exam.id)
        clock.set(T0 + timedelta(minutes=30))
        stamps = []
        original_stamp = gateway.stamp_submitted

        async def counting_stamp(*args):
            stamps.append(args)
            return await original_stamp(*args)

        gateway.stamp_submitted = counting_stamp

        triggers = [Trigger.COUNTDOWN, Trigger.EXAM_ENDED, Trigger.MANUAL] * 4
        outcomes = await asyncio.gather(*[
            services.finalizer.finalize("student-1", exam.id, trigger) for trigger in triggers
        ], return_exceptions=True)

        refused = [o for o in outcomes if isinstance(o, ExamAlreadySubmitted)]
        assert len(refused) == triggers.count(Trigger.MANUAL)
        effective = [o for o in outcomes if not isinstance(o, Exception) and not o.duplicate]
        assert len(effective) == 1
        assert effective[0].status == "expired"
        assert len(stamps) == 1
        assert len(recomputes) == 1
        assert len(gateway.student_exams) == 1
        assert len(events(drain(connection), "exam-submitted")) == 1

    run(scenario())


def test_late_trigger_gets_previous_outcome(services, gateway, clock):
    async def scenario():
        exam, _ = await make_exam(gateway)
        clock.set(T0 + timedelta(minutes=30, seconds=2))

        first = await services.finalizer.finalize("student-1", exam.id, Trigger.EXAM_ENDED)
        again = await services.finalizer.finalize("student-1", exam.id, Trigger.COUNTDOWN)

        assert not first.duplicate
        assert again.duplicate
        assert again.status == first.status == "expired"

    run(scenario())


def test_stamp_in_storage_wins_across_processes(settings, gateway, clock):
    """Two finalizers over one store stand in for two server processes."""
    async def scenario():
        results = ResultCalculator(gateway, settings)
        recomputes = count_recomputes(results)
        first = SubmissionFinalizer(gateway, SessionRegistry(), results, settings, now=clock)
        second = SubmissionFinalizer(gateway, SessionRegistry(), results, settings, now=clock)
        third = SubmissionFinalizer(gateway, SessionRegistry(), results, settings, now=clock)

        exam, _ = await make_exam(gateway)
        clock.set(T0 + timedelta(minutes=31))

        a = await first.finalize("student-1", exam.id, Trigger.EXAM_ENDED)
        b = await second.finalize("student-1", exam.id, Trigger.EXAM_ENDED)

        assert a.status == "expired"
        assert b.status == "already_submitted"
        assert len(recomputes) == 1
        assert gateway.student_exams[("student-1", exam.id)].submitted_at == T0 + timedelta(minutes=31)

        with pytest.raises(ExamAlreadySubmitted):
            await third.finalize("student-1", exam.id, Trigger.MANUAL)
        assert third.state_of("student-1", exam.id) is FinalizeState.SUBMITTED

    run(scenario())


def test_countdown_before_server_time_is_up_is_refused(services, gateway, clock):
    async def scenario():
        exam, _ = await make_exam(gateway)
        clock.set(T0 + timedelta(minutes=10))

        with pytest.raises(ExamStillRunning):
            await services.finalizer.finalize("student-1", exam.id, Trigger.COUNTDOWN)
        assert services.finalizer.state_of("student-1", exam.id) is None
        assert gateway.student_exams == {}

        # Within the allowed clock skew of the end
        clock.set(T0 + timedelta(minutes=29, seconds=59))
        outcome = await services.finalizer.finalize("student-1", exam.id, Trigger.COUNTDOWN)
        assert outcome.status == "expired"

    run(scenario())


def test_pending_exam_cannot_be_submitted(services, gateway, clock):
    async def scenario():
        exam, _ = await make_exam(gateway)
        clock.set(T0 - timedelta(minutes=1))

        with pytest.raises(ExamNotAvailableYet):
            await services.finalizer.finalize("student-1", exam.id, Trigger.MANUAL)
        assert services.finalizer.state_of("student-1", exam.id) is None

    run(scenario())


def test_scoring_failure_after_stamp_is_not_retried(services, gateway, clock):
    async def scenario():
        exam, _ = await make_exam(gateway)
        clock.set(T0 + timedelta(minutes=5))
        calls = []

        async def broken(student_exam_id):
            calls.append(student_exam_id)
            raise RuntimeError("storage went away")

        services.results.score_student_exam = broken

        outcome = await services.finalizer.finalize("student-1", exam.id, Trigger.MANUAL)

        assert outcome.status == "success"
        assert outcome.score is None
        assert len(calls) == 1
        assert gateway.student_exams[("student-1", exam.id)].submitted_at is not None

        with pytest.raises(ExamAlreadySubmitted):
            await services.finalizer.finalize("student-1", exam.id, Trigger.MANUAL)
        assert len(calls) == 1

    run(scenario())


def test_result_combines_mid_and_final(services, gateway, clock):
    async def scenario():
        mid, mid_questions = await make_exam(gateway, title="Mid-exam", start=T0)
        final, final_questions = await make_exam(gateway, title="Final-exam", start=T0 + timedelta(days=30))
        empty = await services.results.recompute("student-1", "course-1", "class-1")
        assert empty.overall_score is None and empty.grade is None
        await gateway.set_result_visibility(empty.id, True, "teacher-1", clock())

        clock.set(T0 + timedelta(minutes=5))
        await answer_all(services, gateway, mid, mid_questions, ["A", "B", "D"])
        await services.finalizer.finalize("student-1", mid.id, Trigger.MANUAL)

        clock.set(T0 + timedelta(days=30, minutes=5))
        await answer_all(services, gateway, final, final_questions, ["A", "B", "C"])
        await services.finalizer.finalize("student-1", final.id, Trigger.MANUAL)

        result = await gateway.find_result("student-1", "course-1")
        assert (result.mid_exam_score, result.final_exam_score) == (50, 100)
        assert result.overall_score == 81.25
        assert result.grade == "B"
        assert result.is_visible_to_student is True

    run(scenario())


def test_repeated_manual_submit_is_refused(services, gateway, clock):
    async def scenario():
        exam, _ = await make_exam(gateway)
        clock.set(T0 + timedelta(minutes=5))

        first = await services.finalizer.finalize("student-1", exam.id, Trigger.MANUAL)
        assert first.status == "success"

        with pytest.raises(ExamAlreadySubmitted):
            await services.finalizer.finalize("student-1", exam.id, Trigger.MANUAL)

        # Automatic triggers still just get the earlier outcome
        again = await services.finalizer.finalize("student-1", exam.id, Trigger.EXAM_ENDED)
        assert again.duplicate and again.status == "success"

    run(scenario())


def test_exam_ended_trigger_skips_the_clock_skew_check(services, gateway, clock):
    async def scenario():
        exam, _ = await make_exam(gateway)
        clock.set(T0 + timedelta(minutes=10))

        outcome = await services.finalizer.finalize("student-1", exam.id, Trigger.EXAM_ENDED)

        assert outcome.status == "expired"
        assert gateway.student_exams[("student-1", exam.id)].submitted_at == T0 + timedelta(minutes=10)

    run(scenario())


class UnreadableAttemptGateway(MemoryGateway):
    async def get_student_exam(self, student_exam_id):
        raise PersistenceError()


def test_failed_read_back_of_a_lost_stamp_still_settles(settings, clock):
    gateway = UnreadableAttemptGateway()

    async def scenario():
        results = ResultCalculator(gateway, settings)
        first = SubmissionFinalizer(gateway, SessionRegistry(), results, settings, now=clock)
        second = SubmissionFinalizer(gateway, SessionRegistry(), results, settings, now=clock)

        exam, _ = await make_exam(gateway)
        clock.set(T0 + timedelta(minutes=31))
        await first.finalize("student-1", exam.id, Trigger.EXAM_ENDED)

        outcome = await second.finalize("student-1", exam.id, Trigger.EXAM_ENDED)

        assert outcome.status == "already_submitted"
        assert outcome.score is None
        assert second.state_of("student-1", exam.id) is FinalizeState.SUBMITTED

        again = await second.finalize("student-1", exam.id, Trigger.COUNTDOWN)
        assert again.duplicate and again.status == "already_submitted"

    run(scenario())
