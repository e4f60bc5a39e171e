import asyncio
from datetime import timedelta

from classroom.dependencies import ExamServices
from classroom.services.finalizer import Trigger
from classroom.storage import MemoryGateway

from conftest import T0, drain, events, make_exam, run


def save_payload(exam, question, option, student="student-1"):
    return {
        "studentId": student,
        "examId": exam.id,
        "questionId": question.id,
        "selectedOption": option,
    }


def test_answer_saved_while_active(services, gateway, clock):
    async def scenario():
        exam, questions = await make_exam(gateway)
        connection = services.registry.register("student-1")
        clock.set(T0 + timedelta(minutes=10))

        await services.intake.handle(connection, save_payload(exam, questions[0], "A"))

        saved = events(drain(connection), "answer-saved")
        assert saved[0]["questionId"] == questions[0].id
        attempt = await gateway.find_student_exam("student-1", exam.id)
        assert attempt is not None and attempt.submitted_at is None
        answers = await gateway.list_answers(attempt.id)
        assert [(a.question_id, a.selected_option) for a in answers] == [(questions[0].id, "A")]

    run(scenario())


def test_resubmitting_overwrites_single_row(services, gateway, clock):
    async def scenario():
        exam, questions = await make_exam(gateway)
        connection = services.registry.register("student-1")
        clock.set(T0 + timedelta(minutes=1))

        for option in ("A", "C", "B"):
            await services.intake.handle(connection, save_payload(exam, questions[1], option))

        attempt = await gateway.find_student_exam("student-1", exam.id)
        answers = await gateway.list_answers(attempt.id)
        assert len(answers) == 1
        assert answers[0].selected_option == "B"
        assert len(gateway.student_exams) == 1

    run(scenario())


def test_rapid_concurrent_saves_apply_in_arrival_order(settings, clock):
    from classroom.dependencies import ExamServices
    from conftest import SlowGateway

    gateway = SlowGateway()
    services = ExamServices(settings, gateway, now=clock)

    async def scenario():
        exam, questions = await make_exam(gateway)
        connection = services.registry.register("student-1")
        clock.set(T0 + timedelta(minutes=1))

        await asyncio.gather(*[
            services.intake.handle(connection, save_payload(exam, questions[0], option))
            for option in ("A", "B", "C", "D", "A", "C")
        ])

        attempt = await gateway.find_student_exam("student-1", exam.id)
        answers = await gateway.list_answers(attempt.id)
        assert [a.selected_option for a in answers] == ["C"]
        assert len(events(drain(connection), "answer-saved")) == 6
        assert services.intake._locks == {}

    run(scenario())


def test_answer_after_end_is_no_longer_available(services, gateway, clock):
    async def scenario():
        exam, questions = await make_exam(gateway, duration=30)
        connection = services.registry.register("student-1")

        clock.set(T0 + timedelta(minutes=10))
        await services.intake.handle(connection, save_payload(exam, questions[2], "C"))
        assert events(drain(connection), "answer-saved")

        clock.set(T0 + timedelta(minutes=31))
        await services.intake.handle(connection, save_payload(exam, questions[2], "D"))
        errors = events(drain(connection), "answer-save-error")
        assert errors[0]["questionId"] == questions[2].id
        assert errors[0]["error"]["code"] == "no_longer_available"

    run(scenario())


def test_answer_before_start_is_not_available_yet(services, gateway, clock):
    async def scenario():
        exam, questions = await make_exam(gateway)
        connection = services.registry.register("student-1")
        clock.set(T0 - timedelta(seconds=1))

        await services.intake.handle(connection, save_payload(exam, questions[0], "A"))

        errors = events(drain(connection), "answer-save-error")
        assert errors[0]["error"]["code"] == "not_available_yet"
        assert gateway.student_exams == {}

    run(scenario())


def test_errors_go_only_to_the_sending_connection(services, gateway, clock):
    async def scenario():
        exam, questions = await make_exam(gateway)
        sender = services.registry.register("student-1")
        other_tab = services.registry.register("student-1")
        bystander = services.registry.register("student-2")
        clock.set(T0 + timedelta(hours=2))

        await services.intake.handle(sender, save_payload(exam, questions[0], "A"))

        assert events(drain(sender), "answer-save-error")
        assert drain(other_tab) == []
        assert drain(bystander) == []

    run(scenario())


def test_malformed_payloads_are_rejected(services, gateway, clock):
    async def scenario():
        exam, questions = await make_exam(gateway)
        connection = services.registry.register("student-1")
        clock.set(T0 + timedelta(minutes=1))

        await services.intake.handle(connection, save_payload(exam, questions[0], "E"))
        await services.intake.handle(connection, {"studentId": "student-1"})
        await services.intake.handle(connection, "not a dict")

        errors = events(drain(connection), "answer-save-error")
        assert [e["error"]["code"] for e in errors] == ["invalid_payload"] * 3
        assert errors[0]["questionId"] == questions[0].id

    run(scenario())


def test_cannot_answer_for_another_student(services, gateway, clock):
    async def scenario():
        exam, questions = await make_exam(gateway)
        connection = services.registry.register("student-1")
        clock.set(T0 + timedelta(minutes=1))

        await services.intake.handle(connection, save_payload(exam, questions[0], "A", student="student-2"))

        assert events(drain(connection), "answer-save-error")[0]["error"]["code"] == "invalid_payload"
        assert gateway.student_exams == {}

    run(scenario())


def test_unknown_exam_and_foreign_question(services, gateway, clock):
    async def scenario():
        exam, questions = await make_exam(gateway)
        other_exam, other_questions = await make_exam(gateway, title="Final-exam", class_id="class-2")
        connection = services.registry.register("student-1")
        clock.set(T0 + timedelta(minutes=1))

        payload = save_payload(exam, questions[0], "A")
        payload["examId"] = "missing"
        await services.intake.handle(connection, payload)
        await services.intake.handle(connection, save_payload(exam, other_questions[0], "A"))

        codes = [e["error"]["code"] for e in events(drain(connection), "answer-save-error")]
        assert codes == ["exam_not_found", "question_not_found"]

    run(scenario())


def test_no_answers_after_submission(services, gateway, clock):
    from classroom.services.finalizer import Trigger

    async def scenario():
        exam, questions = await make_exam(gateway)
        connection = services.registry.register("student-1")
        clock.set(T0 + timedelta(minutes=5))

        await services.finalizer.finalize("student-1", exam.id, Trigger.MANUAL, connection=connection)
        drain(connection)
        await services.intake.handle(connection, save_payload(exam, questions[0], "A"))

        errors = events(drain(connection), "answer-save-error")
        assert errors[0]["error"]["code"] == "already_submitted"

    run(scenario())


class LaggingAnswerGateway(MemoryGateway):
    """Holds every answer write back long enough for a submit to land first."""

    async def upsert_answer(self, student_exam_id, question_id, selected_option):
        await asyncio.sleep(0.01)
        return await super().upsert_answer(student_exam_id, question_id, selected_option)


def test_answer_landing_after_submit_is_refused(settings, clock):
    gateway = LaggingAnswerGateway()

    async def scenario():
        services = ExamServices(settings, gateway, now=clock)
        exam, questions = await make_exam(gateway)
        connection = services.registry.register("student-1")
        clock.set(T0 + timedelta(minutes=10))

        _, outcome = await asyncio.gather(
            services.intake.handle(connection, save_payload(exam, questions[0], "A")),
            services.finalizer.finalize("student-1", exam.id, Trigger.MANUAL),
        )

        messages = drain(connection)
        assert events(messages, "answer-saved") == []
        errors = events(messages, "answer-save-error")
        assert [e["error"]["code"] for e in errors] == ["already_submitted"]

        # What was acknowledged is exactly what was scored
        assert (outcome.score, outcome.max_score) == (0, 4)
        attempt = await gateway.find_student_exam("student-1", exam.id)
        assert await gateway.list_answers(attempt.id) == []

    run(scenario())
