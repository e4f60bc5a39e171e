from classroom.services.session_registry import SessionRegistry, make_message

from conftest import drain, run


def test_register_and_deregister():
    registry = SessionRegistry()
    first = registry.register("student-1")
    second = registry.register("student-1")

    assert registry.connections_for("student-1") == [first, second]

    registry.deregister(first)
    assert registry.connections_for("student-1") == [second]

    registry.deregister(second)
    registry.deregister(second)
    assert registry.connections_for("student-1") == []
    assert "student-1" not in registry.active_connections


def test_rebind_moves_connection():
    registry = SessionRegistry()
    connection = registry.register("student-1")
    registry.join_exam(connection, "exam-1")

    registry.rebind(connection, "student-2")

    assert connection.student_id == "student-2"
    assert registry.connections_for("student-1") == []
    assert registry.connections_for("student-2") == [connection]
    assert connection.exam_ids == set()


def test_exam_membership():
    registry = SessionRegistry()
    a = registry.register("student-1")
    b = registry.register("student-2")
    registry.register("student-3")
    registry.join_exam(a, "exam-1")
    registry.join_exam(b, "exam-1")
    registry.join_exam(b, "exam-2")

    assert sorted(registry.students_in_exam("exam-1")) == ["student-1", "student-2"]
    assert registry.students_in_exam("exam-3") == []
    assert registry.interested_exam_ids() == {"exam-1", "exam-2"}


def test_send_targets():
    async def scenario():
        registry = SessionRegistry()
        tab_one = registry.register("student-1")
        tab_two = registry.register("student-1")
        other = registry.register("student-2")
        registry.join_exam(other, "exam-1")

        await registry.send(tab_one, "answer-saved", {"questionId": "q1"})
        assert drain(tab_one) == [make_message("answer-saved", {"questionId": "q1"})]
        assert drain(tab_two) == []

        delivered = await registry.send_to_student("student-1", "exam-submitted", {"examId": "exam-1"})
        assert delivered == 2
        assert len(drain(tab_one)) == len(drain(tab_two)) == 1
        assert drain(other) == []

        assert await registry.send_to_student("nobody", "exam-submitted", {}) == 0

        await registry.send_to_exam("exam-1", "exam-timer-update", {"timeLeft": 10})
        assert drain(other) == [make_message("exam-timer-update", {"timeLeft": 10})]
        assert drain(tab_one) == []

        await registry.broadcast("exam-ended", {"examId": "exam-1"})
        assert all(len(drain(c)) == 1 for c in (tab_one, tab_two, other))

    run(scenario())
