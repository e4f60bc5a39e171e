"""
Client-side helpers for the exam socket.

The server never relies on these; they encode how a well-behaved exam
client mirrors the server clock and when it may send ``countdown-expired``.
Messages in and out use the same ``{"event", "data"}`` envelope as ``/ws``.
"""
from datetime import datetime
from typing import List, Optional

from classroom.services.session_registry import make_message


class AdvisoryCountdown:
    """Local timer reconciled to server pushes; it expires alone only once the server goes quiet."""

    def __init__(self, fallback_seconds: int = 10):
        self.fallback_seconds = fallback_seconds
        self.reset()

    def reset(self) -> None:
        """Forget all server state (session teardown)."""
        self._time_left: Optional[float] = None
        self._received_at: Optional[datetime] = None

    @property
    def started(self) -> bool:
        return self._received_at is not None

    def reconcile(self, time_left: float, received_at: datetime) -> None:
        """Adopt a server-pushed timer value."""
        self._time_left = max(0.0, float(time_left))
        self._received_at = received_at

    def remaining(self, now: datetime) -> float:
        if not self.started:
            return 0.0
        elapsed = (now - self._received_at).total_seconds()
        return max(0.0, self._time_left - elapsed)

    def server_silent(self, now: datetime) -> bool:
        if not self.started:
            return False
        return (now - self._received_at).total_seconds() >= self.fallback_seconds

    def expired(self, now: datetime) -> bool:
        """
        True when the client may fire its own ``countdown-expired``.

        Either the server itself last reported no time left, or the local
        count reached zero and no server message arrived for a while.
        """
        if not self.started:
            return False
        if self._time_left == 0:
            return True
        return self.remaining(now) == 0 and self.server_silent(now)


class ExamClientSession:
    """
    One student's view of one exam.

    Feed every received message to ``on_message`` and call ``tick`` on a
    timer; ``tick`` hands back the ``countdown-expired`` message at most once
    per connection.
    """

    def __init__(self, student_id: str, exam_id: str, fallback_seconds: int = 10):
        self.student_id = student_id
        self.exam_id = exam_id
        self.countdown = AdvisoryCountdown(fallback_seconds)
        self.submitted = False
        self._expiry_sent = False

    def connect_messages(self) -> List[dict]:
        """What to send right after the socket opens (also on reconnect)."""
        self.countdown.reset()
        self._expiry_sent = False
        return [
            make_message("student-connect", {"studentId": self.student_id}),
            make_message("join-exam", {"examId": self.exam_id}),
        ]

    def on_message(self, message: dict, received_at: datetime) -> None:
        event = message.get("event")
        data = message.get("data") or {}
        if not isinstance(data, dict) or data.get("examId") != self.exam_id:
            return

        if event == "exam-phase":
            self.countdown.fallback_seconds = data.get("countdownFallbackSeconds", self.countdown.fallback_seconds)
            if data.get("phase") == "active":
                self.countdown.reconcile(data.get("timeLeft", 0), received_at)
            elif data.get("phase") == "ended":
                self.countdown.reconcile(0, received_at)
            else:
                self.countdown.reset()
        elif event == "exam-timer-update":
            self.countdown.reconcile(data.get("timeLeft", 0), received_at)
        elif event == "exam-ended":
            self.countdown.reconcile(0, received_at)
        elif event == "exam-submitted":
            self.submitted = True
            self.countdown.reset()
        elif event == "exam-submit-error" and (data.get("error") or {}).get("code") == "already_submitted":
            self.submitted = True
            self.countdown.reset()

    def tick(self, now: datetime) -> Optional[dict]:
        if self.submitted or self._expiry_sent or not self.countdown.expired(now):
            return None
        self._expiry_sent = True
        return make_message("countdown-expired", {"examId": self.exam_id})
