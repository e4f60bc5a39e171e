"""
Live exam socket.

Messages both ways are ``{"event": <name>, "data": <payload>}``. A client
must send ``student-connect`` first; after that every outbound message goes
through the connection's queue and a writer task.
"""
import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from classroom.dependencies import ExamServices
from classroom.errors import ExamError, ExamNotFound, InvalidPayload
from classroom.schemas import ExamRef
from classroom.services import exam_clock
from classroom.services.finalizer import Trigger
from classroom.services.session_registry import Connection, make_message

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Exam socket"])


async def _pump(websocket: WebSocket, connection: Connection) -> None:
    """Drain a connection's queue onto its socket."""
    try:
        while True:
            message = await connection.queue.get()
            await websocket.send_json(message)
    except asyncio.CancelledError:
        raise
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Writer for %s stopped: %s", connection, e)


def _student_id_from(data) -> Optional[str]:
    if isinstance(data, dict):
        data = data.get("studentId")
    if isinstance(data, (str, int)) and str(data).strip():
        return str(data).strip()
    return None


class ExamSocketSession:
    """State of one socket between accept and disconnect."""

    def __init__(self, websocket: WebSocket, services: ExamServices):
        self.websocket = websocket
        self.services = services
        self.connection: Optional[Connection] = None
        self.writer: Optional[asyncio.Task] = None

    async def reply(self, event: str, data) -> None:
        if self.connection is None:
            await self.websocket.send_json(make_message(event, data))
        else:
            await self.services.registry.send(self.connection, event, data)

    async def dispatch(self, event: str, data) -> None:
        if event == "student-connect":
            await self.on_student_connect(data)
            return

        if self.connection is None:
            await self.reply("error", {"code": "not_connected", "message": "Send student-connect first"})
            return

        if event == "join-exam":
            await self.on_join_exam(data)
        elif event == "save-answer":
            await self.services.intake.handle(self.connection, data)
        elif event == "submit-exam":
            await self.on_finalize(data, Trigger.MANUAL)
        elif event == "countdown-expired":
            await self.on_finalize(data, Trigger.COUNTDOWN)
        else:
            await self.reply("error", {"code": "unknown_event", "message": f"Unknown event: {event}"})

    async def on_student_connect(self, data) -> None:
        student_id = _student_id_from(data)
        if student_id is None:
            await self.reply("error", InvalidPayload("student-connect needs a student id").to_payload())
            return

        registry = self.services.registry
        if self.connection is None:
            self.connection = registry.register(student_id)
            self.writer = asyncio.create_task(_pump(self.websocket, self.connection))
        else:
            registry.rebind(self.connection, student_id)
        await self.reply("student-connected", {"studentId": student_id})

    async def on_join_exam(self, data) -> None:
        try:
            ref = ExamRef.model_validate(data)
            exam = await self.services.gateway.get_exam(ref.exam_id)
            if exam is None:
                raise ExamNotFound()
        except ValidationError:
            await self.reply("error", InvalidPayload("examId is required").to_payload())
            return
        except ExamError as e:
            await self.reply("error", e.to_payload())
            return

        self.services.registry.join_exam(self.connection, exam.id)
        data = exam_clock.phase_info(exam, self.services.now()).to_wire()
        # Clients size their local countdown fallback from this
        data["countdownFallbackSeconds"] = self.services.settings.countdown_fallback_seconds
        await self.reply("exam-phase", data)

    async def on_finalize(self, data, trigger: Trigger) -> None:
        exam_id = data.get("examId") if isinstance(data, dict) else None
        try:
            ref = ExamRef.model_validate(data)
        except ValidationError:
            await self.reply("exam-submit-error", {
                "examId": exam_id,
                "error": InvalidPayload("examId is required").to_payload(),
            })
            return

        try:
            outcome = await self.services.finalizer.finalize(
                self.connection.student_id, ref.exam_id, trigger, connection=self.connection
            )
        except ExamError as e:
            logger.warning("Finalization of exam %s for %s refused: %s", ref.exam_id, self.connection, e.code)
            await self.reply("exam-submit-error", {"examId": ref.exam_id, "error": e.to_payload()})
            return

        if outcome.duplicate and outcome.status is not None:
            # Let a late trigger render the result it missed
            await self.reply("exam-submitted", outcome.to_wire())

    async def close(self) -> None:
        if self.connection is not None:
            self.services.registry.deregister(self.connection)
        if self.writer is not None:
            self.writer.cancel()
            try:
                await self.writer
            except asyncio.CancelledError:
                pass


@router.websocket("/ws")
async def exam_socket(websocket: WebSocket):
    services: ExamServices = websocket.app.state.services
    await websocket.accept()
    session = ExamSocketSession(websocket, services)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
                event = message["event"]
            except (ValueError, KeyError, TypeError):
                await session.reply("error", InvalidPayload("Expected {\"event\": ..., \"data\": ...}").to_payload())
                continue
            await session.dispatch(event, message.get("data"))
    except WebSocketDisconnect:
        pass
    finally:
        await session.close()
