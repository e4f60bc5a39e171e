"""
Wiring of the exam services.

Everything is constructed once per app and kept on ``app.state.services``;
routes pull it from the request, nothing reaches for a module global.
"""
from typing import Callable, Optional

from fastapi import Request

from classroom.config import Settings
from classroom.services import exam_clock
from classroom.services.answer_intake import AnswerIntake
from classroom.services.finalizer import SubmissionFinalizer
from classroom.services.gateway import PersistenceGateway
from classroom.services.results import ResultCalculator
from classroom.services.scheduler import ExamLifecycleScheduler
from classroom.services.session_registry import SessionRegistry


class ExamServices:

    def __init__(self, settings: Settings, gateway: PersistenceGateway, now: Callable = exam_clock.utcnow):
        self.settings = settings
        self.gateway = gateway
        self.now = now
        self.registry = SessionRegistry()
        self.results = ResultCalculator(gateway, settings)
        self.intake = AnswerIntake(gateway, self.registry, now=now)
        self.finalizer = SubmissionFinalizer(gateway, self.registry, self.results, settings, now=now)
        self.scheduler = ExamLifecycleScheduler(gateway, self.registry, self.finalizer, settings, now=now)


def build_gateway(settings: Settings) -> PersistenceGateway:
    if settings.storage_backend == "memory":
        from classroom.storage import MemoryGateway
        return MemoryGateway()

    from classroom.database import init_db, make_engine, make_session_factory
    from classroom.services.sql_gateway import SqlGateway

    engine = make_engine(settings.database_url)
    init_db(bind=engine)
    return SqlGateway(make_session_factory(engine))


def build_services(
    settings: Settings,
    gateway: Optional[PersistenceGateway] = None,
    now: Callable = exam_clock.utcnow,
) -> ExamServices:
    return ExamServices(settings, gateway or build_gateway(settings), now=now)


def get_services(request: Request) -> ExamServices:
    return request.app.state.services
