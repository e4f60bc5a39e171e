import logging
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from classroom.config import Settings, settings as default_settings
from classroom.dependencies import build_services
from classroom.errors import ExamError, InvalidPayload
from classroom.services import exam_clock
from classroom.services.gateway import PersistenceGateway

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler()],
    )


def create_app(
    settings: Optional[Settings] = None,
    gateway: Optional[PersistenceGateway] = None,
    now: Callable = exam_clock.utcnow,
    run_scheduler: bool = True,
) -> FastAPI:
    settings = settings or default_settings

    # Initialize FastAPI app
    app = FastAPI(
        title=settings.app_name,
        version=settings.api_version,
        debug=settings.debug,
    )
    app.state.settings = settings
    app.state.services = build_services(settings, gateway=gateway, now=now)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ExamError)
    async def exam_error_handler(request: Request, exc: ExamError):
        return JSONResponse(
            status_code=exc.http_status,
            content={"status": "error", "error": exc.to_payload()},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        fields = ", ".join(".".join(str(p) for p in err["loc"][1:]) for err in exc.errors())
        error = InvalidPayload(f"Invalid fields: {fields}" if fields else None)
        return JSONResponse(
            status_code=error.http_status,
            content={"status": "error", "error": error.to_payload()},
        )

    @app.on_event("startup")
    async def startup_event():
        """Start the exam lifecycle scheduler"""
        logger.info("%s is starting (storage: %s)", settings.app_name, settings.storage_backend)
        if run_scheduler:
            app.state.services.scheduler.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.services.scheduler.stop()

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.api_version,
            "status": "running",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy"}

    # Import and include routers
    from classroom.routes import exam, exam_socket, results

    app.include_router(exam.router, prefix="/api")
    app.include_router(results.router, prefix="/api/results")
    app.include_router(exam_socket.router)

    return app


configure_logging(default_settings.log_level)
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("classroom.main:app", host=default_settings.host, port=default_settings.port)
