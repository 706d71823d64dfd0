from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from paylite.api.admin_routes import router as admin_router
from paylite.api.routes import router
from paylite.core.errors import PayliteError
from paylite.observability.logging import log
from paylite.services import Services, build_services
from paylite.settings import settings


def create_app(services: Optional[Services] = None, start_scheduler: Optional[bool] = None) -> FastAPI:
    if start_scheduler is None:
        start_scheduler = settings.SCHEDULER_ENABLED

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services()
        scheduler = app.state.services.scheduler
        if start_scheduler:
            scheduler.start()
        log(event="api_boot", backend=settings.STORE_BACKEND, schedulerThread=bool(start_scheduler))
        try:
            yield
        finally:
            if start_scheduler:
                scheduler.stop()

    app = FastAPI(title="PayLite UPI API", version=settings.API_VERSION, lifespan=lifespan)
    app.state.services = services

    origins = [x.strip() for x in settings.CORS_ORIGINS.split(",") if x.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Served at the root and under /api (path used by the mobile client)
    app.include_router(router)
    app.include_router(router, prefix="/api")
    app.include_router(admin_router)

    @app.get("/")
    def root():
        return {"message": "PayLite UPI API", "version": settings.API_VERSION}

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.exception_handler(PayliteError)
    async def paylite_error_handler(request: Request, exc: PayliteError):
        if exc.status_code >= 500:
            log(event="request_failed", path=request.url.path, errorType=type(exc).__name__, error=exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "code": type(exc).__name__},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # Malformed bodies/queries are caller errors: 400, same shape as engine validation.
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid request",
                "code": "ValidationError",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(Exception)
    async def universal_exception_handler(request: Request, exc: Exception):
        log(event="request_crashed", path=request.url.path, errorType=type(exc).__name__, error=str(exc)[:500])
        return JSONResponse(status_code=500, content={"error": "Internal server error", "code": "InternalError"})

    return app


app = create_app()
