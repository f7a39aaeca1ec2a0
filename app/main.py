import time
import uuid
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.api.endpoints.files import router as files_router
from app.api.endpoints.upload import router as upload_router
from app.core.config import Settings, settings as default_settings
from app.core.errors import ChunkStatus, SessionIncompleteError, UploadError
from app.services.reaper import SessionReaper
from app.services.upload_service import UploadService

# تنظیم logging
logging.basicConfig(
    level=getattr(logging, default_settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    upload_service = UploadService(settings)
    reaper = SessionReaper(upload_service, settings.REAPER_INTERVAL_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
        Path(settings.WORKING_DIR).mkdir(parents=True, exist_ok=True)
        logger.info(f"Upload service starting (uploads: {settings.UPLOAD_DIR}, working: {settings.WORKING_DIR})")
        await reaper.start()
        yield
        logger.info("Upload service shutting down...")
        await reaper.stop()
        await upload_service.close()

    app = FastAPI(
        title="Chunked Video Upload Service",
        version="1.0.0",
        lifespan=lifespan,
        openapi_url=None if settings.ENV == "production" else "/openapi.json",
        docs_url=None if settings.ENV == "production" else "/docs",
        redoc_url=None if settings.ENV == "production" else "/redoc"
    )
    app.state.settings = settings
    app.state.upload_service = upload_service
    app.state.reaper = reaper

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time
        logger.info(
            f"{request.method} {request.url.path} status={response.status_code} "
            f"duration={duration:.3f}s [request_id={request_id}]"
        )
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(UploadError)
    async def upload_error_handler(request: Request, exc: UploadError):
        content = {"status": exc.tag.value, "detail": exc.detail}
        if isinstance(exc, SessionIncompleteError):
            content["missing"] = exc.missing
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.detail}")
        else:
            logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.detail}")
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
        )
        logger.warning(f"Invalid request on {request.url.path}: {errors}")
        return JSONResponse(
            status_code=400,
            content={"status": ChunkStatus.CALLER_ERROR.value, "detail": errors},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "sessions": len(upload_service.registry)}

    app.include_router(upload_router, tags=["upload"])
    app.include_router(files_router, prefix="/files", tags=["files"])
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=default_settings.SERVICE_PORT)
