import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

import handler
from config import settings
from handler import ApiError
from services import Services, build_services

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
router = APIRouter()


@router.post("/v1/chat/completions")
@router.post("/chat/completions")
@limiter.limit(lambda: f"{settings.MAX_REQUESTS_PER_MIN}/minute")
async def completions(request: Request):
    return await handler.chat_completions(request)


@router.get("/v1/models")
@router.get("/models")
async def models():
    return await handler.models()


@router.get("/v1/sessions")
@router.get("/sessions")
async def sessions(request: Request):
    return await handler.sessions(request)


@router.delete("/v1/sessions/{session_id}")
@router.delete("/sessions/{session_id}")
async def delete_session(request: Request, session_id: str):
    return await handler.delete_session(request, session_id)


@router.get("/health")
async def health(request: Request):
    return await handler.health(request)


@router.get("/")
async def root(request: Request):
    return handler.service_info(request.app.state.services.settings)


async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": {"message": "Internal server error", "type": "server_error", "code": "internal_error"}},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    services: Services = app.state.services
    await services.startup()
    yield
    await services.shutdown()


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(title="Copilot Web Proxy", lifespan=lifespan)
    app.state.services = services or build_services(settings)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"{request.method} {request.url.path}")
        return await call_next(request)

    app.include_router(router)
    return app


def run():
    logging.basicConfig(level=settings.LOG_LEVEL.upper())
    uvicorn.run(create_app(), host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL)


if __name__ == "__main__":
    run()
