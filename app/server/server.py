from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies.errors import setup_error_handlers
from api.dependencies.rate_limits import setup_rate_limiter
from api.router import api_router
from infrastructure.logging import bind_request_context, get_correlation_id
from infrastructure.services import get_settings
from server.lifespan import lifespan

settings = get_settings()

handler = FastAPI(title="Courier", lifespan=lifespan)
setup_rate_limiter(handler)
setup_error_handlers(handler)


@handler.middleware("http")
async def request_context_middleware(request: Request, call_next):
    with bind_request_context(
        correlation_id=request.headers.get("X-Correlation-ID"),
        request_path=request.url.path,
        request_method=request.method,
    ):
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = get_correlation_id() or ""
        return response


allow_origins = ["*"] if settings.is_production else settings.server.ALLOWED_ORIGINS
handler.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


handler.include_router(api_router)
