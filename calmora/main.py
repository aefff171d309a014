import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from calmora.core.config import settings
from calmora.core.errors import HTTP_STATUS_BY_KIND, TwoFactorError, TwoFactorErrorKind
from calmora.core.logs import configure_logging
from calmora.api.v1.auth import router as auth_router
from calmora.api.v1.ai import router as ai_router
from calmora.api.v1.puzzle import router as puzzle_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME, version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(ai_router)
app.include_router(puzzle_router)


@app.exception_handler(TwoFactorError)
async def twofa_error_handler(request: Request, exc: TwoFactorError):
    headers = {}
    if exc.kind == TwoFactorErrorKind.storage_unavailable:
        headers["Retry-After"] = "1"
    return JSONResponse(
        status_code=HTTP_STATUS_BY_KIND[exc.kind],
        content={"detail": exc.detail, "kind": exc.kind.value},
        headers=headers,
    )


@app.get("/health")
async def health():
    return {"status": "ok"}
