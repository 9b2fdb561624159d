"""FastAPI application entry point."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from rich.logging import RichHandler

from clinical_rag.config import settings
from clinical_rag.dependencies import build_components
from clinical_rag.models.schemas import ErrorDetail
from clinical_rag.routers.clinical_decision import router as clinical_decision_router
from clinical_rag.routers.dosing import router as dosing_router
from clinical_rag.routers.errors import INVALID_REQUEST
from clinical_rag.routers.guidelines import router as guidelines_router
from clinical_rag.routers.rag import router as rag_router

logging.basicConfig(
    level=logging.INFO,
    format="%(name)s - %(message)s",
    datefmt="%H:%M:%S",
    handlers=[RichHandler(rich_tracebacks=True, markup=False)],
    force=True,
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
# Our app loggers: show DEBUG when debug=True, keep third-party libs at INFO
if settings.debug:
    logging.getLogger("clinical_rag").setLevel(logging.DEBUG)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    components = build_components(settings)
    await components.store.ensure_collection()
    app.state.components = components
    yield
    await components.aclose()


app = FastAPI(
    title="Clinical RAG",
    description="Guideline retrieval, dose calculation and clinical decision support",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_methods=["*"],
    allow_credentials=True,
    allow_headers=["*"],
)

app.include_router(rag_router)
app.include_router(dosing_router)
app.include_router(guidelines_router)
app.include_router(clinical_decision_router)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    messages = [
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    ]
    logger.info("Invalid request to %s: %s", request.url.path, messages)
    detail = ErrorDetail(
        code=INVALID_REQUEST,
        message="Request validation failed",
        details={"errors": messages},
    )
    return JSONResponse(status_code=400, content={"detail": detail.model_dump()})


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}
