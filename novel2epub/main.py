from datetime import datetime

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text

from novel2epub import __version__
from novel2epub.api.deliveries import router as deliveries_router
from novel2epub.api.jobs import router as jobs_router
from novel2epub.api.novels import router as novels_router
from novel2epub.api.users import router as users_router
from novel2epub.bootstrap import Container, get_container
from novel2epub.core.config import settings
from novel2epub.core.errors import (
    InvalidStateError,
    NotFoundError,
    Novel2EpubError,
    UnsupportedSourceError,
    ValidationError,
)
from novel2epub.core.logging import configure_logging
from novel2epub.db.session import get_db

configure_logging(settings.log_level)

app = FastAPI(title="novel2epub API", version=__version__)
app.include_router(novels_router)
app.include_router(jobs_router)
app.include_router(deliveries_router)
app.include_router(users_router)

_ERROR_STATUS = {
    NotFoundError: 404,
    InvalidStateError: 409,
    ValidationError: 400,
    UnsupportedSourceError: 400,
}


@app.exception_handler(Novel2EpubError)
def handle_domain_error(request: Request, exc: Novel2EpubError) -> JSONResponse:
    status_code = next((code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 503)
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "error": exc.__class__.__name__, "detail": str(exc)},
    )


class HealthResponse(BaseModel):
    ok: bool
    service: str
    version: str
    db_ok: bool


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    db_ok = False
    gen = get_db()
    try:
        db = next(gen)
        db.execute(text("SELECT 1"))
        db_ok = True
    except Exception:
        db_ok = False
    finally:
        gen.close()

    return HealthResponse(ok=True, service="api", version=app.version, db_ok=db_ok)


class ConsistencyIssueResponse(BaseModel):
    kind: str
    job_id: str
    severity: str
    detail: str
    store_value: str | None = None
    cache_value: str | None = None


class ConsistencyResponse(BaseModel):
    ok: bool
    status: str  # healthy|degraded|unhealthy
    checked_at: datetime
    total_jobs: int
    inconsistent_jobs: int
    missing_cache: int
    status_mismatches: int
    user_id_mismatches: int
    issues: list[ConsistencyIssueResponse]


@app.get("/health/consistency", response_model=ConsistencyResponse)
def consistency(container: Container = Depends(get_container)) -> ConsistencyResponse:
    report = container.consistency.check()
    return ConsistencyResponse(
        ok=True,
        status=report.status.value,
        checked_at=report.checked_at,
        total_jobs=report.total_jobs,
        inconsistent_jobs=report.inconsistent_jobs,
        missing_cache=report.missing_cache,
        status_mismatches=report.status_mismatches,
        user_id_mismatches=report.user_id_mismatches,
        issues=[
            ConsistencyIssueResponse(
                kind=issue.kind.value,
                job_id=issue.job_id,
                severity=issue.severity.value,
                detail=issue.detail,
                store_value=issue.store_value,
                cache_value=issue.cache_value,
            )
            for issue in report.issues
        ],
    )
