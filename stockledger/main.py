import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from stockledger.api import auth, categories, inventory, products, reports
from stockledger.config import settings
from stockledger.database import SessionLocal, init_db
from stockledger.errors import ErrorKind, LedgerError
from stockledger.logging_config import setup_logging
from stockledger.services.auth_service import ensure_default_admin

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.VALIDATION: 422,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    db = SessionLocal()
    try:
        ensure_default_admin(db)
    finally:
        db.close()
    yield


app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Scoped stock mutations, append-only inventory ledger, and stock variance reporting",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if status_code >= 500:
        logger.error("Ledger failure on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code, "kind": exc.kind.value},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return JSON for unhandled exceptions so clients can parse the error."""
    logger.error("Unhandled error: %s\n%s", exc, traceback.format_exc())
    return JSONResponse(status_code=500, content={"detail": str(exc), "code": "INTERNAL", "kind": "INTERNAL"})


app.include_router(auth.router, prefix="/api/v1")
app.include_router(categories.router, prefix="/api/v1")
app.include_router(products.router, prefix="/api/v1")
app.include_router(inventory.router, prefix="/api/v1")
app.include_router(reports.router, prefix="/api/v1")


@app.get("/health")
def health():
    return {"status": "ok"}
