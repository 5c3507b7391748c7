import time
from contextlib import asynccontextmanager
from datetime import datetime
from zoneinfo import ZoneInfo

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from config import Settings, configure_logging, get_settings
from models import ErrorResponse, HealthResponse, LedgerBatchRequest, LedgerBatchResponse
from services import LedgerEngine, get_ledger_engine, process_records
from sources import IterableRecordSource

settings = get_settings()
configure_logging(settings)

logger = structlog.get_logger()

# Rate limiting
limiter = Limiter(key_func=get_remote_address)


# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Ledger API", version=settings.app_version)
    yield
    logger.info("Shutting down Ledger API")


app = FastAPI(
    title=settings.app_name,
    description="Folds batches of transaction records into client account balances",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=settings.allowed_methods,
    allow_headers=settings.allowed_headers,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    logger.info(
        "Request handled",
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else None,
        status_code=response.status_code,
        batch_records=getattr(request.state, "batch_records", None),
        elapsed_ms=round((time.time() - start_time) * 1000, 2)
    )

    return response


# Dependency injection
def get_engine(app_settings: Settings = Depends(get_settings)) -> LedgerEngine:
    # One engine per request: nothing survives between batches
    return get_ledger_engine(app_settings)


@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Check API health"
)
async def health_check(app_settings: Settings = Depends(get_settings)):
    return HealthResponse(
        status="healthy",
        version=app_settings.app_version,
        timestamp=datetime.now(ZoneInfo(app_settings.timezone)),
    )


@app.post(
    "/ledgers",
    response_model=LedgerBatchResponse,
    status_code=status.HTTP_200_OK,
    summary="Process Batch",
    description="Fold a batch of raw transaction records into account balances",
    responses={
        200: {"description": "Batch processed; rejected records are counted in the report"},
        422: {"description": "Invalid request body or batch too large"},
        429: {"description": "Rate limit exceeded"},
        500: {"description": "Internal server error"}
    }
)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
def process_batch(
    request: Request,
    batch: LedgerBatchRequest,
    engine: LedgerEngine = Depends(get_engine),
    app_settings: Settings = Depends(get_settings),
):
    if len(batch.records) > app_settings.max_batch_records:
        logger.warning(
            "Batch too large",
            records=len(batch.records),
            max_batch_records=app_settings.max_batch_records
        )
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Batch exceeds {app_settings.max_batch_records} records"
        )

    request.state.batch_records = len(batch.records)
    report = process_records(IterableRecordSource(batch.records), engine)

    logger.info(
        "Batch processed",
        records_read=report.records_read,
        records_applied=report.records_applied,
        warnings=report.warnings
    )

    return LedgerBatchResponse(accounts=engine.snapshot(), report=report)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            detail=exc.detail,
            error_code=f"HTTP_{exc.status_code}"
        ).model_dump(mode="json")
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Ledger request failed",
        error=str(exc),
        path=request.url.path,
        batch_records=getattr(request.state, "batch_records", None),
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            detail="Internal server error",
            error_code="INTERNAL_ERROR"
        ).model_dump(mode="json")
    )


@app.get("/", include_in_schema=False)
async def root():
    return {"message": settings.app_name, "docs": "/docs"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
