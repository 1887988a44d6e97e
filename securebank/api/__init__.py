"""
SecureBank API Application Factory
"""

import re
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import uvicorn

from .. import __version__
from ..errors import BankingError, RateLimited
from ..logging_config import get_logger, log_context
from ..maintenance import MaintenanceWorker
from .admin import router as admin_router
from .auth import router as auth_router
from .dependencies import client_ip, get_banking_system
from .transactions import router as transactions_router, transfers_router


logger = get_logger("securebank.api")

REQUEST_ID_HEADER = "X-Request-ID"
REQUEST_ID_PATTERN = re.compile(r'^[A-Za-z0-9\-]{1,64}$')

STATUS_BY_KIND = {
    "validation_error": 400,
    "invalid_amount": 400,
    "invalid_credentials": 401,
    "invalid_session": 401,
    "forbidden": 403,
    "account_inactive": 403,
    "account_not_found": 404,
    "transaction_not_found": 404,
    "invalid_transition": 409,
    "account_locked": 423,
    "insufficient_funds": 422,
    "limit_exceeded": 422,
    "rate_limited": 429,
    "internal_failure": 500,
    "busy": 503,
}


async def banking_error_handler(request: Request, exc: BankingError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, 400)
    headers = None
    if isinstance(exc, RateLimited) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    if status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.kind}")
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "error": "validation_error",
            "message": "Request body is invalid",
            "details": jsonable_encoder(exc.errors()),
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the background maintenance sweep for the lifetime of the application"""
    factory = app.dependency_overrides.get(get_banking_system, get_banking_system)
    system = factory()
    worker = None
    interval = system.config.maintenance_interval_seconds
    if interval > 0:
        worker = MaintenanceWorker(system, interval)
        worker.start()
    app.state.maintenance_worker = worker

    yield

    if worker is not None:
        worker.stop()


async def request_context(request: Request, call_next):
    """Tag every log line of a request with its correlation id and client address"""
    request_id = request.headers.get(REQUEST_ID_HEADER, "")
    if not REQUEST_ID_PATTERN.match(request_id):
        request_id = str(uuid.uuid4())

    with log_context(correlation_id=request_id, client_ip=client_ip(request)):
        response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="SecureBank API",
        description="Account ledger and transaction processing with session-based authentication",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.add_exception_handler(BankingError, banking_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.middleware("http")(request_context)

    app.include_router(auth_router, prefix="/auth", tags=["Auth"])
    app.include_router(transfers_router, prefix="/transfers", tags=["Transfers"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "securebank_api",
            "version": __version__
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "securebank.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
