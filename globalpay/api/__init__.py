"""
GlobalPay Ledger API Application Factory
"""

from typing import Optional
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import get_config
from ..errors import InvalidRequest, LedgerError
from ..logging_config import correlation_context, setup_logging
from .dependencies import LedgerSystem, get_ledger_system
from .accounts import router as accounts_router
from .transactions import router as transactions_router
from .rates import router as rates_router


REQUEST_ID_HEADER = "X-Request-ID"


def _describe_validation_error(exc: RequestValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else error.get("msg", ""))
    return "; ".join(problems) or "Invalid request"


def create_app(system: Optional[LedgerSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Ledger system to serve; built from configuration on first
            request when omitted
    """
    config = get_config()
    setup_logging(config.log_level, config.log_format, config.log_file)

    app = FastAPI(
        title="GlobalPay Ledger API",
        description="Multi-currency peer-to-peer money-transfer ledger",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origin_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def correlation_middleware(request: Request, call_next):
        correlation_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        with correlation_context(correlation_id):
            response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = correlation_id
        return response

    if system is not None:
        app.dependency_overrides[get_ledger_system] = lambda: system

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        error = InvalidRequest(_describe_validation_error(exc))
        return JSONResponse(status_code=error.http_status, content=error.to_dict())

    # Include routers
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.include_router(rates_router, prefix="/rates", tags=["Rates"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "globalpay_ledger_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "GlobalPay Ledger API",
            "version": __version__,
            "description": "Multi-currency peer-to-peer money-transfer ledger",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "accounts": "/accounts",
                "transactions": "/transactions",
                "rates": "/rates",
            }
        }

    return app
