"""
SV Bank API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..system import BankingSystem
from ..config import get_config
from ..errors import (
    BankingError, InvalidAmount, InsufficientFunds, NotFound, InvalidRecipient,
    AlreadyProcessed, InvalidLoanTerms, InvalidAction, Unauthorized, Forbidden,
    StoreUnavailable
)
from ..logging_config import get_logger, setup_logging
from .banking import router as banking_router
from .loans import router as loans_router, staff_router


logger = get_logger("svbank.api")


ERROR_STATUS_CODES = {
    InvalidAmount: 400,
    InvalidRecipient: 400,
    InvalidLoanTerms: 400,
    InvalidAction: 400,
    InsufficientFunds: 400,
    NotFound: 404,
    Unauthorized: 401,
    Forbidden: 403,
    AlreadyProcessed: 409,
    StoreUnavailable: 503,
}


def status_code_for(error: BankingError) -> int:
    """HTTP status for an error kind; subclasses inherit their parent's status"""
    for error_class in type(error).__mro__:
        if error_class in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[error_class]
    return 500


def create_app(system: Optional[BankingSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="SV Bank API",
        description="Retail banking transaction core: accounts, transfers and loans",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.banking_system = system or BankingSystem.from_config()

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BankingError)
    async def banking_error_handler(request: Request, exc: BankingError):
        return JSONResponse(status_code=status_code_for(exc), content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"error": "InvalidRequest", "message": detail})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"error": "InternalError", "message": "An unexpected error occurred"}
        )

    # Include routers
    app.include_router(banking_router, prefix="/api", tags=["Accounts"])
    app.include_router(loans_router, prefix="/api", tags=["Loans"])
    app.include_router(staff_router, prefix="/api/staff", tags=["Staff"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "svbank_api",
            "version": "1.0.0"
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    settings = get_config()
    setup_logging(settings.log_level)
    uvicorn.run(
        "svbank.api:create_app",
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=debug,
        log_level="info"
    )
