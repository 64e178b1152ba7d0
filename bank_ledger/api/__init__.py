"""
Bank Ledger API Application Factory
"""

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import get_config
from ..logging_config import setup_logging
from .accounts import router as accounts_router
from .transactions import router as transactions_router
from .otp import router as otp_router
from .goals import router as goals_router
from .scheduled import router as scheduled_router
from .requests import router as requests_router
from .admin import router as admin_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Bank Ledger API",
        description="Atomic ledger for deposits, withdrawals, transfers and bill payments",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.include_router(otp_router, prefix="/otp", tags=["OTP"])
    app.include_router(goals_router, prefix="/goals", tags=["Goals"])
    app.include_router(scheduled_router, prefix="/scheduled", tags=["Scheduled Transfers"])
    app.include_router(requests_router, prefix="/requests", tags=["Money Requests"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "bank_ledger_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Bank Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "accounts": "/accounts",
                "transactions": "/transactions",
                "otp": "/otp",
                "goals": "/goals",
                "scheduled": "/scheduled",
                "requests": "/requests",
                "admin": "/admin",
            }
        }

    return app


app = create_app()


def run_server(host: str = None, port: int = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format)
    uvicorn.run(
        "bank_ledger.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
