"""
FlashPay API Application Factory
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import uvicorn

from .. import __version__
from ..config import get_config
from ..exceptions import FlashPayError
from ..logging_config import get_logger, setup_logging
from .auth import router as auth_router
from .deps import FlashPaySystem
from .transactions import accounts_router, router as transactions_router


logger = get_logger("flashpay.api")


def create_app(system: Optional[FlashPaySystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    flashpay_system = system or FlashPaySystem()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.system.start()
        yield
        app.state.system.shutdown()

    app = FastAPI(
        title="FlashPay API",
        description="Account-to-account transfers with bearer session tokens",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.system = flashpay_system

    @app.exception_handler(FlashPayError)
    async def flashpay_error_handler(request: Request, exc: FlashPayError):
        if exc.http_status >= 500:
            logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.http_status,
            content={
                "code": exc.code,
                "message": exc.message,
                "timestamp": datetime.now(timezone.utc).isoformat()
            },
            headers={"WWW-Authenticate": "Bearer"} if exc.http_status == 401 else None
        )

    # Include routers
    app.include_router(auth_router, prefix="/api/v1/auth", tags=["Auth"])
    app.include_router(transactions_router, prefix="/v1/transactions", tags=["Transactions"])
    app.include_router(accounts_router, prefix="/v1/accounts", tags=["Accounts"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "flashpay_api",
            "version": __version__
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(level=config.log_level, log_format=config.log_format, log_file=config.log_file)
    uvicorn.run(
        "flashpay.api:create_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
