"""
Retail Ledger API Application Factory
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .. import __version__
from ..errors import LedgerError, AuthenticationError, AccountAccessDeniedError
from ..logging_config import get_logger, log_action
from .auth import get_ledger_system
from .session import router as session_router
from .users import router as users_router
from .accounts import router as accounts_router
from .insights import router as insights_router
from .beneficiaries import router as beneficiaries_router
from .transfers import router as transfers_router

logger = get_logger("retail_ledger.api")

STATUS_BY_CATEGORY = {
    "validation": 422,
    "not_found": 404,
    "authorization": 403,
    "business_rule": 409,
    "external": 502,
}


def status_for(error: LedgerError) -> int:
    """HTTP status for a domain error"""
    if isinstance(error, AuthenticationError):
        return 401
    if isinstance(error, AccountAccessDeniedError):
        return 403
    return STATUS_BY_CATEGORY.get(error.category, 500)


async def _settlement_sweep(interval: int) -> None:
    """Periodically fail transfers that waited too long for the network"""
    while True:
        await asyncio.sleep(interval)
        try:
            system = get_ledger_system()
            await run_in_threadpool(system.transfers.expire_pending_transfers)
        except Exception:
            # Keep sweeping; the next pass retries the same transfers
            logger.exception("Settlement sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    system = get_ledger_system()
    interval = system.config.settlement_sweep_interval_seconds
    task = asyncio.create_task(_settlement_sweep(interval)) if interval > 0 else None
    try:
        yield
    finally:
        if task is not None:
            task.cancel()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Retail Ledger API",
        description="Accounts, transaction history, beneficiaries and transfers",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status_code = status_for(exc)
        log_action(
            logger, "warning" if status_code < 500 else "error",
            f"{request.method} {request.url.path} failed: {exc.message}",
            action=exc.code, resource=request.url.path,
            extra={"status_code": status_code, "category": exc.category}
        )
        return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})

    # Include routers
    app.include_router(session_router, prefix="/auth", tags=["Auth"])
    app.include_router(users_router, prefix="/users", tags=["Users"])
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(insights_router, prefix="/insights", tags=["Insights"])
    app.include_router(beneficiaries_router, prefix="/beneficiaries", tags=["Beneficiaries"])
    app.include_router(transfers_router, prefix="/transfers", tags=["Transfers"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "retail_ledger_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Retail Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "auth": "/auth",
                "users": "/users",
                "accounts": "/accounts",
                "insights": "/insights",
                "beneficiaries": "/beneficiaries",
                "transfers": "/transfers",
            }
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "retail_ledger.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
