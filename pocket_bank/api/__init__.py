"""
Pocket Bank API Application Factory
"""

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from .. import __version__
from ..config import get_config
from ..logging_config import setup_logging
from .account import router as account_router
from .auth import router as auth_router
from .exception_handlers import setup_exception_handlers
from .system import BankingSystem


def create_app(system: Optional[BankingSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    system = system or BankingSystem()

    app = FastAPI(
        title="Pocket Bank API",
        description="Accounts, balances, transfers and history for the pocket bank dashboard",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.banking_system = system

    # Cookies need explicit origins, a wildcard is rejected by browsers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=system.config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_exception_handlers(app)

    app.include_router(auth_router, prefix="/auth", tags=["Auth"])
    app.include_router(account_router, prefix="/account", tags=["Account"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "pocket_bank_api",
            "version": __version__
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Configure logging and serve the API with uvicorn"""
    config = get_config()
    setup_logging(config.log_level, config.log_format, log_file=config.log_file)
    app = create_app()
    try:
        uvicorn.run(app, host=host or config.api_host, port=port or config.api_port)
    finally:
        app.state.banking_system.close()
