"""
Peer Lending API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .error_handlers import register_error_handlers
from .auth import router as auth_router
from .users import router as users_router
from .network import router as network_router
from .invites import router as invites_router
from .loans import router as loans_router
from .dashboard import router as dashboard_router
from .admin import router as admin_router
from .. import __version__
from ..config import get_config
from ..logging_config import setup_logging
from ..system import LendingSystem


def create_app(system: Optional[LendingSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    config = system.config if system else get_config()
    setup_logging(config.log_level, log_format=config.log_format)
    
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        lending_system = app.state.lending_system
        await lending_system.initialize()
        yield
        await lending_system.close()
    
    app = FastAPI(
        title="Peer Lending API",
        description="Peer-to-peer loans between networked lenders and borrowers",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.lending_system = system or LendingSystem(config=config)
    
    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    
    register_error_handlers(app)
    
    # Include routers
    app.include_router(auth_router, prefix="/auth", tags=["Auth"])
    app.include_router(users_router, prefix="/users", tags=["Users"])
    app.include_router(network_router, prefix="/network", tags=["Network"])
    app.include_router(invites_router, prefix="/invites", tags=["Invites"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(dashboard_router, prefix="/dashboard", tags=["Dashboard"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])
    
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "peer_lending_api",
            "version": __version__
        }
    
    return app
