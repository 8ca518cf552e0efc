"""
IdentityChain - Signed Identity Chains

Main application entry point.

Every owner has one append-only chain of signed blocks.
Only the chain's root key can extend it.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .core import IdentityService
from .db import ChainStore, create_chain_store
from .db.config import ServerConfig
from .observability import (
    setup_logging,
    get_logger,
    RequestContextMiddleware,
    check_health,
    get_metrics,
)
from .api.routes import router

# Setup logging at import time
setup_logging()
logger = get_logger(__name__)


def create_app(store: Optional[ChainStore] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        store: ChainStore to serve. When None, one is built from the
            environment at startup (see identitychain.db.config).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        chain_store = store if store is not None else create_chain_store()
        app.state.store = chain_store
        app.state.service = IdentityService(chain_store)

        logger.info(
            "Application startup complete",
            chain_count=chain_store.count(),
            store_type=type(chain_store).__name__,
        )

        yield

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="IdentityChain",
        description="""
## Signed Identity Chains

Each owner has one hash-linked chain of blocks. Every block is signed
by the chain's root Ed25519 key.

### Appending

Appends require auth evidence:
- a long phrase, always
- 2 secondary factors (email OTP, TOTP, hardware key)
- 3 secondary factors when `risk` is `high`

### Verification

`GET /chains/{owner_id}/verify` re-derives every link hash and
signature and reports the first broken block.
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add request context middleware for logging
    app.add_middleware(RequestContextMiddleware)

    app.include_router(router)

    @app.get("/healthz", tags=["System"])
    async def healthz():
        """Liveness check. Returns 200 if the process is serving."""
        return {"status": "ok"}

    @app.get("/health", tags=["System"])
    async def health(request: Request):
        """
        Detailed health check.

        Checks:
        - Service liveness
        - Chain store reachability and chain count

        Returns 200 if healthy, 503 if unhealthy.
        """
        health_status = check_health(store=request.app.state.store)
        return JSONResponse(
            status_code=200 if health_status.healthy else 503,
            content={
                "status": "healthy" if health_status.healthy else "unhealthy",
                "checks": health_status.checks,
                "duration_ms": health_status.duration_ms,
            },
        )

    @app.get("/metrics", tags=["System"])
    async def metrics():
        """
        Get application metrics.

        Returns counters and latency percentiles.
        """
        return get_metrics().get_summary()

    return app


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured address."""
    import uvicorn

    config = ServerConfig.from_env()
    logger.info("Listening", host=config.host, port=config.port)
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    run()
