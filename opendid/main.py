"""
OpenDID FastAPI Main Application
Entry point for the ENS-anchored DID claims service.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from opendid import __version__, services
from opendid.config import config
from opendid.database import init_database, record_event
from opendid.errors import OpenDIDError
from opendid.routes import registry, ens, history, claims

logging.basicConfig(
    level=config.API_LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="OpenDID Claims Registry",
    description="ENS-anchored decentralized identity claims with a signature-gated ledger",
    version=__version__,
    docs_url="/api/docs",
    redoc_url="/api/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(registry.router, prefix="/api", tags=["Claims Ledger"])
app.include_router(history.router, prefix="/api", tags=["History"])
app.include_router(ens.router, prefix="/api", tags=["ENS Gateway"])
app.include_router(claims.router, prefix="/api", tags=["Claims"])


@app.exception_handler(OpenDIDError)
async def opendid_error_handler(request: Request, exc: OpenDIDError):
    """Typed ledger/gateway failures as JSON with their status."""
    logger.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
    return JSONResponse(
        status_code=exc.status,
        content={"error": exc.code, "detail": exc.message, "extra": exc.extra}
    )


@app.on_event("startup")
async def startup_event():
    """Initialize the event journal and subscribe it to both contracts."""
    init_database()
    for event_log in (services.claims_registry.events, services.gateway.events):
        event_log.unsubscribe(record_event)
        event_log.subscribe(record_event)
    logger.info(f"[+] Claims ledger at {services.claims_registry.address}")


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "OpenDID Claims Registry",
        "version": __version__,
        "ledger_address": services.claims_registry.address,
        "gateway_address": services.gateway.address,
        "ens_backend": "web3" if config.is_ens_configured() else "in-memory",
        "wallet_configured": config.is_wallet_configured(),
        "ipfs_configured": config.is_ipfs_configured()
    }


if __name__ == "__main__":
    uvicorn.run(
        "opendid.main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        log_level=config.API_LOG_LEVEL,
        reload=True
    )
