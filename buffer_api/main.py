from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Configure root logger so all buffer_api.* module loggers emit to console
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

from buffer_api.config import database_dsn_safe, running_in_hosted_env, settings
from buffer_api.onchain import CrossmintClient, DeFindexClient, SorobanRpcClient
from buffer_api.routes import buffer, health, onboarding
from buffer_api.services.database import create_local_schema


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger(__name__)
    logger.info("Database DSN: %s", database_dsn_safe())
    if running_in_hosted_env() and settings.database_url.startswith("sqlite"):
        logger.warning(
            "DATABASE_PRIVATE_URL/DATABASE_URL not set to Postgres in hosted env. "
            "Falling back to SQLite; data will NOT persist across deploys."
        )

    # --- local schema (non-fatal) ---
    try:
        await create_local_schema()
    except Exception as exc:
        logger.error("Local schema creation failed on startup (non-fatal): %s", exc)

    if not settings.buffer_contract_id:
        logger.warning("BUFFER_CONTRACT_ID not set; users without a per-user contract cannot deposit")

    app.state.wallet_provider = CrossmintClient()
    app.state.vault_protocol = DeFindexClient()
    app.state.chain_rpc = SorobanRpcClient()
    logger.info(
        "Integrations ready: %r %r %r",
        app.state.wallet_provider,
        app.state.vault_protocol,
        app.state.chain_rpc,
    )

    yield


app = FastAPI(
    title="Buffer Wallet API",
    description="Wallet onboarding, vault provisioning and buffer fund movements",
    version=settings.api_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def invalid_request_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "errorCode": "INVALID_REQUEST",
            "message": "Invalid request payload.",
            "details": jsonable_encoder(exc.errors()),
        },
    )


app.include_router(health.router, tags=["Health"])
app.include_router(onboarding.router)
app.include_router(buffer.router)


@app.get("/")
async def root() -> dict:
    return {"message": "Buffer Wallet API", "docs": "/docs"}
