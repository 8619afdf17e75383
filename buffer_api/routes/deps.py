"""Per-request assembly of services from app-scoped adapters."""
from __future__ import annotations

import logging

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from buffer_api.onchain.base import ChainRpc, VaultProtocol, WalletProvider
from buffer_api.services.database import get_db
from buffer_api.services.datastore import Datastore
from buffer_api.services.errors import ErrorCategory, BufferServiceError, resolve_error
from buffer_api.services.onboarding import OnboardingService
from buffer_api.services.transactions import TransactionService

logger = logging.getLogger(__name__)


def get_wallet_provider(request: Request) -> WalletProvider:
    return request.app.state.wallet_provider


def get_vault_protocol(request: Request) -> VaultProtocol:
    return request.app.state.vault_protocol


def get_chain_rpc(request: Request) -> ChainRpc:
    return request.app.state.chain_rpc


async def get_datastore(db: AsyncSession = Depends(get_db)) -> Datastore:
    return Datastore(db)


async def get_onboarding_service(
    datastore: Datastore = Depends(get_datastore),
    wallet_provider: WalletProvider = Depends(get_wallet_provider),
    vault_protocol: VaultProtocol = Depends(get_vault_protocol),
    chain_rpc: ChainRpc = Depends(get_chain_rpc),
) -> OnboardingService:
    return OnboardingService(datastore, wallet_provider, vault_protocol, chain_rpc)


async def get_transaction_service(
    datastore: Datastore = Depends(get_datastore),
    vault_protocol: VaultProtocol = Depends(get_vault_protocol),
) -> TransactionService:
    return TransactionService(datastore, vault_protocol)


def error_response(
    exc: Exception,
    operation: str,
    fallback_code: str,
    fallback_message: str,
) -> JSONResponse:
    resolved = resolve_error(exc, fallback_code, fallback_message)
    if isinstance(exc, BufferServiceError) and exc.category != ErrorCategory.INTERNAL:
        logger.warning("%s rejected (%s): %s", operation, resolved.error_code, exc)
    else:
        logger.error("%s failed: %s", operation, exc, exc_info=True)
    return JSONResponse(status_code=resolved.status_code, content=resolved.to_payload())
