from __future__ import annotations

from fastapi import APIRouter, Depends

from buffer_api.models.schemas import (
    ErrorResponse,
    OnboardingStateSchema,
    OnboardRequest,
    PreparedVaultSchema,
    ProvisionWalletRequest,
    SubmittedVaultSchema,
    SubmitVaultRequest,
    UserRequest,
    WalletSchema,
    WalletStateSchema,
)
from buffer_api.onchain.base import WalletProvider
from buffer_api.routes.deps import error_response, get_onboarding_service, get_wallet_provider
from buffer_api.services.onboarding import OnboardingService


router = APIRouter(prefix="/api/buffer", tags=["Onboarding"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


@router.post(
    "/onboarding",
    response_model=OnboardingStateSchema,
    responses=ERROR_RESPONSES,
    summary="Create the user's wallet and advance onboarding",
)
async def onboard(
    body: OnboardRequest,
    service: OnboardingService = Depends(get_onboarding_service),
):
    try:
        payload = await service.onboard_user(body.userId, body.email)
    except Exception as exc:
        return error_response(exc, "onboard", "ONBOARDING_INTERNAL_ERROR", "Onboarding failed")
    return OnboardingStateSchema.model_validate(payload)


@router.post(
    "/onboarding/status",
    response_model=OnboardingStateSchema,
    responses=ERROR_RESPONSES,
    summary="Get onboarding status",
)
async def onboarding_status(
    body: UserRequest,
    service: OnboardingService = Depends(get_onboarding_service),
):
    try:
        payload = await service.get_status(body.userId)
    except Exception as exc:
        return error_response(
            exc, "onboarding status", "STATUS_FETCH_FAILED", "Failed to get onboarding status"
        )
    return OnboardingStateSchema.model_validate(payload)


@router.post(
    "/onboarding/vault/prepare",
    response_model=PreparedVaultSchema,
    responses=ERROR_RESPONSES,
    summary="Build the unsigned vault creation transaction",
)
async def prepare_vault(
    body: UserRequest,
    service: OnboardingService = Depends(get_onboarding_service),
):
    try:
        payload = await service.prepare_vault_creation(body.userId)
    except Exception as exc:
        return error_response(
            exc, "prepare vault", "ONBOARDING_INTERNAL_ERROR", "Failed to prepare vault creation"
        )
    return PreparedVaultSchema.model_validate(payload)


@router.post(
    "/onboarding/vault/submit",
    response_model=SubmittedVaultSchema,
    responses=ERROR_RESPONSES,
    summary="Confirm the user-signed vault creation transaction",
)
async def submit_vault(
    body: SubmitVaultRequest,
    service: OnboardingService = Depends(get_onboarding_service),
):
    try:
        payload = await service.submit_vault_creation(body.userId, body.txId, body.transactionHash)
    except Exception as exc:
        return error_response(
            exc, "submit vault", "ONBOARDING_INTERNAL_ERROR", "Failed to submit vault creation"
        )
    return SubmittedVaultSchema.model_validate(payload)


@router.post(
    "/wallet/provision",
    response_model=WalletSchema,
    responses=ERROR_RESPONSES,
    summary="Create or fetch the custodial wallet for an email",
)
async def provision_wallet(
    body: ProvisionWalletRequest,
    wallet_provider: WalletProvider = Depends(get_wallet_provider),
):
    try:
        wallet = await wallet_provider.create_or_get_wallet(body.email)
    except Exception as exc:
        return error_response(
            exc, "provision wallet", "WALLET_PROVISION_FAILED", "Failed to provision wallet"
        )
    return WalletSchema(address=wallet.address, chain=wallet.chain)


@router.post(
    "/wallet/state",
    response_model=WalletStateSchema,
    responses=ERROR_RESPONSES,
    summary="Wallet address and native XLM balance for an email",
)
async def wallet_state(
    body: ProvisionWalletRequest,
    wallet_provider: WalletProvider = Depends(get_wallet_provider),
):
    try:
        state = await wallet_provider.get_wallet_state(body.email)
    except Exception as exc:
        return error_response(exc, "wallet state", "WALLET_STATE_FAILED", "Failed to get wallet state")
    return WalletStateSchema(
        address=state.address,
        chain=state.chain,
        type=state.wallet_type,
        nativeToken={"amount": state.native_amount, "rawAmount": state.native_raw_amount},
        customTokens=[],
    )
