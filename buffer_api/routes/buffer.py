from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from buffer_api.models.database import TransactionType
from buffer_api.models.schemas import (
    BalanceSchema,
    CancelTransactionRequest,
    DepositRequest,
    ErrorResponse,
    PreparedTransactionSchema,
    TransactionStatusSchema,
    UserRequest,
    WithdrawRequest,
)
from buffer_api.routes.deps import error_response, get_transaction_service
from buffer_api.services.transactions import TransactionService


router = APIRouter(prefix="/api/buffer", tags=["Buffer"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


@router.post(
    "/balance",
    response_model=BalanceSchema,
    responses=ERROR_RESPONSES,
    summary="Live buffer position for the user",
)
async def get_balance(
    body: UserRequest,
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        payload = await service.get_balance(body.userId)
    except Exception as exc:
        return error_response(exc, "get balance", "BALANCE_FETCH_FAILED", "Failed to get buffer balance")
    return BalanceSchema.model_validate(payload)


@router.post(
    "/deposit/prepare",
    response_model=PreparedTransactionSchema,
    responses=ERROR_RESPONSES,
    summary="Build an unsigned deposit transaction",
)
async def prepare_deposit(
    body: DepositRequest,
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        payload = await service.prepare_deposit(body.userId, body.amountStroops)
    except Exception as exc:
        return error_response(
            exc, "prepare deposit", "DEPOSIT_PREPARE_FAILED", "Failed to prepare deposit transaction"
        )
    return PreparedTransactionSchema.model_validate(payload)


@router.post(
    "/deposit/submit",
    response_model=TransactionStatusSchema,
    responses=ERROR_RESPONSES,
    summary="Record the hash of a user-signed deposit",
)
async def submit_deposit(
    body: dict[str, Any] = Body(...),
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        payload = await service.confirm_payload(body, kind=TransactionType.DEPOSIT)
    except Exception as exc:
        return error_response(
            exc, "confirm deposit", "DEPOSIT_CONFIRM_FAILED", "Failed to confirm deposit transaction"
        )
    return TransactionStatusSchema.model_validate(payload)


@router.post(
    "/deposit/cancel",
    response_model=TransactionStatusSchema,
    responses=ERROR_RESPONSES,
    summary="Mark an unsigned deposit as abandoned",
)
async def cancel_deposit(
    body: CancelTransactionRequest,
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        payload = await service.cancel(body.userId, body.txId, body.reason, kind=TransactionType.DEPOSIT)
    except Exception as exc:
        return error_response(
            exc, "cancel deposit", "DEPOSIT_CANCEL_FAILED", "Failed to cancel deposit transaction"
        )
    return TransactionStatusSchema.model_validate(payload)


@router.post(
    "/withdraw/prepare",
    response_model=PreparedTransactionSchema,
    responses=ERROR_RESPONSES,
    summary="Build an unsigned withdraw transaction",
)
async def prepare_withdraw(
    body: WithdrawRequest,
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        payload = await service.prepare_withdraw(body.userId, body.sharesAmount)
    except Exception as exc:
        return error_response(
            exc, "prepare withdraw", "WITHDRAW_PREPARE_FAILED", "Failed to prepare withdraw transaction"
        )
    return PreparedTransactionSchema.model_validate(payload)


@router.post(
    "/withdraw/submit",
    response_model=TransactionStatusSchema,
    responses=ERROR_RESPONSES,
    summary="Record the hash of a user-signed withdrawal",
)
async def submit_withdraw(
    body: dict[str, Any] = Body(...),
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        payload = await service.confirm_payload(body, kind=TransactionType.WITHDRAW)
    except Exception as exc:
        return error_response(
            exc, "confirm withdraw", "WITHDRAW_CONFIRM_FAILED", "Failed to confirm withdraw transaction"
        )
    return TransactionStatusSchema.model_validate(payload)


@router.post(
    "/withdraw/cancel",
    response_model=TransactionStatusSchema,
    responses=ERROR_RESPONSES,
    summary="Mark an unsigned withdrawal as abandoned",
)
async def cancel_withdraw(
    body: CancelTransactionRequest,
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        payload = await service.cancel(body.userId, body.txId, body.reason, kind=TransactionType.WITHDRAW)
    except Exception as exc:
        return error_response(
            exc, "cancel withdraw", "WITHDRAW_CANCEL_FAILED", "Failed to cancel withdraw transaction"
        )
    return TransactionStatusSchema.model_validate(payload)
