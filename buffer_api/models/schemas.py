from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

NUMERIC_STRING = r"^\d+$"
SIGNED_INTEGER = r"^-?\d+$"


# --- request bodies -------------------------------------------------------


class OnboardRequest(BaseModel):
    userId: str = Field(min_length=1, validation_alias=AliasChoices("userId", "user_id"))
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class UserRequest(BaseModel):
    userId: str = Field(min_length=1, validation_alias=AliasChoices("userId", "user_id"))


class SubmitVaultRequest(BaseModel):
    userId: str = Field(min_length=1, validation_alias=AliasChoices("userId", "user_id"))
    txId: str = Field(min_length=1, validation_alias=AliasChoices("txId", "tx_id"))
    transactionHash: str = Field(
        min_length=1, validation_alias=AliasChoices("transactionHash", "transaction_hash")
    )


class DepositRequest(BaseModel):
    userId: str = Field(min_length=1, validation_alias=AliasChoices("userId", "user_id"))
    amountStroops: str = Field(
        pattern=NUMERIC_STRING, validation_alias=AliasChoices("amountStroops", "amount_stroops")
    )


class WithdrawRequest(BaseModel):
    userId: str = Field(min_length=1, validation_alias=AliasChoices("userId", "user_id"))
    sharesAmount: str = Field(
        pattern=NUMERIC_STRING, validation_alias=AliasChoices("sharesAmount", "shares_amount")
    )


class ConfirmTransactionRequest(BaseModel):
    userId: str = Field(min_length=1)
    txId: str = Field(min_length=1)
    transactionHash: str = Field(min_length=1)


class LegacySubmitRequest(BaseModel):
    """Pre-signed submission shape from when the server signed on the user's behalf."""

    userId: str = Field(min_length=1)
    txId: str = Field(min_length=1)
    walletLocator: str = Field(min_length=1)
    transactionXDR: str = Field(min_length=1)


class CancelTransactionRequest(BaseModel):
    userId: str = Field(min_length=1)
    txId: str = Field(min_length=1)
    reason: Optional[str] = Field(default=None, max_length=500)


class ProvisionWalletRequest(BaseModel):
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# --- responses ------------------------------------------------------------


class OnboardingStateSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    userId: str = Field(validation_alias=AliasChoices("userId", "user_id"))
    stellarAddress: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("stellarAddress", "stellar_address")
    )
    vaultAddress: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("vaultAddress", "vault_address")
    )
    status: str


class PreparedVaultSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    txId: str = Field(validation_alias=AliasChoices("txId", "tx_id"))
    transactionXDR: str = Field(validation_alias=AliasChoices("transactionXDR", "transaction_xdr"))
    walletAddress: str = Field(validation_alias=AliasChoices("walletAddress", "wallet_address"))
    predictedVaultAddress: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("predictedVaultAddress", "predicted_vault_address"),
    )


class SubmittedVaultSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    txId: str = Field(validation_alias=AliasChoices("txId", "tx_id"))
    transactionHash: str = Field(validation_alias=AliasChoices("transactionHash", "transaction_hash"))
    vaultAddress: str = Field(validation_alias=AliasChoices("vaultAddress", "vault_address"))
    status: Literal["READY"] = "READY"


class PreparedTransactionSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    txId: str = Field(validation_alias=AliasChoices("txId", "tx_id"))
    transactionXDR: str = Field(validation_alias=AliasChoices("transactionXDR", "transaction_xdr"))
    walletAddress: str = Field(validation_alias=AliasChoices("walletAddress", "wallet_address"))
    bufferContractId: str = Field(
        validation_alias=AliasChoices("bufferContractId", "buffer_contract_id")
    )


class TransactionStatusSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    txId: str = Field(validation_alias=AliasChoices("txId", "tx_id"))
    transactionHash: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("transactionHash", "transaction_hash")
    )
    status: Literal["CONFIRMED", "FAILED"]


class WalletSchema(BaseModel):
    address: str
    chain: str


class NativeTokenSchema(BaseModel):
    amount: str
    rawAmount: str


class WalletStateSchema(BaseModel):
    address: str
    chain: str
    type: str
    nativeToken: NativeTokenSchema
    customTokens: list[Any] = Field(default_factory=list)


class BufferBalanceSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    availableShares: str = Field(validation_alias=AliasChoices("availableShares", "available_shares"))
    protectedShares: str = Field(validation_alias=AliasChoices("protectedShares", "protected_shares"))
    totalDeposited: str = Field(validation_alias=AliasChoices("totalDeposited", "total_deposited"))
    lastDepositTs: int = Field(
        default=0, validation_alias=AliasChoices("lastDepositTs", "last_deposit_ts")
    )
    version: int = 0


class BalanceSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    userId: str = Field(validation_alias=AliasChoices("userId", "user_id"))
    balance: BufferBalanceSchema


class ErrorResponse(BaseModel):
    errorCode: str
    message: str
    details: Any = None


# --- upstream payloads, validated once at the adapter boundary ------------


class CrossmintWalletPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    address: str = Field(min_length=1)
    chainType: Optional[str] = None
    chain: Optional[str] = None
    type: Optional[str] = None


class DeFindexCreateVaultPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    xdr: str = Field(min_length=1, validation_alias=AliasChoices("xdr", "transactionXDR"))
    predictedVaultAddress: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("predictedVaultAddress", "predicted_vault_address")
    )


class DeFindexTransactionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    xdr: str = Field(min_length=1, validation_alias=AliasChoices("xdr", "transactionXDR"))


class DeFindexVaultInfoPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    address: Optional[str] = None
    name: Optional[str] = None


class SorobanTransactionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str
    latestLedger: Optional[int] = None
    ledger: Optional[int] = None
    createdAt: Optional[str] = None


class BufferBalancePayload(BaseModel):
    """Buffer position as reported upstream.

    Older deployments report ``{shares, assets}`` only; that shape maps to
    everything available and nothing protected.
    """

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    availableShares: str = Field(pattern=SIGNED_INTEGER)
    protectedShares: str = Field(default="0", pattern=SIGNED_INTEGER)
    totalDeposited: str = Field(pattern=SIGNED_INTEGER)
    lastDepositTs: int = 0
    version: int = 0

    @model_validator(mode="before")
    @classmethod
    def from_legacy_shape(cls, data):
        if isinstance(data, dict) and "availableShares" not in data and "shares" in data:
            return {"availableShares": data["shares"], "totalDeposited": data.get("assets")}
        return data


class CrossmintBalanceEntry(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    symbol: Optional[str] = Field(default=None, validation_alias=AliasChoices("symbol", "token"))
    amount: str
    rawAmount: Optional[str] = None
