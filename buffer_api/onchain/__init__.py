"""On-chain and custody provider integrations."""

from buffer_api.onchain.base import (
    BufferBalance,
    ChainRpc,
    ChainTransaction,
    ChainTxStatus,
    VaultCreation,
    VaultProtocol,
    WalletInfo,
    WalletProvider,
    WalletState,
)
from buffer_api.onchain.crossmint import CrossmintClient
from buffer_api.onchain.defindex import DeFindexClient
from buffer_api.onchain.soroban_rpc import SorobanRpcClient

__all__ = [
    "BufferBalance",
    "ChainRpc",
    "ChainTransaction",
    "ChainTxStatus",
    "CrossmintClient",
    "DeFindexClient",
    "SorobanRpcClient",
    "VaultCreation",
    "VaultProtocol",
    "WalletInfo",
    "WalletProvider",
    "WalletState",
]
