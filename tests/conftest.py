import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from buffer_api.models.database import Base
from buffer_api.onchain.base import BufferBalance, ChainTransaction, VaultCreation, WalletInfo, WalletState
from buffer_api.services.datastore import Datastore
from buffer_api.services.errors import ExternalServiceError


WALLET_ADDRESS = "GBUFFERWALLETADDRESS0000000000000000000000000000000000001"
VAULT_ADDRESS = "CVAULTPREDICTEDADDRESS00000000000000000000000000000000001"
DEFAULT_CONTRACT = "CBUFFERDEFAULTCONTRACT000000000000000000000000000000000001"


@pytest_asyncio.fixture()
async def db_session(tmp_path) -> AsyncSession:
    db_path = tmp_path / "test.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(engine, expire_on_commit=False)

    async with session_maker() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture()
async def datastore(db_session) -> Datastore:
    return Datastore(db_session)


class FakeWalletProvider:
    def __init__(self, address: str = WALLET_ADDRESS, fail: bool = False):
        self.address = address
        self.fail = fail
        self.calls: list[str] = []

    async def create_or_get_wallet(self, email: str) -> WalletInfo:
        self.calls.append(email)
        if self.fail:
            raise ExternalServiceError("Crossmint unavailable")
        return WalletInfo(address=self.address, chain="stellar", wallet_id=self.address)

    async def get_wallet_state(self, email: str) -> WalletState:
        self.calls.append(email)
        if self.fail:
            raise ExternalServiceError("Crossmint unavailable")
        return WalletState(
            address=self.address,
            chain="stellar",
            native_amount="12.5",
            native_raw_amount="125000000",
        )


class FakeVaultProtocol:
    def __init__(self, predicted_address: str | None = VAULT_ADDRESS, confirmed: bool = True):
        self.predicted_address = predicted_address
        self.confirmed = confirmed
        self.create_calls: list[tuple] = []
        self.confirm_calls: list[str] = []
        self.deposit_calls: list[tuple] = []
        self.withdraw_calls: list[tuple] = []
        self.balance_calls: list[tuple] = []
        self.balance = BufferBalance(
            available_shares="900",
            protected_shares="100",
            total_deposited="1000",
            last_deposit_ts=1760600000,
            version=2,
        )

    async def create_vault(self, user_address, asset_address, strategy_address) -> VaultCreation:
        self.create_calls.append((user_address, asset_address, strategy_address))
        return VaultCreation(
            transaction_xdr="AAAAvault-create-xdr",
            predicted_vault_address=self.predicted_address,
        )

    async def wait_for_vault_confirmation(self, vault_address: str) -> bool:
        self.confirm_calls.append(vault_address)
        return self.confirmed

    async def build_deposit_transaction(self, contract_id, address, amount) -> str:
        self.deposit_calls.append((contract_id, address, amount))
        return "AAAAdeposit-xdr"

    async def build_withdraw_transaction(self, contract_id, address, shares) -> str:
        self.withdraw_calls.append((contract_id, address, shares))
        return "AAAAwithdraw-xdr"

    async def get_balance(self, contract_id, address) -> BufferBalance:
        self.balance_calls.append((contract_id, address))
        return self.balance


class FakeChainRpc:
    def __init__(self, final_status: str = "SUCCESS"):
        self.final_status = final_status
        self.waited: list[str] = []

    async def get_transaction_status(self, tx_hash: str) -> ChainTransaction:
        return ChainTransaction(hash=tx_hash, status=self.final_status)

    async def wait_for_transaction(self, tx_hash: str) -> ChainTransaction:
        self.waited.append(tx_hash)
        return ChainTransaction(hash=tx_hash, status=self.final_status, ledger=123)


@pytest.fixture()
def wallet_provider() -> FakeWalletProvider:
    return FakeWalletProvider()


@pytest.fixture()
def vault_protocol() -> FakeVaultProtocol:
    return FakeVaultProtocol()


@pytest.fixture()
def chain_rpc() -> FakeChainRpc:
    return FakeChainRpc()
