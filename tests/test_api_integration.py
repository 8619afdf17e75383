import httpx
import pytest
import pytest_asyncio

from buffer_api.main import app
from buffer_api.models.database import TransactionStatus
from buffer_api.routes.deps import get_chain_rpc, get_vault_protocol, get_wallet_provider
from buffer_api.services.database import get_db
from buffer_api.services.datastore import Datastore
from buffer_api.services.errors import ExternalServiceError
import buffer_api.services.onboarding as onboarding_module
import buffer_api.services.transactions as transactions_module

from conftest import DEFAULT_CONTRACT, VAULT_ADDRESS, WALLET_ADDRESS


USER_ID = "11111111-1111-4111-8111-111111111111"
OTHER_USER_ID = "22222222-2222-4222-8222-222222222222"


def _override_get_db(session):
    async def _override():
        yield session

    return _override


@pytest_asyncio.fixture()
async def client(db_session, wallet_provider, vault_protocol, chain_rpc, monkeypatch):
    monkeypatch.setattr(onboarding_module.settings, "xlm_contract_address", "CASSETXLM")
    monkeypatch.setattr(onboarding_module.settings, "xlm_blend_strategy", "CSTRATEGYBLEND")
    monkeypatch.setattr(transactions_module.settings, "buffer_contract_id", DEFAULT_CONTRACT)
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_wallet_provider] = lambda: wallet_provider
    app.dependency_overrides[get_vault_protocol] = lambda: vault_protocol
    app.dependency_overrides[get_chain_rpc] = lambda: chain_rpc
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as http_client:
        yield http_client
    app.dependency_overrides.clear()


async def _onboard_ready(client) -> None:
    response = await client.post("/api/buffer/onboarding", json={"userId": USER_ID, "email": "a@x.com"})
    assert response.status_code == 200
    prepared = (await client.post("/api/buffer/onboarding/vault/prepare", json={"userId": USER_ID})).json()
    response = await client.post(
        "/api/buffer/onboarding/vault/submit",
        json={"userId": USER_ID, "txId": prepared["txId"], "transactionHash": "0xHASH"},
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_onboarding_flow_over_http(client):
    response = await client.post("/api/buffer/onboarding/status", json={"userId": USER_ID})
    assert response.json() == {
        "userId": USER_ID,
        "stellarAddress": None,
        "vaultAddress": None,
        "status": "NOT_STARTED",
    }

    response = await client.post("/api/buffer/onboarding", json={"userId": USER_ID, "email": "a@x.com"})
    assert response.status_code == 200
    assert response.json()["status"] == "WALLET_CREATED"
    assert response.json()["stellarAddress"] == WALLET_ADDRESS

    response = await client.post("/api/buffer/onboarding/vault/prepare", json={"userId": USER_ID})
    assert response.status_code == 200
    prepared = response.json()
    assert prepared["transactionXDR"] == "AAAAvault-create-xdr"
    assert prepared["predictedVaultAddress"] == VAULT_ADDRESS

    response = await client.post(
        "/api/buffer/onboarding/vault/submit",
        json={"userId": USER_ID, "txId": prepared["txId"], "transactionHash": "0xHASH"},
    )
    assert response.status_code == 200
    assert response.json() == {
        "txId": prepared["txId"],
        "transactionHash": "0xHASH",
        "vaultAddress": VAULT_ADDRESS,
        "status": "READY",
    }

    response = await client.post("/api/buffer/onboarding/vault/prepare", json={"userId": USER_ID})
    assert response.status_code == 409
    assert response.json()["errorCode"] == "VAULT_ALREADY_ACTIVE"


@pytest.mark.asyncio
async def test_prepare_vault_without_wallet_is_conflict(client):
    response = await client.post("/api/buffer/onboarding/vault/prepare", json={"userId": USER_ID})
    assert response.status_code == 409
    assert response.json()["errorCode"] == "WALLET_NOT_READY"


@pytest.mark.asyncio
async def test_onboarding_upstream_failure_is_internal(client, wallet_provider):
    wallet_provider.fail = True
    response = await client.post("/api/buffer/onboarding", json={"userId": USER_ID, "email": "a@x.com"})

    assert response.status_code == 500
    assert response.json()["errorCode"] == "ONBOARDING_INTERNAL_ERROR"
    assert "Crossmint" not in response.json()["message"]


@pytest.mark.asyncio
async def test_vault_chain_failure_is_conflict(client, chain_rpc):
    chain_rpc.final_status = "FAILED"
    await client.post("/api/buffer/onboarding", json={"userId": USER_ID, "email": "a@x.com"})
    prepared = (await client.post("/api/buffer/onboarding/vault/prepare", json={"userId": USER_ID})).json()

    response = await client.post(
        "/api/buffer/onboarding/vault/submit",
        json={"userId": USER_ID, "txId": prepared["txId"], "transactionHash": "0xHASH"},
    )

    assert response.status_code == 409
    assert response.json()["errorCode"] == "VAULT_TX_FAILED"
    assert "FAILED" in response.json()["message"]


@pytest.mark.asyncio
async def test_deposit_lifecycle_over_http(client, db_session):
    await _onboard_ready(client)

    response = await client.post(
        "/api/buffer/deposit/prepare", json={"userId": USER_ID, "amountStroops": "1000000000"}
    )
    assert response.status_code == 200
    prepared = response.json()
    assert prepared["bufferContractId"] == DEFAULT_CONTRACT
    assert prepared["transactionXDR"] == "AAAAdeposit-xdr"
    assert prepared["walletAddress"] == WALLET_ADDRESS

    response = await client.post(
        "/api/buffer/deposit/submit",
        json={"userId": USER_ID, "txId": prepared["txId"], "transactionHash": "abc123"},
    )
    assert response.status_code == 200
    assert response.json() == {"txId": prepared["txId"], "transactionHash": "abc123", "status": "CONFIRMED"}

    record = await Datastore(db_session).get_transaction(USER_ID, prepared["txId"])
    assert record.status == TransactionStatus.CONFIRMED


@pytest.mark.asyncio
async def test_withdraw_cancel_over_http(client):
    await _onboard_ready(client)
    prepared = (
        await client.post("/api/buffer/withdraw/prepare", json={"userId": USER_ID, "sharesAmount": "25"})
    ).json()

    response = await client.post(
        "/api/buffer/withdraw/cancel",
        json={"userId": USER_ID, "txId": prepared["txId"], "reason": "closed signer"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "FAILED"

    response = await client.post(
        "/api/buffer/withdraw/submit",
        json={"userId": USER_ID, "txId": prepared["txId"], "transactionHash": "abc123"},
    )
    assert response.status_code == 409
    assert response.json()["errorCode"] == "TRANSACTION_ALREADY_FINALIZED"


@pytest.mark.asyncio
async def test_legacy_submit_is_rejected(client, db_session):
    await _onboard_ready(client)
    prepared = (
        await client.post("/api/buffer/deposit/prepare", json={"userId": USER_ID, "amountStroops": "100"})
    ).json()

    response = await client.post(
        "/api/buffer/deposit/submit",
        json={
            "userId": USER_ID,
            "txId": prepared["txId"],
            "walletLocator": "email:a@x.com:stellar:smart",
            "transactionXDR": "AAAAsigned",
        },
    )

    assert response.status_code == 409
    assert response.json()["errorCode"] == "USER_SIGNATURE_REQUIRED"
    record = await Datastore(db_session).get_transaction(USER_ID, prepared["txId"])
    assert record.status == TransactionStatus.PENDING


@pytest.mark.asyncio
async def test_submit_for_other_user_is_not_found(client):
    await _onboard_ready(client)
    prepared = (
        await client.post("/api/buffer/deposit/prepare", json={"userId": USER_ID, "amountStroops": "100"})
    ).json()

    response = await client.post(
        "/api/buffer/deposit/submit",
        json={"userId": OTHER_USER_ID, "txId": prepared["txId"], "transactionHash": "abc123"},
    )

    assert response.status_code == 404
    assert response.json()["errorCode"] == "TRANSACTION_NOT_FOUND"


@pytest.mark.asyncio
async def test_deposit_before_onboarding_is_conflict(client):
    response = await client.post(
        "/api/buffer/deposit/prepare", json={"userId": USER_ID, "amountStroops": "100"}
    )
    assert response.status_code == 409
    assert response.json()["errorCode"] == "ONBOARDING_INCOMPLETE"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("path", "body"),
    [
        ("/api/buffer/deposit/prepare", {"userId": USER_ID, "amountStroops": "1.5"}),
        ("/api/buffer/withdraw/prepare", {"userId": USER_ID}),
        ("/api/buffer/onboarding", {"userId": USER_ID, "email": "not-an-email"}),
        ("/api/buffer/deposit/submit", {"userId": USER_ID}),
    ],
)
async def test_invalid_bodies_are_bad_requests(client, path, body):
    response = await client.post(path, json=body)

    assert response.status_code == 400
    assert response.json()["errorCode"] == "INVALID_REQUEST"
    assert response.json()["details"]


@pytest.mark.asyncio
async def test_wallet_provision(client):
    response = await client.post("/api/buffer/wallet/provision", json={"email": "a@x.com"})
    assert response.status_code == 200
    assert response.json() == {"address": WALLET_ADDRESS, "chain": "stellar"}


@pytest.mark.asyncio
async def test_balance_over_http(client, vault_protocol):
    await _onboard_ready(client)

    response = await client.post("/api/buffer/balance", json={"userId": USER_ID})

    assert response.status_code == 200
    assert response.json() == {
        "userId": USER_ID,
        "balance": {
            "availableShares": "900",
            "protectedShares": "100",
            "totalDeposited": "1000",
            "lastDepositTs": 1760600000,
            "version": 2,
        },
    }
    assert vault_protocol.balance_calls == [(DEFAULT_CONTRACT, WALLET_ADDRESS)]


@pytest.mark.asyncio
async def test_balance_before_onboarding_is_conflict(client):
    response = await client.post("/api/buffer/balance", json={"userId": USER_ID})

    assert response.status_code == 409
    assert response.json()["errorCode"] == "ONBOARDING_INCOMPLETE"


@pytest.mark.asyncio
async def test_balance_upstream_failure_uses_fallback(client, vault_protocol, monkeypatch):
    await _onboard_ready(client)

    async def failing_balance(contract_id, address):
        raise ExternalServiceError("DeFindex balance HTTP 502")

    monkeypatch.setattr(vault_protocol, "get_balance", failing_balance)

    response = await client.post("/api/buffer/balance", json={"userId": USER_ID})

    assert response.status_code == 500
    assert response.json()["errorCode"] == "BALANCE_FETCH_FAILED"
    assert response.json()["message"] == "Failed to get buffer balance"


@pytest.mark.asyncio
async def test_wallet_state(client):
    response = await client.post("/api/buffer/wallet/state", json={"email": "a@x.com"})

    assert response.status_code == 200
    assert response.json() == {
        "address": WALLET_ADDRESS,
        "chain": "stellar",
        "type": "smart",
        "nativeToken": {"amount": "12.5", "rawAmount": "125000000"},
        "customTokens": [],
    }


@pytest.mark.asyncio
async def test_wallet_state_failure_uses_fallback(client, wallet_provider):
    wallet_provider.fail = True

    response = await client.post("/api/buffer/wallet/state", json={"email": "a@x.com"})

    assert response.status_code == 500
    assert response.json()["errorCode"] == "WALLET_STATE_FAILED"
