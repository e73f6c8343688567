"""
Integration Tests for the launch orchestrator and the Bags client

The Bags API is replaced by an httpx MockTransport, so these tests check the
exact requests the orchestrator sends and how responses and failures come back.

Test Coverage:
- Fee claimers are always creator, charity, platform (zero-bps entries kept)
- Invalid addresses are rejected before any network call
- The partner wallet is sent with every fee-share config
- Base58 transactions are handed back base64-encoded
- SOL to lamports conversion floors and rejects non-finite amounts
- Address parsing and wallet signature checks
- HTTP failures map to BagsApiError with the right code and retryable flag
- A missing API key fails fast with ConfigurationError
"""

import base64
import json
from decimal import Decimal

import httpx
import pytest
from solders.keypair import Keypair

from goodbags.addresses import is_valid_solana_address, verify_wallet_signature
from goodbags.bags import BagsClient, encode_transaction, lamports_from_sol
from goodbags.errors import BagsApiError, ConfigurationError, InvalidAddressError
from goodbags.fee_split import compute_fee_split
from goodbags.launch import LaunchOrchestrator
from goodbags.models import TokenLaunchParams

from .conftest import bags_handler, mock_http_client, random_address

PLATFORM = "So11111111111111111111111111111111111111112"
PARTNER = "11111111111111111111111111111111"


def no_network(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected network call to {request.url}")


def make_orchestrator(handler, partner: str = PARTNER) -> LaunchOrchestrator:
    client = BagsClient("test-key", base_url="https://bags.test/api/v1", http_client=mock_http_client(handler))
    return LaunchOrchestrator(client, platform_wallet=PLATFORM, partner_wallet=partner)


def launch_params(creator: str, **overrides) -> TokenLaunchParams:
    data = {"name": "Good Token", "symbol": "$good", "creator_wallet": creator, "initial_buy_amount_sol": "0.5"}
    data.update(overrides)
    return TokenLaunchParams(**data)


# --- Fee claimers ---

def test_build_fee_claimers_order_and_bps():
    orchestrator = make_orchestrator(no_network)
    creator, charity = random_address(), random_address()
    claimers = orchestrator.build_fee_claimers(creator, charity, compute_fee_split(0))

    assert [c.wallet for c in claimers] == [creator, charity, PLATFORM]
    assert [c.bps for c in claimers] == [2000, 7500, 500]


def test_build_fee_claimers_keeps_zero_bps_creator():
    orchestrator = make_orchestrator(no_network)
    creator, charity = random_address(), random_address()
    claimers = orchestrator.build_fee_claimers(creator, charity, compute_fee_split(100))

    assert len(claimers) == 3
    assert claimers[0].wallet == creator
    assert claimers[0].bps == 0
    assert sum(c.bps for c in claimers) == 10000


@pytest.mark.parametrize("field", ["creator", "charity"])
def test_build_fee_claimers_rejects_invalid_address(field: str):
    orchestrator = make_orchestrator(no_network)
    wallets = {"creator": random_address(), "charity": random_address()}
    wallets[field] = "not-a-wallet"
    with pytest.raises(InvalidAddressError) as exc_info:
        orchestrator.build_fee_claimers(wallets["creator"], wallets["charity"], compute_fee_split(0))
    assert exc_info.value.field == f"{field} wallet"


def test_build_fee_claimers_rejects_invalid_platform_wallet():
    client = BagsClient("test-key", http_client=mock_http_client(no_network))
    orchestrator = LaunchOrchestrator(client, platform_wallet="", partner_wallet=PARTNER)
    with pytest.raises(InvalidAddressError):
        orchestrator.build_fee_claimers(random_address(), random_address(), compute_fee_split(0))


# --- Fee-share config ---

@pytest.mark.asyncio
async def test_create_fee_share_config_request_shape():
    calls: list = []
    orchestrator = make_orchestrator(bags_handler(calls))
    mint, creator, charity = random_address(), random_address(), random_address()

    config = await orchestrator.create_fee_share_config(mint, creator, charity, donate_percent=50)

    assert len(calls) == 1
    request = calls[0]
    assert request.headers["x-api-key"] == "test-key"
    body = json.loads(request.content)
    assert body["payer"] == creator
    assert body["baseMint"] == mint
    assert body["claimersArray"] == [creator, charity, PLATFORM]
    assert body["basisPointsArray"] == [1000, 8500, 500]
    assert body["partner"] == PARTNER

    assert config.split.charity_bps == 8500
    assert config.transactions == [base64.b64encode(b"config-tx").decode()]


@pytest.mark.asyncio
@pytest.mark.parametrize("bad", ["mint", "creator", "charity"])
async def test_create_fee_share_config_invalid_address_makes_no_call(bad: str):
    orchestrator = make_orchestrator(no_network)
    args = {"mint": random_address(), "creator": random_address(), "charity": random_address()}
    args[bad] = "0OIl-invalid"
    with pytest.raises(InvalidAddressError):
        await orchestrator.create_fee_share_config(args["mint"], args["creator"], args["charity"])


@pytest.mark.asyncio
async def test_create_fee_share_config_requires_partner_wallet():
    orchestrator = make_orchestrator(no_network, partner="")
    with pytest.raises(InvalidAddressError):
        await orchestrator.create_fee_share_config(random_address(), random_address(), random_address())


# --- Launch transaction ---

@pytest.mark.asyncio
async def test_create_launch_transaction_converts_sol_to_lamports():
    calls: list = []
    orchestrator = make_orchestrator(bags_handler(calls))
    mint, key, creator = random_address(), random_address(), random_address()

    launch = await orchestrator.create_launch_transaction(
        mint, "https://ipfs.io/ipfs/meta", key, creator, Decimal("0.123456789")
    )

    body = json.loads(calls[0].content)
    assert body["initialBuyLamports"] == 123456789
    assert body["configKey"] == key
    assert body["wallet"] == creator
    assert body["ipfs"] == "https://ipfs.io/ipfs/meta"
    assert launch.transaction == base64.b64encode(b"launch-tx").decode()


@pytest.mark.asyncio
async def test_create_launch_transaction_requires_metadata_url():
    orchestrator = make_orchestrator(no_network)
    with pytest.raises(ValueError, match="metadata_url"):
        await orchestrator.create_launch_transaction(random_address(), "", random_address(), random_address())


@pytest.mark.asyncio
async def test_create_launch_transaction_rejects_invalid_config_key():
    orchestrator = make_orchestrator(no_network)
    with pytest.raises(InvalidAddressError):
        await orchestrator.create_launch_transaction(random_address(), "https://x.test/m", "config123", random_address())


# --- Full launch ---

@pytest.mark.asyncio
async def test_prepare_launch_runs_three_steps_in_order():
    calls: list = []
    orchestrator = make_orchestrator(bags_handler(calls))
    creator, charity = random_address(), random_address()

    plan = await orchestrator.prepare_launch(launch_params(creator), charity, donate_percent=25)

    paths = [c.url.path for c in calls]
    assert paths == [
        "/api/v1/token-launch/create-token-info",
        "/api/v1/fee-share/config",
        "/api/v1/token-launch/create-launch-transaction",
    ]
    info_body = json.loads(calls[0].content)
    assert info_body["symbol"] == "GOOD"
    fee_body = json.loads(calls[1].content)
    assert fee_body["baseMint"] == plan.token.token_mint
    launch_body = json.loads(calls[2].content)
    assert launch_body["configKey"] == plan.fee_share.config_key
    assert launch_body["initialBuyLamports"] == 500_000_000
    assert plan.fee_share.split.creator_bps == 1500


@pytest.mark.asyncio
async def test_prepare_launch_bad_charity_wallet_skips_metadata_upload():
    orchestrator = make_orchestrator(no_network)
    with pytest.raises(InvalidAddressError):
        await orchestrator.prepare_launch(launch_params(random_address()), "bad-charity")


@pytest.mark.asyncio
async def test_prepare_launch_bad_tier_skips_metadata_upload():
    orchestrator = make_orchestrator(no_network)
    with pytest.raises(ValueError, match="Donation percent"):
        await orchestrator.prepare_launch(launch_params(random_address()), random_address(), donate_percent=60)


# --- Bags client errors ---

def test_client_requires_api_key():
    with pytest.raises(ConfigurationError):
        BagsClient(None)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, retryable",
    [(400, False), (401, False), (429, True), (500, True), (503, True)],
)
async def test_http_errors_map_to_bags_api_error(status: int, retryable: bool):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"error": "boom"})

    orchestrator = make_orchestrator(handler)
    with pytest.raises(BagsApiError) as exc_info:
        await orchestrator.create_token_info(launch_params(random_address()))
    assert exc_info.value.code == status
    assert exc_info.value.retryable is retryable
    assert exc_info.value.user_message


@pytest.mark.asyncio
async def test_timeout_is_retryable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    orchestrator = make_orchestrator(handler)
    with pytest.raises(BagsApiError) as exc_info:
        await orchestrator.create_token_info(launch_params(random_address()))
    assert exc_info.value.code == 408
    assert exc_info.value.retryable


@pytest.mark.asyncio
async def test_unsuccessful_envelope_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "error": "Symbol taken"})

    orchestrator = make_orchestrator(handler)
    with pytest.raises(BagsApiError, match="Symbol taken"):
        await orchestrator.create_token_info(launch_params(random_address()))


def test_lamports_from_sol_floors():
    assert lamports_from_sol("1") == 1_000_000_000
    assert lamports_from_sol(Decimal("0.0000000019")) == 1
    assert lamports_from_sol(0) == 0


@pytest.mark.parametrize("amount", ["Infinity", "-Infinity", "NaN", "sNaN", float("inf"), "lots"])
def test_lamports_from_sol_rejects_non_numbers(amount):
    with pytest.raises(ValueError):
        lamports_from_sol(amount)


def test_encode_transaction_rejects_empty():
    with pytest.raises(BagsApiError):
        encode_transaction("")


@pytest.mark.parametrize(
    "address, valid",
    [(PLATFORM, True), (PARTNER, True), ("1" * 31, False), ("0OIl-invalid", False), ("", False), (None, False), (42, False)],
)
def test_is_valid_solana_address(address, valid: bool):
    assert is_valid_solana_address(address) is valid


def test_verify_wallet_signature():
    keypair = Keypair()
    wallet = str(keypair.pubkey())
    message = "Connect this wallet to GoodBags"
    signature = str(keypair.sign_message(message.encode("utf-8")))

    assert verify_wallet_signature(wallet, message, signature)
    assert not verify_wallet_signature(wallet, "A different message", signature)
    assert not verify_wallet_signature(random_address(), message, signature)
    assert not verify_wallet_signature(wallet, message, "not-a-signature")
