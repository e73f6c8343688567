import importlib # Needed for reloading
import sys
import types
from pathlib import Path
from typing import AsyncGenerator, Callable, Generator
from unittest.mock import MagicMock # For mocking Context

import base58
import httpx
import pytest
import pytest_asyncio
from pytest import MonkeyPatch
from solders.keypair import Keypair # For generating test wallet addresses

# Ensure the package can be imported
ROOT_DIR = Path(__file__).parent.parent.parent
sys.path.insert(0, str(ROOT_DIR))

PLATFORM_WALLET = "So11111111111111111111111111111111111111112"
ADMIN_SECRET = "test-admin-secret"


def random_address() -> str:
    """Address of a freshly generated keypair."""
    return str(Keypair().pubkey())


def mock_http_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    """An AsyncClient whose requests are answered by `handler` instead of the network."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def bags_handler(calls: list) -> Callable[[httpx.Request], httpx.Response]:
    """Fake Bags API that answers all three launch endpoints and records each request."""
    mint = random_address()
    config_key = random_address()

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        path = request.url.path
        if path.endswith("/token-launch/create-token-info"):
            return httpx.Response(
                200,
                json={"success": True, "response": {"tokenMint": mint, "tokenMetadata": f"https://ipfs.io/ipfs/{mint}"}},
            )
        if path.endswith("/fee-share/config"):
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "response": {
                        "meteoraConfigKey": config_key,
                        "transactions": [{"transaction": base58.b58encode(b"config-tx").decode(), "blockhash": "x"}],
                    },
                },
            )
        if path.endswith("/token-launch/create-launch-transaction"):
            return httpx.Response(200, json={"success": True, "response": base58.b58encode(b"launch-tx").decode()})
        return httpx.Response(404, json={"error": "not found"})

    return handler


# --- Test Data Fixtures ---

@pytest.fixture(scope="function")
def temp_store_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """Creates a temporary directory and path for the JSON store."""
    temp_dir = tmp_path_factory.mktemp("goodbags_data")
    return temp_dir / "test_store.json"


@pytest.fixture(scope="function")
def temp_dist_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """A minimal frontend build: index.html, one hashed asset and one plain file."""
    dist = tmp_path_factory.mktemp("dist")
    (dist / "index.html").write_text("<!doctype html><title>GoodBags</title>")
    (dist / "assets").mkdir()
    (dist / "assets" / "index-abc123.js").write_text("console.log('goodbags')")
    (dist / "favicon.png").write_bytes(b"\x89PNG")
    return dist


# --- Mock Context Fixture ---
@pytest.fixture(scope="function")
def mock_context() -> MagicMock:
    """Provides a mock MCP Context object."""
    return MagicMock()


# --- Patched Server Module Fixture ---
@pytest.fixture(scope="function")
def patched_server_module(
    monkeypatch: MonkeyPatch, temp_store_path: Path, temp_dist_path: Path
) -> Generator[types.ModuleType, None, None]:
    """
    Points the server at a temporary store and build directory, clears every API
    key and provides the reloaded server module, so each test starts from a
    freshly seeded store with mock launches enabled.
    """
    monkeypatch.setenv("APP_ENV", "development")
    monkeypatch.setenv("STORE_FILE", str(temp_store_path))
    monkeypatch.setenv("STATIC_DIR", str(temp_dist_path))
    monkeypatch.setenv("PLATFORM_WALLET", PLATFORM_WALLET)
    monkeypatch.setenv("ADMIN_SECRET", ADMIN_SECRET)
    # Empty values keep a developer's .env from leaking real keys into tests
    for name in (
        "BAGS_API_KEY",
        "SOLANA_RPC_URL",
        "BAGS_PARTNER_WALLET",
        "CHANGE_API_PUBLIC_KEY",
        "CHANGE_API_SECRET_KEY",
        "RESEND_API_KEY",
        "FEATURED_TOKEN_MINT",
        "TWITTER_CLIENT_ID",
        "TWITTER_CLIENT_SECRET",
    ):
        monkeypatch.setenv(name, "")

    try:
        import goodbags.server
        reloaded_server = importlib.reload(goodbags.server)
    except Exception as e:
        pytest.fail(f"Failed to reload goodbags.server: {e}")

    yield reloaded_server


@pytest_asyncio.fixture(scope="function")
async def api_client(patched_server_module: types.ModuleType) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client bound to the server's Starlette app (no network, no lifespan)."""
    app = patched_server_module.mcp.streamable_http_app()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
