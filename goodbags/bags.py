"""
Bags.fm public API client.

Wraps the three launch endpoints the service relies on: token info / metadata
creation, fee-share config creation and launch transaction creation. Bags returns
transactions base58-serialized; they are handed back to callers base64-encoded,
unsigned, ready for a wallet adapter.
"""

import base64
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

import base58
import httpx
from mcp.server.fastmcp.utilities.logging import get_logger

from .config import DEFAULT_BAGS_API_URL, Settings
from .errors import BagsApiError, ConfigurationError
from .models import FeeClaimer, TokenInfo

logger = get_logger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000

CREATE_TOKEN_INFO_PATH = "/token-launch/create-token-info"
CREATE_FEE_SHARE_CONFIG_PATH = "/fee-share/config"
CREATE_LAUNCH_TX_PATH = "/token-launch/create-launch-transaction"


def lamports_from_sol(sol: Union[Decimal, float, str, int]) -> int:
    try:
        amount = Decimal(str(sol))
    except ArithmeticError:
        raise ValueError(f"Initial buy amount must be a valid number: {sol!r}")
    if not amount.is_finite():
        raise ValueError(f"Initial buy amount must be a finite number: {sol!r}")
    return int((amount * LAMPORTS_PER_SOL).to_integral_value(rounding=ROUND_FLOOR))


def encode_transaction(serialized: str) -> str:
    """Re-encode a base58 serialized transaction as base64."""
    try:
        raw = base58.b58decode(serialized)
    except ValueError as e:
        raise BagsApiError(f"Bags API returned an undecodable transaction: {e}") from e
    if not raw:
        raise BagsApiError("Bags API returned an empty transaction")
    return base64.b64encode(raw).decode("ascii")


class BagsClient:
    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_BAGS_API_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = 60.0,
    ) -> None:
        if not api_key:
            raise ConfigurationError("BAGS_API_KEY is not configured")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.client = http_client or httpx.AsyncClient(timeout=timeout_s)

    @classmethod
    def from_settings(cls, settings: Settings) -> "BagsClient":
        return cls(settings.bags_api_key, base_url=settings.bags_api_url)

    async def close(self) -> None:
        await self.client.aclose()

    async def _post(self, path: str, payload: Dict[str, Any]) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug(f"POST {url}")
        try:
            resp = await self.client.post(url, json=payload, headers={"x-api-key": self.api_key})
        except httpx.TimeoutException as e:
            raise BagsApiError(
                f"Bags API request timed out: {e}",
                code=408,
                retryable=True,
                user_message="Bags.fm did not respond in time. Please try again.",
            ) from e
        except httpx.HTTPError as e:
            raise BagsApiError(
                f"Could not reach Bags API: {e}",
                retryable=True,
                user_message="Could not reach Bags.fm. Please try again shortly.",
            ) from e

        if resp.status_code >= 400:
            detail = _error_detail(resp)
            logger.error(f"Bags API {path} failed: {resp.status_code} {detail}")
            raise BagsApiError.from_status(resp.status_code, detail)

        try:
            data = resp.json()
        except ValueError as e:
            raise BagsApiError(f"Bags API returned invalid JSON from {path}", code=resp.status_code) from e
        if not isinstance(data, dict) or not data.get("success", False):
            error = data.get("error") if isinstance(data, dict) else data
            raise BagsApiError(f"Bags API reported failure: {error}", code=resp.status_code)
        return data.get("response")

    async def create_token_info(
        self,
        name: str,
        symbol: str,
        description: str = "",
        image_url: str = "",
        twitter: str = "",
        website: str = "",
    ) -> TokenInfo:
        response = await self._post(
            CREATE_TOKEN_INFO_PATH,
            {
                "name": name,
                "symbol": symbol,
                "description": description,
                "imageUrl": image_url,
                "twitter": twitter,
                "website": website,
            },
        )
        try:
            return TokenInfo(token_mint=response["tokenMint"], metadata_url=response["tokenMetadata"])
        except (KeyError, TypeError) as e:
            raise BagsApiError(f"Unexpected create-token-info response: {response!r}") from e

    async def create_fee_share_config(
        self,
        payer: str,
        base_mint: str,
        fee_claimers: List[FeeClaimer],
        partner: str,
    ) -> Tuple[str, List[str]]:
        """Returns the config key and the base64 transactions that set it up."""
        response = await self._post(
            CREATE_FEE_SHARE_CONFIG_PATH,
            {
                "payer": payer,
                "baseMint": base_mint,
                "claimersArray": [c.wallet for c in fee_claimers],
                "basisPointsArray": [c.bps for c in fee_claimers],
                "partner": partner,
            },
        )
        try:
            config_key = response["meteoraConfigKey"]
            raw_txs = response.get("transactions") or []
        except (KeyError, TypeError, AttributeError) as e:
            raise BagsApiError(f"Unexpected fee-share config response: {response!r}") from e

        transactions = []
        for tx in raw_txs:
            # Entries are either the serialized tx or {"transaction": ..., "blockhash": ...}
            serialized = tx.get("transaction") if isinstance(tx, dict) else tx
            transactions.append(encode_transaction(serialized))
        return config_key, transactions

    async def create_launch_transaction(
        self,
        token_mint: str,
        metadata_url: str,
        config_key: str,
        launch_wallet: str,
        initial_buy_lamports: int,
    ) -> str:
        response = await self._post(
            CREATE_LAUNCH_TX_PATH,
            {
                "ipfs": metadata_url,
                "tokenMint": token_mint,
                "wallet": launch_wallet,
                "initialBuyLamports": initial_buy_lamports,
                "configKey": config_key,
            },
        )
        if isinstance(response, dict):
            response = response.get("transaction")
        if not isinstance(response, str):
            raise BagsApiError(f"Unexpected launch transaction response: {response!r}")
        return encode_transaction(response)


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:500]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)
    return str(body)
