"""
Change (getchange.io) nonprofit directory client.

Change lists verified US nonprofits, some of which publish a Solana wallet for
crypto donations. Launches against a Change charity always re-fetch the
nonprofit here so the payout wallet comes from Change, never from the browser.
"""

import time
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Tuple

import httpx
from mcp.server.fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, ValidationError

from .addresses import is_valid_solana_address
from .config import DEFAULT_CHANGE_API_URL, Settings
from .errors import ChangeApiError, ConfigurationError

logger = get_logger(__name__)

SEARCH_CACHE_TTL_S = 5 * 60
SEARCH_CACHE_MAX_ENTRIES = 100

CATEGORY_MAP = {
    "healthcare": "health",
    "health": "health",
    "education": "education",
    "environment": "environment",
    "animals": "animals",
    "animal_welfare": "animals",
    "hunger": "hunger",
    "food": "hunger",
    "poverty": "hunger",
    "disaster": "disaster",
    "disaster_relief": "disaster",
    "community": "community",
    "human_services": "community",
    "arts": "community",
    "religion": "community",
    "international": "community",
}


# --- Response schemas ---

class ChangeSocials(BaseModel):
    facebook: Optional[str] = None
    instagram: Optional[str] = None
    twitter: Optional[str] = None


class ChangeCrypto(BaseModel):
    solana_address: Optional[str] = None
    ethereum_address: Optional[str] = None


class ChangeNonprofit(BaseModel):
    id: str
    name: str
    ein: Optional[str] = None
    icon_url: Optional[str] = None
    mission: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None
    category: Optional[str] = None
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    classification: Optional[str] = None
    socials: Optional[ChangeSocials] = None
    crypto: Optional[ChangeCrypto] = None
    display_impact: Optional[List[str]] = None
    stats: Optional[List[str]] = None

    @property
    def solana_address(self) -> Optional[str]:
        return self.crypto.solana_address if self.crypto else None

    @property
    def location(self) -> Optional[str]:
        if self.city and self.state:
            return f"{self.city}, {self.state}"
        return None


class ChangeSearchResponse(BaseModel):
    nonprofits: List[ChangeNonprofit]
    page: Optional[int] = None


# --- Helpers ---

def map_change_category(category: Optional[str]) -> str:
    if not category:
        return "other"
    return CATEGORY_MAP.get(category.lower(), "other")


def has_valid_solana_wallet(nonprofit: ChangeNonprofit) -> bool:
    address = nonprofit.solana_address
    return bool(address and len(address) >= 32)


class ChangeClient:
    def __init__(
        self,
        public_key: Optional[str],
        secret_key: Optional[str],
        base_url: str = DEFAULT_CHANGE_API_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = 30.0,
    ) -> None:
        self.public_key = public_key
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.client = http_client or httpx.AsyncClient(timeout=timeout_s)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChangeClient":
        return cls(settings.change_public_key, settings.change_secret_key, base_url=settings.change_api_url)

    @property
    def configured(self) -> bool:
        return bool(self.public_key and self.secret_key)

    async def close(self) -> None:
        await self.client.aclose()

    def _auth(self) -> Tuple[str, str]:
        if not self.configured:
            raise ConfigurationError("Change API credentials not configured")
        return (self.public_key, self.secret_key)  # type: ignore[return-value]

    async def search_nonprofits(
        self,
        query: str,
        page: Optional[int] = None,
        categories: Optional[List[str]] = None,
    ) -> ChangeSearchResponse:
        params: Dict[str, Any] = {"search_term": query}
        if page:
            params["page"] = page
        if categories:
            params["categories"] = ",".join(categories)

        resp = await self.client.get(f"{self.base_url}/nonprofits", params=params, auth=self._auth())
        if resp.status_code >= 400:
            logger.error(f"Change API error: {resp.status_code} {resp.text[:200]}")
            raise ChangeApiError(resp.status_code, resp.text)
        try:
            return ChangeSearchResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise ChangeApiError(resp.status_code, f"Malformed search response: {e}") from e

    async def get_nonprofit(self, nonprofit_id: str) -> Optional[ChangeNonprofit]:
        resp = await self.client.get(f"{self.base_url}/nonprofits/{nonprofit_id}", auth=self._auth())
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            logger.error(f"Change API error: {resp.status_code} {resp.text[:200]}")
            raise ChangeApiError(resp.status_code, resp.text)
        try:
            return ChangeNonprofit.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise ChangeApiError(resp.status_code, f"Malformed nonprofit response: {e}") from e

    async def verify_charity_wallet(
        self, nonprofit_id: str, provided_address: Optional[str] = None
    ) -> Tuple[Optional[ChangeNonprofit], Optional[str]]:
        """
        Re-fetches a nonprofit and checks its published Solana wallet.

        Returns (nonprofit, None) when the wallet is usable, otherwise
        (nonprofit or None, error message). A provided address must match the
        one Change publishes.
        """
        nonprofit = await self.get_nonprofit(nonprofit_id)
        if nonprofit is None:
            return None, "Charity not found in Change API"
        if not has_valid_solana_wallet(nonprofit):
            return nonprofit, "This charity doesn't have a Solana wallet yet"
        verified = nonprofit.solana_address
        if not is_valid_solana_address(verified):
            logger.warning(f"Invalid Solana address from Change API for {nonprofit_id}: {verified}")
            return nonprofit, "Charity has an invalid Solana wallet address"
        if provided_address and provided_address != verified:
            logger.warning(f"Wallet address mismatch for {nonprofit_id}: provided={provided_address}, verified={verified}")
            return nonprofit, "Wallet address verification failed"
        return nonprofit, None


def nonprofit_summary(nonprofit: ChangeNonprofit) -> Dict[str, Any]:
    return {
        "id": nonprofit.id,
        "name": nonprofit.name,
        "ein": nonprofit.ein,
        "mission": nonprofit.mission,
        "category": map_change_category(nonprofit.category),
        "website": nonprofit.website,
        "logoUrl": nonprofit.icon_url,
        "solanaAddress": nonprofit.solana_address,
        "hasSolanaWallet": has_valid_solana_wallet(nonprofit),
        "location": nonprofit.location,
    }


class SearchCache:
    """Search results by key, expiring after `ttl_s`; the oldest entry goes first when full."""

    def __init__(self, ttl_s: float = SEARCH_CACHE_TTL_S, max_entries: int = SEARCH_CACHE_MAX_ENTRIES, clock=time.monotonic):
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self.clock = clock
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()

    @staticmethod
    def key(query: str, page: int, category: Optional[str]) -> str:
        return f"{query.lower()}_{page}_{category or 'all'}"

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self.clock() - stored_at < self.ttl_s:
            return value
        del self._entries[key]
        return None

    def set(self, key: str, value: Any) -> None:
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._entries.popitem(last=False)
        self._entries[key] = (self.clock(), value)

    def __len__(self) -> int:
        return len(self._entries)
