import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, HttpUrl, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .fee_split import BASE_CHARITY_BPS, BASE_CREATOR_BPS, BASE_PLATFORM_BPS, FeeSplit


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_url_adapter = TypeAdapter(HttpUrl)


class ApiModel(BaseModel):
    """Snake-case in Python and on disk, camelCase on the HTTP API."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ApprovalStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    denied = "denied"
    not_applicable = "not_applicable"


class CharityStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    denied = "denied"


class CharitySource(str, Enum):
    change = "change"
    local = "local"


# --- Launch flow ---

class TokenLaunchParams(ApiModel):
    name: str = Field(..., min_length=1, max_length=32)
    symbol: str = Field(..., min_length=1, max_length=10)
    description: Optional[str] = Field(None, max_length=500)
    image_url: Optional[str] = None
    twitter_url: Optional[str] = None
    website_url: Optional[str] = None
    initial_buy_amount_sol: Decimal = Field(
        Decimal("0"),
        ge=0,
        validation_alias=AliasChoices("initial_buy_amount_sol", "initialBuyAmountSol", "initialBuyAmount"),
    )
    creator_wallet: str = Field(..., min_length=1)

    @field_validator("symbol", mode="before")
    @classmethod
    def _normalize_symbol(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().replace("$", "").upper()
        return value

    @field_validator("image_url", "twitter_url", "website_url")
    @classmethod
    def _check_url(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        try:
            _url_adapter.validate_python(value)
        except ValidationError:
            raise ValueError("Must be a valid URL")
        return value


class ProfileUpdate(ApiModel):
    display_name: Optional[str] = Field(None, max_length=50)

    @field_validator("display_name")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class WalletConnectRequest(ApiModel):
    wallet_address: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)


class FeeClaimer(BaseModel):
    wallet: str
    bps: int


class TokenInfo(BaseModel):
    token_mint: str
    metadata_url: str


class FeeShareConfig(BaseModel):
    config_key: str
    transactions: List[str] = Field(default_factory=list)  # base64, unsigned
    split: FeeSplit


class LaunchTransaction(BaseModel):
    transaction: str  # base64, unsigned


class LaunchPlan(BaseModel):
    token: TokenInfo
    fee_share: FeeShareConfig
    launch: LaunchTransaction


# --- Persisted records ---

class LaunchedToken(ApiModel):
    id: str = Field(default_factory=_new_id)
    name: str
    symbol: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    mint_address: str
    creator_wallet: str
    charity_id: Optional[str] = None
    charity_name: Optional[str] = None
    charity_email: Optional[str] = None
    charity_website: Optional[str] = None
    charity_twitter: Optional[str] = None
    charity_facebook: Optional[str] = None
    charity_source: CharitySource = CharitySource.local
    charity_approval_status: ApprovalStatus = ApprovalStatus.pending
    charity_approval_note: Optional[str] = None
    charity_notified_at: Optional[datetime] = None
    charity_responded_at: Optional[datetime] = None
    initial_buy_amount: Decimal = Decimal("0")
    charity_donated: Decimal = Decimal("0")
    platform_fee_collected: Decimal = Decimal("0")
    trading_volume: Decimal = Decimal("0")
    transaction_signature: Optional[str] = None
    launched_at: datetime = Field(default_factory=utcnow)
    donation_count: int = 0
    last_donation_at: Optional[datetime] = None
    is_test: bool = False
    charity_bps: Optional[int] = BASE_CHARITY_BPS
    platform_bps: Optional[int] = BASE_PLATFORM_BPS
    creator_bps: Optional[int] = BASE_CREATOR_BPS
    anomaly_acknowledged_at: Optional[datetime] = None
    anomaly_notes: Optional[str] = None


class Donation(ApiModel):
    id: str = Field(default_factory=_new_id)
    token_mint: str
    amount: Decimal
    charity_wallet: str
    transaction_signature: str
    donated_at: datetime = Field(default_factory=utcnow)


class Charity(ApiModel):
    id: str = Field(default_factory=_new_id)
    name: str
    description: Optional[str] = None
    category: str = "other"
    website: Optional[str] = None
    email: Optional[str] = None
    email_verified_at: Optional[datetime] = None
    wallet_address: Optional[str] = None
    twitter_handle: Optional[str] = None
    status: CharityStatus = CharityStatus.pending
    is_default: bool = False
    is_featured: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class AuditLog(ApiModel):
    id: str = Field(default_factory=_new_id)
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    actor_wallet: Optional[str] = None
    details: Optional[str] = None  # JSON text
    created_at: datetime = Field(default_factory=utcnow)


class User(ApiModel):
    id: str = Field(default_factory=_new_id)
    twitter_id: str
    twitter_username: str
    twitter_display_name: Optional[str] = None
    display_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    wallet_address: Optional[str] = None
    wallet_connected_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class DashboardStats(ApiModel):
    total_tokens: int
    total_donated: Decimal
    total_volume: Decimal
    total_platform_fees: Decimal


class TokenImpact(ApiModel):
    total_donated: Decimal
    donation_count: int
    recent_donations: List[Donation]


class Session(BaseModel):
    id: str
    user_id: str
    expires_at: datetime


class CharityInfo(ApiModel):
    """The charity a launch pays out to, resolved and verified server-side."""

    id: str
    name: str
    wallet_address: str
    email: Optional[str] = None
    website: Optional[str] = None
    twitter: Optional[str] = None
    facebook: Optional[str] = None
    source: CharitySource = CharitySource.local
