"""
GoodBags MCP server and HTTP API.

One FastMCP instance serves the MCP tools at /mcp (streamable HTTP) and the JSON
API used by the frontend as custom Starlette routes, followed by the static
bundle. Module-level state (settings, storage, clients, rate limiter) is built
at import time; the Bags client is built lazily on first use.
"""

import asyncio
import hmac
import json
import secrets
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional

import httpx
from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.utilities.logging import configure_logging, get_logger
from pydantic import Field, ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .addresses import is_valid_solana_address, require_address, verify_wallet_signature
from .auth import TwitterAuth
from .bags import BagsClient
from .change_api import ChangeClient, SearchCache, has_valid_solana_wallet, map_change_category, nonprofit_summary
from .config import DEFAULT_SOLANA_RPC_URL, Settings, check_startup
from .errors import BagsApiError, ChangeApiError, CharityError, ConfigurationError, InvalidAddressError
from .fee_split import BASE_CHARITY_BPS, BASE_CREATOR_BPS, BASE_PLATFORM_BPS, TOTAL_FEE_BPS, compute_fee_split
from .launch import LaunchOrchestrator
from .mailer import CharityNotification, Mailer, approval_link
from .models import (
    ApprovalStatus,
    CharityInfo,
    CharitySource,
    CharityStatus,
    Donation,
    LaunchedToken,
    ProfileUpdate,
    TokenLaunchParams,
    WalletConnectRequest,
    utcnow,
)
from .ranking import LeaderboardType, leaderboard, trending
from .ratelimit import RateLimiter, apply_headers, enforce
from .rpc import SolanaRpc
from .static import register_static_routes, require_build
from .storage import Storage, new_signature

logger = get_logger(__name__)

LAUNCH_RATE_LIMIT = 10
SEARCH_RATE_LIMIT = 30
MOCK_PREFIX = "mock"
ROYALTY_PERCENT = Decimal("100")  # royalty amounts are bps of a 1% stream
AMOUNT_QUANTUM = Decimal("0.000000001")
CERTIFIED_MIN_DONATED = Decimal("0.001")

FEATURED_PROJECT = {
    "name": "Food Yoga International",
    "description": "Supporting plant-based meals for the hungry worldwide",
    "category": "hunger",
}

# --- Server State ---

settings = Settings.from_env()

storage = Storage(settings.store_file)
storage.load()
storage.seed_default_charities()

mcp = FastMCP(name="GoodBags Launch Server", host=settings.host, port=settings.port, log_level=settings.log_level)

rate_limiter = RateLimiter()
search_cache = SearchCache()
change_client = ChangeClient.from_settings(settings)
mailer = Mailer.from_settings(settings)
solana_rpc = SolanaRpc(settings.solana_rpc_url)
twitter_auth = TwitterAuth(settings, storage)

bags_client: Optional[BagsClient] = None


def get_bags_client() -> BagsClient:
    """The shared Bags client; raises ConfigurationError when BAGS_API_KEY is missing."""
    global bags_client
    if bags_client is None:
        bags_client = BagsClient.from_settings(settings)
        logger.info(f"Bags client initialized for {settings.bags_api_url}")
    return bags_client


def get_orchestrator() -> LaunchOrchestrator:
    """Raises ConfigurationError when Bags or the platform wallet is not set up."""
    client = get_bags_client()
    if not settings.platform_wallet or not is_valid_solana_address(settings.platform_wallet):
        raise ConfigurationError("PLATFORM_WALLET is missing or not a valid Solana address")
    if not is_valid_solana_address(settings.referral_wallet):
        raise ConfigurationError("BAGS_PARTNER_WALLET is not a valid Solana address")
    return LaunchOrchestrator(client, platform_wallet=settings.platform_wallet, partner_wallet=settings.referral_wallet)


def mock_mode() -> bool:
    """Launch steps return placeholder data when Bags is unconfigured outside production."""
    return not settings.bags_configured and not settings.is_production


# --- Helper Functions ---

def bags_error_status(error: BagsApiError) -> int:
    if error.code == 429:
        return 429
    if error.code in (401, 403):
        return 503
    if error.retryable:
        return 503
    return 500


def validation_message(error: ValidationError) -> str:
    return ", ".join(e["msg"].removeprefix("Value error, ") for e in error.errors())


def error_response(error: Exception, fallback: str) -> JSONResponse:
    """Translates an exception raised by a handler into a JSON error response."""
    if isinstance(error, BagsApiError):
        return JSONResponse(
            {"success": False, "error": error.user_message, "code": error.code, "retryable": error.retryable},
            status_code=bags_error_status(error),
        )
    if isinstance(error, ValidationError):
        return JSONResponse({"success": False, "error": validation_message(error)}, status_code=400)
    if isinstance(error, (InvalidAddressError, CharityError, ValueError)):
        return JSONResponse({"success": False, "error": str(error)}, status_code=400)
    if isinstance(error, ConfigurationError):
        logger.error(f"Configuration error: {error}")
        return JSONResponse({"success": False, "error": "Token launches are temporarily unavailable"}, status_code=503)
    if isinstance(error, ChangeApiError):
        logger.error(f"Change API failure: {error}")
        return JSONResponse({"success": False, "error": fallback}, status_code=502)
    logger.exception(f"{fallback}: {error}")
    return JSONResponse({"success": False, "error": fallback}, status_code=500)


async def json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise ValueError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


def query_int(request: Request, name: str, default: int, lo: int = 1, hi: int = 100) -> int:
    raw = request.query_params.get(name)
    try:
        value = int(raw) if raw is not None else default
    except ValueError:
        value = default
    return max(lo, min(hi, value))


def donate_percent_from(body: Dict[str, Any]) -> int:
    """donateCreatorPercent, honouring the older boolean donateCreatorShare."""
    raw = body.get("donateCreatorPercent", 0) or 0
    try:
        percent = int(raw)
    except (TypeError, ValueError):
        raise ValueError("donateCreatorPercent must be a number")
    if body.get("donateCreatorShare") is True and percent == 0:
        percent = 100
    return percent


def is_mock_mint(mint: str) -> bool:
    return mint.startswith(MOCK_PREFIX) and not settings.is_production


def royalty_amount(initial_buy: Decimal, bps: int) -> Decimal:
    return (initial_buy * bps / TOTAL_FEE_BPS / ROYALTY_PERCENT).quantize(AMOUNT_QUANTUM)


async def resolve_charity(
    body: Dict[str, Any],
    fallback_to_default: bool = True,
    default_source: CharitySource = CharitySource.change,
) -> CharityInfo:
    """
    Resolves the charity a launch pays out to. Change charities are re-fetched from
    Change and the wallet it publishes is used; local charities must be approved
    and carry a valid wallet. Requests without a charitySource use `default_source`.
    """
    source = body.get("charitySource") or default_source.value
    charity_id = body.get("charityId")
    if source not in (CharitySource.change.value, CharitySource.local.value):
        raise CharityError(f"Unknown charity source: {source}")

    if source == CharitySource.change.value:
        provided = body.get("charitySolanaAddress")
        if not charity_id:
            raise CharityError("charityId is required")
        if provided is not None and not is_valid_solana_address(provided):
            raise CharityError("Invalid Solana wallet address for selected charity")
        nonprofit, problem = await change_client.verify_charity_wallet(charity_id, provided)
        if problem:
            raise CharityError(problem)
        socials = nonprofit.socials
        return CharityInfo(
            id=charity_id,
            name=nonprofit.name,
            wallet_address=nonprofit.solana_address,
            email=nonprofit.email,
            website=nonprofit.website,
            twitter=socials.twitter if socials else None,
            facebook=socials.facebook if socials else None,
            source=CharitySource.change,
        )

    charity = storage.get_charity_by_id(charity_id) if charity_id else None
    if charity is None and fallback_to_default:
        charity = storage.get_default_charity()
    if charity is None:
        raise CharityError("No charity selected and no default available")
    if charity.status != CharityStatus.approved:
        raise CharityError("Selected charity has not been verified. Please choose an approved charity.")
    if not is_valid_solana_address(charity.wallet_address):
        raise CharityError("Selected charity does not have a valid payout wallet")
    return CharityInfo(
        id=charity.id,
        name=charity.name,
        wallet_address=charity.wallet_address,
        email=charity.email,
        website=charity.website,
        twitter=charity.twitter_handle,
        source=CharitySource.local,
    )


async def search_change_charities(query: str, page: int = 1, category: Optional[str] = None) -> Dict[str, Any]:
    key = SearchCache.key(query, page, category)
    cached = search_cache.get(key)
    if cached is not None:
        return cached

    results = await change_client.search_nonprofits(query, page=page, categories=[category] if category else None)
    nonprofits = [nonprofit_summary(np) for np in results.nonprofits]
    with_wallet = sum(1 for np in nonprofits if np["hasSolanaWallet"])
    logger.info(f"Change search for {query!r}: {len(nonprofits)} results, {with_wallet} with Solana wallets")
    payload = {
        "nonprofits": nonprofits,
        "page": results.page or page,
        "totalResults": len(nonprofits),
        "totalWithSolana": with_wallet,
        "source": CharitySource.change.value,
    }
    search_cache.set(key, payload)
    return payload


def admin_authorized(request: Request) -> bool:
    expected = settings.admin_secret
    provided = request.headers.get("x-admin-secret")
    if not expected:
        logger.error("ADMIN_SECRET not set - admin endpoints are disabled")
        return False
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


async def record_launch(body: Dict[str, Any]) -> Dict[str, Any]:
    """Stores a launched token after the client has broadcast the launch transaction."""
    params = TokenLaunchParams.model_validate(body)
    mint = body.get("mintAddress")
    if not mint:
        raise ValueError("mintAddress is required")
    if not is_mock_mint(mint):
        require_address(mint, "token mint")
    if storage.get_launched_token_by_mint(mint) is not None:
        raise ValueError(f"Token {mint} has already been recorded")

    charity = await resolve_charity(body)
    percent = donate_percent_from(body)
    split = compute_fee_split(percent)
    is_test = body.get("isTest") is True
    initial_buy = params.initial_buy_amount_sol
    charity_donation = royalty_amount(initial_buy, split.charity_bps)
    platform_fee = royalty_amount(initial_buy, split.platform_bps)

    token = storage.create_launched_token(
        LaunchedToken(
            name=params.name,
            symbol=params.symbol,
            description=params.description,
            image_url=params.image_url,
            mint_address=mint,
            creator_wallet=params.creator_wallet,
            charity_id=charity.id,
            charity_name=charity.name,
            charity_email=charity.email,
            charity_website=charity.website,
            charity_twitter=charity.twitter,
            charity_facebook=charity.facebook,
            charity_source=charity.source,
            charity_approval_status=ApprovalStatus.not_applicable if is_test else ApprovalStatus.pending,
            charity_notified_at=utcnow() if charity.email and not is_test else None,
            initial_buy_amount=initial_buy,
            charity_donated=charity_donation,
            platform_fee_collected=platform_fee,
            trading_volume=initial_buy,
            transaction_signature=body.get("transactionSignature") or new_signature("tx"),
            is_test=is_test,
            charity_bps=split.charity_bps,
            platform_bps=split.platform_bps,
            creator_bps=split.creator_bps,
        )
    )
    storage.create_audit_log(
        action="TEST_TOKEN_LAUNCHED" if is_test else "TOKEN_LAUNCHED",
        entity_type="token",
        entity_id=token.id,
        actor_wallet=params.creator_wallet,
        details={
            "name": params.name,
            "charityId": charity.id,
            "charityName": charity.name,
            "charitySource": charity.source.value,
            "initialBuy": str(initial_buy),
            "isTest": is_test,
            "feeSplit": {
                "charityBps": split.charity_bps,
                "platformBps": split.platform_bps,
                "creatorBps": split.creator_bps,
                "donateCreatorPercent": percent,
            },
        },
    )
    logger.info(f"Recorded launch of {token.symbol} ({mint}) for charity {charity.name}, test={is_test}")

    if initial_buy > 0 and not is_test:
        storage.create_donation(
            Donation(
                token_mint=mint,
                amount=charity_donation,
                charity_wallet=charity.wallet_address,
                transaction_signature=new_signature("donation"),
            )
        )

    email_sent = False
    if charity.email and not is_test:
        result = await mailer.send_charity_approval_email(
            CharityNotification(
                charity_name=charity.name,
                charity_email=charity.email,
                token_name=params.name,
                token_symbol=params.symbol,
                token_mint_address=mint,
                creator_wallet=params.creator_wallet,
                approval_link=approval_link(mint, charity.id, settings.app_url),
            )
        )
        email_sent = result.success
        if not result.success:
            logger.warning(f"Failed to send charity notification email: {result.error}")
            storage.create_audit_log(
                action="CHARITY_EMAIL_FAILED",
                entity_type="token",
                entity_id=token.id,
                actor_wallet=params.creator_wallet,
                details={"charityId": charity.id, "charityEmail": charity.email, "error": result.error},
            )

    return {
        "success": True,
        "isTest": is_test,
        "token": {
            "id": token.id,
            "name": token.name,
            "symbol": token.symbol,
            "mintAddress": token.mint_address,
            "transactionSignature": token.transaction_signature,
        },
        "charity": {
            "id": charity.id,
            "name": charity.name,
            "source": charity.source.value,
            "hasWallet": bool(charity.wallet_address),
            "hasEmail": bool(charity.email),
            "emailSent": email_sent,
        },
    }


def token_impact_payload(token: LaunchedToken) -> Dict[str, Any]:
    impact = storage.get_token_impact(token.mint_address)
    charity = storage.get_charity_by_id(token.charity_id) if token.charity_id else None
    if charity is None and token.charity_source == CharitySource.local:
        charity = storage.get_default_charity()

    charity_bps = token.charity_bps if token.charity_bps is not None else BASE_CHARITY_BPS
    platform_bps = token.platform_bps if token.platform_bps is not None else BASE_PLATFORM_BPS
    creator_bps = token.creator_bps if token.creator_bps is not None else BASE_CREATOR_BPS

    token_data = token.to_api()
    token_data["hasCharityEmail"] = bool(token.charity_email)
    token_data.pop("charityEmail", None)

    if charity is not None:
        charity_info: Dict[str, Any] = {
            "id": charity.id,
            "name": charity.name,
            "wallet": charity.wallet_address,
            "category": charity.category,
            "status": charity.status.value,
        }
    else:
        # Change charities are not stored locally; the launch recorded what Change returned
        charity_info = {
            "id": token.charity_id,
            "name": token.charity_name,
            "wallet": None,
            "category": None,
            "status": CharityStatus.approved.value,
        }
    # fraction of total trade volume: bps of the 1% royalty stream
    charity_info["feePercentage"] = charity_bps / TOTAL_FEE_BPS
    charity_info["platformFeePercentage"] = platform_bps / TOTAL_FEE_BPS
    charity_info["creatorFeePercentage"] = creator_bps / TOTAL_FEE_BPS

    return {
        "token": token_data,
        "impact": impact.to_api() if impact else {"totalDonated": "0", "donationCount": 0, "recentDonations": []},
        "charityInfo": charity_info,
    }


def creator_impact_payload(wallet: str) -> Dict[str, Any]:
    tokens = storage.get_tokens_by_creator(wallet)
    total_donated = Decimal("0")
    total_count = 0
    token_impacts: List[Dict[str, Any]] = []
    charities: Dict[str, Any] = {}

    for token in tokens:
        impact = storage.get_token_impact(token.mint_address)
        charity = storage.get_charity_by_id(token.charity_id) if token.charity_id else None
        if charity is not None:
            charities[charity.id] = charity
        if impact is None:
            continue
        total_donated += impact.total_donated
        total_count += impact.donation_count
        token_impacts.append(
            {
                "token": {
                    "id": token.id,
                    "name": token.name,
                    "symbol": token.symbol,
                    "mintAddress": token.mint_address,
                    "imageUrl": token.image_url,
                },
                "charity": {"id": charity.id, "name": charity.name, "category": charity.category} if charity else None,
                "donated": f"{impact.total_donated:.9f}",
                "donationCount": impact.donation_count,
            }
        )

    return {
        "creatorWallet": wallet,
        "totalTokens": len(tokens),
        "totalDonated": f"{total_donated:.9f}",
        "totalDonationCount": total_count,
        "tokens": token_impacts,
        "charities": [
            {"id": c.id, "name": c.name, "category": c.category, "wallet": c.wallet_address}
            for c in charities.values()
        ],
        "certified": total_donated >= CERTIFIED_MIN_DONATED,
    }


# --- MCP Tools ---

@mcp.tool()
async def prepare_token_launch(
    context: Context,
    name: str = Field(..., description="Token name (1-32 characters)."),
    symbol: str = Field(..., description="Ticker symbol (1-10 characters, '$' is stripped)."),
    creator_wallet: str = Field(..., description="Creator's Solana wallet; pays for and signs the launch."),
    charity_wallet: str = Field(..., description="Solana wallet of the charity receiving royalties."),
    description: Annotated[Optional[str], Field(description="Token description (max 500 characters).")] = None,
    image_url: Annotated[Optional[str], Field(description="Token image URL.")] = None,
    twitter_url: Annotated[Optional[str], Field(description="Project X/Twitter URL.")] = None,
    website_url: Annotated[Optional[str], Field(description="Project website URL.")] = None,
    initial_buy_sol: Annotated[float, Field(description="SOL the creator buys at launch.")] = 0.0,
    donate_percent: Annotated[int, Field(description="Share of the creator's fees donated: 0, 25, 50, 75 or 100.")] = 0,
) -> str:
    """
    Runs the whole launch preparation against Bags.fm: creates the token metadata,
    the creator/charity/platform fee-share config and the launch transaction.
    Returns JSON with the mint, config key and base64 unsigned transactions; the
    creator's wallet signs and submits them, this server never does.
    """
    logger.info(f"Received prepare_token_launch request for {symbol} by {creator_wallet}")
    try:
        params = TokenLaunchParams(
            name=name,
            symbol=symbol,
            description=description,
            image_url=image_url,
            twitter_url=twitter_url,
            website_url=website_url,
            initial_buy_amount_sol=Decimal(str(initial_buy_sol)),
            creator_wallet=creator_wallet,
        )
        plan = await get_orchestrator().prepare_launch(params, charity_wallet, donate_percent)
    except ValidationError as e:
        return json.dumps({"success": False, "error": validation_message(e)})
    except BagsApiError as e:
        return json.dumps({"success": False, "error": e.user_message, "code": e.code, "retryable": e.retryable})
    except (ValueError, ConfigurationError) as e:
        return json.dumps({"success": False, "error": str(e)})

    split = plan.fee_share.split
    return json.dumps(
        {
            "success": True,
            "tokenMint": plan.token.token_mint,
            "metadataUrl": plan.token.metadata_url,
            "configKey": plan.fee_share.config_key,
            "configTransactions": plan.fee_share.transactions,
            "launchTransaction": plan.launch.transaction,
            "creatorBps": split.creator_bps,
            "charityBps": split.charity_bps,
            "platformBps": split.platform_bps,
        },
        indent=2,
    )


@mcp.tool()
async def create_fee_share_config(
    context: Context,
    token_mint: str = Field(..., description="Mint address returned by token metadata creation."),
    creator_wallet: str = Field(..., description="Creator's Solana wallet."),
    charity_wallet: str = Field(..., description="Charity's Solana wallet."),
    donate_percent: Annotated[int, Field(description="Share of the creator's fees donated: 0, 25, 50, 75 or 100.")] = 0,
) -> str:
    """Creates the three-way fee-share config for an existing mint and returns its setup transactions."""
    try:
        config = await get_orchestrator().create_fee_share_config(token_mint, creator_wallet, charity_wallet, donate_percent)
    except BagsApiError as e:
        return json.dumps({"success": False, "error": e.user_message, "code": e.code, "retryable": e.retryable})
    except (ValueError, ConfigurationError) as e:
        return json.dumps({"success": False, "error": str(e)})
    return json.dumps(
        {
            "success": True,
            "configKey": config.config_key,
            "transactions": config.transactions,
            "creatorBps": config.split.creator_bps,
            "charityBps": config.split.charity_bps,
            "platformBps": config.split.platform_bps,
        },
        indent=2,
    )


@mcp.tool()
async def create_launch_transaction(
    context: Context,
    token_mint: str = Field(..., description="Mint address of the token."),
    metadata_url: str = Field(..., description="Metadata URI returned by token metadata creation."),
    config_key: str = Field(..., description="Fee-share config key."),
    creator_wallet: str = Field(..., description="Creator's Solana wallet."),
    initial_buy_sol: Annotated[float, Field(description="SOL the creator buys at launch.")] = 0.0,
) -> str:
    """Builds the unsigned launch transaction (base64)."""
    try:
        launch = await get_orchestrator().create_launch_transaction(
            token_mint, metadata_url, config_key, creator_wallet, Decimal(str(initial_buy_sol))
        )
    except BagsApiError as e:
        return json.dumps({"success": False, "error": e.user_message, "code": e.code, "retryable": e.retryable})
    except (ValueError, ConfigurationError) as e:
        return json.dumps({"success": False, "error": str(e)})
    return json.dumps({"success": True, "transaction": launch.transaction})


@mcp.tool()
async def list_tokens(
    context: Context,
    include_test: Annotated[bool, Field(description="Include test-mode launches.")] = False,
    limit: Annotated[int, Field(description="Maximum number of tokens to return.")] = 50,
) -> str:
    """Lists launched tokens, newest first."""
    tokens = storage.get_launched_tokens()
    if not include_test:
        tokens = [t for t in tokens if not t.is_test]
    return json.dumps({"tokens": [t.to_api() for t in tokens[: max(0, limit)]]}, indent=2)


@mcp.tool()
async def get_leaderboard(
    context: Context,
    board: Annotated[str, Field(description="Leaderboard: donations, volume or hot.")] = "donations",
    limit: Annotated[int, Field(description="Number of entries.")] = 10,
) -> str:
    """Ranks live tokens by donations, trading volume or hot score."""
    try:
        board_type = LeaderboardType(board)
    except ValueError:
        return json.dumps({"success": False, "error": f"Unknown leaderboard type: {board}"})
    entries = leaderboard(storage.get_launched_tokens(), board_type, limit)
    return json.dumps({"type": board_type.value, "entries": [e.to_api() for e in entries]}, indent=2)


@mcp.tool()
async def get_trending_tokens(
    context: Context,
    limit: Annotated[int, Field(description="Number of tokens.")] = 5,
) -> str:
    """Live tokens ordered by trend score (recent activity, decaying over a week)."""
    entries = trending(storage.get_launched_tokens(), limit)
    return json.dumps({"tokens": [e.to_api() for e in entries]}, indent=2)


@mcp.tool()
async def search_charities(
    context: Context,
    query: str = Field(..., description="Nonprofit name or keyword (at least 2 characters)."),
    page: Annotated[int, Field(description="Result page, starting at 1.")] = 1,
    category: Annotated[Optional[str], Field(description="Optional Change category filter.")] = None,
) -> str:
    """Searches Change's verified nonprofit directory and flags which ones have a Solana wallet."""
    if not query or len(query) < 2:
        return json.dumps({"success": False, "error": "Search query must be at least 2 characters"})
    try:
        results = await search_change_charities(query, page, category)
    except (ChangeApiError, ConfigurationError, httpx.HTTPError) as e:
        logger.error(f"Charity search failed: {e}")
        return json.dumps({"success": False, "error": f"Failed to search nonprofits: {e}"})
    return json.dumps(results, indent=2)


# --- Token Launch Routes ---

@mcp.custom_route("/api/tokens/prepare", methods=["POST"])
async def prepare_token(request: Request) -> Response:
    limit, rejected = enforce(rate_limiter, request, LAUNCH_RATE_LIMIT)
    if rejected:
        return rejected
    try:
        body = await json_body(request)
        params = TokenLaunchParams.model_validate(body)
        charity = await resolve_charity(body)

        if mock_mode():
            mint = MOCK_PREFIX + secrets.token_hex(20)
            payload = {
                "success": True,
                "mock": True,
                "tokenMint": mint,
                "metadataUrl": f"https://example.com/metadata/{mint}",
                "charity": charity.to_api(),
            }
        else:
            info = await get_orchestrator().create_token_info(params)
            payload = {
                "success": True,
                "mock": False,
                "tokenMint": info.token_mint,
                "metadataUrl": info.metadata_url,
                "charity": charity.to_api(),
            }
        return apply_headers(JSONResponse(payload), limit)
    except Exception as e:
        return apply_headers(error_response(e, "Failed to prepare token"), limit)


@mcp.custom_route("/api/tokens/config", methods=["POST"])
async def create_token_config(request: Request) -> Response:
    limit, rejected = enforce(rate_limiter, request, LAUNCH_RATE_LIMIT)
    if rejected:
        return rejected
    try:
        body = await json_body(request)
        token_mint = body.get("tokenMint")
        creator_wallet = body.get("creatorWallet")
        if not token_mint or not creator_wallet or not body.get("charityId"):
            raise ValueError("tokenMint, creatorWallet, and charityId are required")
        if not is_mock_mint(token_mint) and not is_valid_solana_address(token_mint):
            logger.error(f"Invalid tokenMint received: {str(token_mint)[:60]!r} (length {len(str(token_mint))})")
            raise ValueError("Invalid token mint address format")
        require_address(creator_wallet, "creator wallet")
        charity = await resolve_charity(body, fallback_to_default=False, default_source=CharitySource.local)
        percent = donate_percent_from(body)

        if mock_mode():
            split = compute_fee_split(percent)
            payload = {
                "success": True,
                "mock": True,
                "configKey": "config" + secrets.token_hex(20),
                "transactions": [],
                "charityBps": split.charity_bps,
                "platformBps": split.platform_bps,
                "creatorBps": split.creator_bps,
            }
        else:
            config = await get_orchestrator().create_fee_share_config(
                token_mint, creator_wallet, charity.wallet_address, percent
            )
            payload = {
                "success": True,
                "mock": False,
                "configKey": config.config_key,
                "transactions": config.transactions,
                "charityBps": config.split.charity_bps,
                "platformBps": config.split.platform_bps,
                "creatorBps": config.split.creator_bps,
            }
        return apply_headers(JSONResponse(payload), limit)
    except Exception as e:
        return apply_headers(error_response(e, "Failed to create config"), limit)


@mcp.custom_route("/api/tokens/launch-tx", methods=["POST"])
async def create_token_launch_tx(request: Request) -> Response:
    try:
        body = await json_body(request)
        required = ("tokenMint", "metadataUrl", "configKey", "creatorWallet")
        if not all(body.get(k) for k in required):
            raise ValueError("tokenMint, metadataUrl, configKey, and creatorWallet are required")
        if mock_mode():
            return JSONResponse({"success": True, "mock": True, "transaction": None})

        initial_buy = body.get("initialBuyAmountSol") or body.get("initialBuyAmount") or 0
        if isinstance(initial_buy, bool) or not isinstance(initial_buy, (int, float, str)):
            raise ValueError("Initial buy amount must be a valid number")
        launch = await get_orchestrator().create_launch_transaction(
            body["tokenMint"], body["metadataUrl"], body["configKey"], body["creatorWallet"], initial_buy
        )
        return JSONResponse({"success": True, "mock": False, "transaction": launch.transaction})
    except Exception as e:
        return error_response(e, "Failed to create launch transaction")


@mcp.custom_route("/api/tokens/launch", methods=["POST"])
async def launch_token(request: Request) -> Response:
    limit, rejected = enforce(rate_limiter, request, LAUNCH_RATE_LIMIT)
    if rejected:
        return rejected
    try:
        body = await json_body(request)
        mint = body.get("mintAddress")
        if mint and storage.get_launched_token_by_mint(mint) is not None:
            return apply_headers(
                JSONResponse({"success": False, "error": f"Token {mint} has already been recorded"}, status_code=409),
                limit,
            )
        payload = await record_launch(body)
        return apply_headers(JSONResponse(payload), limit)
    except Exception as e:
        return apply_headers(error_response(e, "Failed to launch token"), limit)


# --- Token Query Routes ---

@mcp.custom_route("/api/tokens", methods=["GET"])
async def get_tokens(request: Request) -> Response:
    return JSONResponse([t.to_api() for t in storage.get_launched_tokens()])


@mcp.custom_route("/api/tokens/leaderboard", methods=["GET"])
async def get_tokens_leaderboard(request: Request) -> Response:
    board = request.query_params.get("type", LeaderboardType.donations.value)
    try:
        board_type = LeaderboardType(board)
    except ValueError:
        return JSONResponse({"error": f"Unknown leaderboard type: {board}"}, status_code=400)
    entries = leaderboard(storage.get_launched_tokens(), board_type, query_int(request, "limit", 10))
    return JSONResponse({"type": board_type.value, "entries": [e.to_api() for e in entries]})


@mcp.custom_route("/api/tokens/trending", methods=["GET"])
async def get_tokens_trending(request: Request) -> Response:
    entries = trending(storage.get_launched_tokens(), query_int(request, "limit", 5))
    return JSONResponse([e.to_api() for e in entries])


@mcp.custom_route("/api/tokens/search/name", methods=["GET"])
async def search_token_names(request: Request) -> Response:
    limit, rejected = enforce(rate_limiter, request, SEARCH_RATE_LIMIT)
    if rejected:
        return rejected
    query = request.query_params.get("q", "")
    local = [t.to_api() for t in storage.search_tokens_by_name(query)] if len(query) >= 2 else []
    return apply_headers(JSONResponse({"local": local}), limit)


@mcp.custom_route("/api/tokens/creator/{wallet}", methods=["GET"])
async def get_creator_tokens(request: Request) -> Response:
    wallet = request.path_params["wallet"]
    return JSONResponse([t.to_api() for t in storage.get_tokens_by_creator(wallet)])


@mcp.custom_route("/api/tokens/{mint}/impact", methods=["GET"])
async def get_token_impact(request: Request) -> Response:
    token = storage.get_launched_token_by_mint(request.path_params["mint"])
    if token is None:
        return JSONResponse({"error": "Token not found"}, status_code=404)
    return JSONResponse(token_impact_payload(token))


@mcp.custom_route("/api/dashboard", methods=["GET"])
async def get_dashboard(request: Request) -> Response:
    return JSONResponse(
        {
            "tokens": [t.to_api() for t in storage.get_launched_tokens()],
            "donations": [d.to_api() for d in storage.get_donations()],
            "stats": storage.get_dashboard_stats().to_api(),
        }
    )


@mcp.custom_route("/api/donations", methods=["GET"])
async def get_donations(request: Request) -> Response:
    return JSONResponse([d.to_api() for d in storage.get_donations()])


@mcp.custom_route("/api/config/featured-project", methods=["GET"])
async def get_featured_project(request: Request) -> Response:
    mint = settings.featured_token_mint
    if not mint:
        return JSONResponse({"error": "Featured project not configured"}, status_code=500)
    return JSONResponse(
        {
            "name": FEATURED_PROJECT["name"],
            "tokenMint": mint,
            "bagsUrl": f"https://bags.fm/{mint}",
            "description": FEATURED_PROJECT["description"],
            "category": FEATURED_PROJECT["category"],
        }
    )


@mcp.custom_route("/api/creator/{wallet}/impact", methods=["GET"])
async def get_creator_impact(request: Request) -> Response:
    return JSONResponse(creator_impact_payload(request.path_params["wallet"]))


# --- Charity Routes ---

@mcp.custom_route("/api/charities", methods=["GET"])
async def get_charities(request: Request) -> Response:
    return JSONResponse([c.to_api() for c in storage.get_verified_charities()])


@mcp.custom_route("/api/charities/change/search", methods=["GET"])
async def search_change(request: Request) -> Response:
    limit, rejected = enforce(rate_limiter, request, SEARCH_RATE_LIMIT)
    if rejected:
        return rejected
    query = request.query_params.get("q", "")
    if len(query) < 2:
        return apply_headers(JSONResponse({"error": "Search query must be at least 2 characters"}, status_code=400), limit)
    try:
        results = await search_change_charities(
            query, query_int(request, "page", 1, hi=1000), request.query_params.get("category") or None
        )
    except Exception as e:
        return apply_headers(error_response(e, "Failed to search nonprofits"), limit)
    return apply_headers(JSONResponse(results), limit)


@mcp.custom_route("/api/charities/change/{id}", methods=["GET"])
async def get_change_nonprofit(request: Request) -> Response:
    try:
        nonprofit = await change_client.get_nonprofit(request.path_params["id"])
    except Exception as e:
        return error_response(e, "Failed to fetch nonprofit")
    if nonprofit is None:
        return JSONResponse({"error": "Nonprofit not found"}, status_code=404)
    if not has_valid_solana_wallet(nonprofit):
        return JSONResponse({"error": "This nonprofit does not have a Solana wallet configured"}, status_code=400)
    return JSONResponse(
        {
            "id": nonprofit.id,
            "name": nonprofit.name,
            "ein": nonprofit.ein,
            "mission": nonprofit.mission,
            "category": map_change_category(nonprofit.category),
            "website": nonprofit.website,
            "email": nonprofit.email,
            "logoUrl": nonprofit.icon_url,
            "solanaAddress": nonprofit.solana_address,
            "location": nonprofit.location,
            "socials": nonprofit.socials.model_dump() if nonprofit.socials else None,
            "displayImpact": nonprofit.display_impact,
            "source": CharitySource.change.value,
        }
    )


@mcp.custom_route("/api/charities/{id}", methods=["GET"])
async def get_charity(request: Request) -> Response:
    charity = storage.get_charity_by_id(request.path_params["id"])
    if charity is None:
        return JSONResponse({"error": "Charity not found"}, status_code=404)
    return JSONResponse(charity.to_api())


# --- Charity Approval Routes ---

def verified_charity(email: Optional[str]):
    if not email:
        return None
    charity = storage.get_charity_by_email(email)
    if charity is None or charity.email_verified_at is None:
        return None
    return charity


@mcp.custom_route("/api/charity/tokens", methods=["GET"])
async def get_charity_tokens(request: Request) -> Response:
    email = request.query_params.get("email")
    if not email:
        return JSONResponse({"error": "Charity email is required"}, status_code=400)
    if verified_charity(email) is None:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    tokens = storage.get_tokens_by_charity_email(email)
    statuses = [t.charity_approval_status for t in tokens]
    return JSONResponse(
        {
            "tokens": [t.to_api() for t in tokens],
            "stats": {
                "total": len(tokens),
                "pending": statuses.count(ApprovalStatus.pending),
                "approved": statuses.count(ApprovalStatus.approved),
                "denied": statuses.count(ApprovalStatus.denied),
            },
        }
    )


@mcp.custom_route("/api/charity/tokens/pending", methods=["GET"])
async def get_charity_pending_tokens(request: Request) -> Response:
    email = request.query_params.get("email")
    if not email:
        return JSONResponse({"error": "Charity email is required"}, status_code=400)
    charity = storage.get_charity_by_email(email)
    if charity is None:
        return JSONResponse({"error": "Charity not found"}, status_code=404)
    if charity.email_verified_at is None:
        return JSONResponse({"error": "Charity email not verified"}, status_code=401)

    pending = [
        t for t in storage.get_tokens_by_charity_email(email) if t.charity_approval_status == ApprovalStatus.pending
    ]
    return JSONResponse({"tokens": [t.to_api() for t in pending], "totalPending": len(pending)})


async def review_token(request: Request, decision: ApprovalStatus) -> Response:
    try:
        body = await json_body(request)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    email = body.get("charityEmail")
    note = body.get("note")
    token_id = request.path_params["id"]
    if not email:
        return JSONResponse({"error": "Charity email is required"}, status_code=400)

    charity = verified_charity(email)
    if charity is None:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    token = next((t for t in storage.get_tokens_by_charity_email(email) if t.id == token_id), None)
    if token is None:
        return JSONResponse({"error": "Token not found or not associated with this charity"}, status_code=404)
    if token.charity_approval_status != ApprovalStatus.pending:
        return JSONResponse({"error": "Token has already been reviewed"}, status_code=400)

    updated = storage.update_token_approval_status(token_id, decision, note)
    approved = decision == ApprovalStatus.approved
    storage.create_audit_log(
        action="TOKEN_APPROVED_BY_CHARITY" if approved else "TOKEN_DENIED_BY_CHARITY",
        entity_type="token",
        entity_id=token_id,
        details={"charityEmail": email, "charityName": charity.name, "tokenName": token.name, "note": note},
    )
    logger.info(f"Charity {charity.name} {decision.value} token {token.symbol}")
    return JSONResponse(
        {
            "success": True,
            "message": "Token officially endorsed by charity" if approved else "Token denied by charity",
            "token": updated.to_api(),
        }
    )


@mcp.custom_route("/api/charity/tokens/{id}/approve", methods=["POST"])
async def approve_token(request: Request) -> Response:
    return await review_token(request, ApprovalStatus.approved)


@mcp.custom_route("/api/charity/tokens/{id}/deny", methods=["POST"])
async def deny_token(request: Request) -> Response:
    return await review_token(request, ApprovalStatus.denied)


# --- User Routes ---

def unauthenticated() -> JSONResponse:
    return JSONResponse({"error": "User not authenticated"}, status_code=401)


@mcp.custom_route("/api/user/wallet", methods=["GET"])
async def get_user_wallet(request: Request) -> Response:
    user = twitter_auth.current_user(request)
    if user is None:
        return unauthenticated()
    return JSONResponse(
        {
            "walletAddress": user.wallet_address,
            "walletConnectedAt": user.wallet_connected_at.isoformat() if user.wallet_connected_at else None,
        }
    )


@mcp.custom_route("/api/user/wallet/connect", methods=["POST"])
async def connect_user_wallet(request: Request) -> Response:
    """Links a wallet to the signed-in user once they prove ownership by signing a message."""
    user = twitter_auth.current_user(request)
    if user is None:
        return unauthenticated()
    try:
        data = WalletConnectRequest.model_validate(await json_body(request))
    except Exception as e:
        return error_response(e, "Failed to connect wallet")
    if not is_valid_solana_address(data.wallet_address):
        return JSONResponse({"success": False, "error": "Invalid wallet address"}, status_code=400)
    if not verify_wallet_signature(data.wallet_address, data.message, data.signature):
        return JSONResponse({"success": False, "error": "Invalid signature"}, status_code=400)

    storage.update_user(user.id, wallet_address=data.wallet_address, wallet_connected_at=utcnow())
    logger.info(f"User @{user.twitter_username} connected wallet {data.wallet_address}")
    return JSONResponse(
        {"success": True, "walletAddress": data.wallet_address, "message": "Wallet connected successfully"}
    )


@mcp.custom_route("/api/user/wallet/disconnect", methods=["POST"])
async def disconnect_user_wallet(request: Request) -> Response:
    user = twitter_auth.current_user(request)
    if user is None:
        return unauthenticated()
    storage.update_user(user.id, wallet_address=None, wallet_connected_at=None)
    return JSONResponse({"success": True, "message": "Wallet disconnected successfully"})


@mcp.custom_route("/api/user/profile", methods=["PATCH"])
async def update_user_profile(request: Request) -> Response:
    user = twitter_auth.current_user(request)
    if user is None:
        return unauthenticated()
    try:
        profile = ProfileUpdate.model_validate(await json_body(request))
    except Exception as e:
        return error_response(e, "Failed to update profile")
    updated = storage.update_user(user.id, display_name=profile.display_name)
    return JSONResponse({"success": True, "user": updated.to_api()})


# --- Admin and Status Routes ---

@mcp.custom_route("/api/admin/tokens/anomalies", methods=["GET"])
async def get_token_anomalies(request: Request) -> Response:
    if not admin_authorized(request):
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    anomalies = []
    for t in storage.get_bps_anomalies():
        anomalies.append(
            {
                "id": t.id,
                "name": t.name,
                "symbol": t.symbol,
                "mintAddress": t.mint_address,
                "charityBps": t.charity_bps,
                "platformBps": t.platform_bps,
                "creatorBps": t.creator_bps,
                "bpsSum": (t.charity_bps or 0) + (t.platform_bps or 0) + (t.creator_bps or 0),
                "launchedAt": t.launched_at.isoformat(),
                "isTest": t.is_test,
                "anomalyAcknowledgedAt": t.anomaly_acknowledged_at.isoformat() if t.anomaly_acknowledged_at else None,
                "anomalyNotes": t.anomaly_notes,
            }
        )
    return JSONResponse({"anomalies": anomalies, "count": len(anomalies)})


@mcp.custom_route("/api/admin/tokens/{id}/acknowledge-anomaly", methods=["POST"])
async def acknowledge_token_anomaly(request: Request) -> Response:
    if not admin_authorized(request):
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    try:
        body = await json_body(request)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    notes = body.get("notes")
    if notes is not None and not isinstance(notes, str):
        return JSONResponse({"error": "notes must be a string"}, status_code=400)

    # accepts the token id or its mint address
    key = request.path_params["id"]
    token = storage.get_token_by_id(key) or storage.get_launched_token_by_mint(key)
    if token is None:
        return JSONResponse({"error": "Token not found"}, status_code=404)

    storage.acknowledge_anomaly(token.id, notes)
    storage.create_audit_log(
        action="TOKEN_ANOMALY_ACKNOWLEDGED",
        entity_type="token",
        entity_id=token.id,
        details={
            "name": token.name,
            "notes": notes or "No notes",
            "charityBps": token.charity_bps,
            "platformBps": token.platform_bps,
            "creatorBps": token.creator_bps,
        },
    )
    logger.info(f"Anomaly on {token.symbol} ({token.mint_address}) acknowledged")
    return JSONResponse({"success": True, "message": "Anomaly acknowledged", "tokenId": token.id})


@mcp.custom_route("/api/admin/tokens/pending", methods=["GET"])
async def get_pending_tokens(request: Request) -> Response:
    if not admin_authorized(request):
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    tokens = storage.get_tokens_pending_approval()
    return JSONResponse({"tokens": [t.to_api() for t in tokens], "total": len(tokens)})


@mcp.custom_route("/api/bags/status", methods=["GET"])
async def get_bags_status(request: Request) -> Response:
    status: Dict[str, Any] = {"configured": settings.bags_configured}
    if request.query_params.get("test") == "true":
        try:
            height = await solana_rpc.get_block_height()
            status["rpcConnected"] = True
            status["rpcUrl"] = "custom" if settings.solana_rpc_url != DEFAULT_SOLANA_RPC_URL else "default (mainnet-beta)"
            logger.info(f"RPC check passed, block height: {height}")
        except (httpx.HTTPError, RuntimeError, KeyError, ValueError) as e:
            status["rpcConnected"] = False
            status["rpcError"] = str(e)
            logger.error(f"RPC check failed: {e}")
    return JSONResponse(status)


twitter_auth.register_routes(mcp)

# Must stay last: the catch-all serves the frontend bundle.
register_static_routes(mcp, settings.static_dir)


async def close_clients() -> None:
    """Closes the outbound HTTP clients."""
    clients: List[Any] = [change_client, mailer, solana_rpc, twitter_auth]
    if bags_client is not None:
        clients.append(bags_client)
    for client in clients:
        await client.close()
    logger.info("Closed outbound HTTP clients")


async def serve() -> None:
    try:
        await mcp.run_streamable_http_async()
    finally:
        await close_clients()


def main() -> None:
    configure_logging(settings.log_level)
    check_startup(settings)
    if settings.is_production:
        require_build(settings.static_dir)
    logger.info(f"Starting GoodBags on {settings.host}:{settings.port} (env={settings.app_env})")
    asyncio.run(serve())


if __name__ == "__main__":
    main()
