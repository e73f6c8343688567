import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from mcp.server.fastmcp.utilities.logging import get_logger
from pydantic import BaseModel

from .addresses import is_valid_solana_address
from .errors import ConfigurationError

logger = get_logger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent

DEFAULT_BAGS_API_URL = "https://public-api-v2.bags.fm/api/v1"
DEFAULT_CHANGE_API_URL = "https://api.getchange.io/api/v1"
DEFAULT_SOLANA_RPC_URL = "https://api.mainnet-beta.solana.com"
DEFAULT_APP_URL = "https://goodbags.tech"
DEFAULT_EMAIL_FROM = "GoodBags <noreply@goodbags.tech>"


def _env(name: str, default: str = "") -> str:
    # blank values count as unset
    return os.getenv(name, "").strip() or default


class Settings(BaseModel):
    app_env: str = "development"

    bags_api_key: Optional[str] = None
    bags_api_url: str = DEFAULT_BAGS_API_URL
    solana_rpc_url: str = DEFAULT_SOLANA_RPC_URL
    platform_wallet: Optional[str] = None
    partner_wallet: Optional[str] = None

    change_public_key: Optional[str] = None
    change_secret_key: Optional[str] = None
    change_api_url: str = DEFAULT_CHANGE_API_URL

    resend_api_key: Optional[str] = None
    email_from: str = DEFAULT_EMAIL_FROM
    app_url: str = DEFAULT_APP_URL

    featured_token_mint: Optional[str] = None
    twitter_client_id: Optional[str] = None
    twitter_client_secret: Optional[str] = None
    admin_secret: Optional[str] = None

    store_file: Path = PROJECT_ROOT / "data" / "goodbags.json"
    static_dir: Path = PROJECT_ROOT / "dist" / "public"
    host: str = "127.0.0.1"
    port: int = 5000
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def bags_configured(self) -> bool:
        return bool(self.bags_api_key)

    @property
    def referral_wallet(self) -> Optional[str]:
        # Referral credit goes to the platform unless a dedicated partner wallet is set.
        return self.partner_wallet or self.platform_wallet

    @staticmethod
    def from_env() -> "Settings":
        load_dotenv()

        store_file = Path(_env("STORE_FILE", "data/goodbags.json"))
        if not store_file.is_absolute():
            store_file = PROJECT_ROOT / store_file
        static_dir = Path(_env("STATIC_DIR", "dist/public"))
        if not static_dir.is_absolute():
            static_dir = PROJECT_ROOT / static_dir

        return Settings(
            app_env=_env("APP_ENV", "development").lower(),
            bags_api_key=_env("BAGS_API_KEY") or None,
            bags_api_url=_env("BAGS_API_URL", DEFAULT_BAGS_API_URL),
            solana_rpc_url=_env("SOLANA_RPC_URL", DEFAULT_SOLANA_RPC_URL),
            platform_wallet=_env("PLATFORM_WALLET") or None,
            partner_wallet=_env("BAGS_PARTNER_WALLET") or None,
            change_public_key=_env("CHANGE_API_PUBLIC_KEY") or None,
            change_secret_key=_env("CHANGE_API_SECRET_KEY") or None,
            change_api_url=_env("CHANGE_API_URL", DEFAULT_CHANGE_API_URL),
            resend_api_key=_env("RESEND_API_KEY") or None,
            email_from=_env("EMAIL_FROM", DEFAULT_EMAIL_FROM),
            app_url=_env("APP_URL", DEFAULT_APP_URL).rstrip("/"),
            featured_token_mint=_env("FEATURED_TOKEN_MINT") or None,
            twitter_client_id=_env("TWITTER_CLIENT_ID") or None,
            twitter_client_secret=_env("TWITTER_CLIENT_SECRET") or None,
            admin_secret=_env("ADMIN_SECRET") or None,
            store_file=store_file,
            static_dir=static_dir,
            host=_env("HOST", "127.0.0.1"),
            port=int(_env("PORT", "5000")),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
        )


def check_startup(settings: Settings) -> List[str]:
    """
    Validates the settings a launch needs. In production any problem is fatal and
    raises ConfigurationError; in development the problems are logged as warnings
    and returned so the server can still start with mock launches.
    """
    problems: List[str] = []
    if not settings.bags_api_key:
        problems.append("BAGS_API_KEY is not set; token launches are unavailable")
    if not settings.platform_wallet:
        problems.append("PLATFORM_WALLET is not set")
    elif not is_valid_solana_address(settings.platform_wallet):
        problems.append(f"PLATFORM_WALLET is not a valid Solana address: {settings.platform_wallet}")
    if settings.partner_wallet and not is_valid_solana_address(settings.partner_wallet):
        problems.append(f"BAGS_PARTNER_WALLET is not a valid Solana address: {settings.partner_wallet}")

    if problems and settings.is_production:
        raise ConfigurationError("; ".join(problems))
    for problem in problems:
        logger.warning(f"Configuration: {problem}")
    return problems
