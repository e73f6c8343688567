"""
Fee-share and launch orchestration.

A launch is three ordered calls into the Bags API, each feeding the next:

1. token info / metadata  -> mint address + metadata URI
2. fee-share config       -> config key + unsigned setup transactions
3. launch transaction     -> unsigned launch transaction

Every address is validated before the first network call of a step. Bags errors
are not caught here; they reach the caller as BagsApiError.
"""

from decimal import Decimal
from typing import List, Union

from mcp.server.fastmcp.utilities.logging import get_logger

from .addresses import require_address
from .bags import BagsClient, lamports_from_sol
from .fee_split import FeeSplit, compute_fee_split
from .models import FeeClaimer, FeeShareConfig, LaunchPlan, LaunchTransaction, TokenInfo, TokenLaunchParams

logger = get_logger(__name__)


class LaunchOrchestrator:
    def __init__(self, client: BagsClient, platform_wallet: str, partner_wallet: str) -> None:
        self.client = client
        self.platform_wallet = platform_wallet
        self.partner_wallet = partner_wallet

    def build_fee_claimers(self, creator_wallet: str, charity_wallet: str, split: FeeSplit) -> List[FeeClaimer]:
        """Creator, charity, platform; always in that order, zero-bps entries included."""
        creator = require_address(creator_wallet, "creator wallet")
        charity = require_address(charity_wallet, "charity wallet")
        platform = require_address(self.platform_wallet, "platform wallet")
        return [
            FeeClaimer(wallet=creator, bps=split.creator_bps),
            FeeClaimer(wallet=charity, bps=split.charity_bps),
            FeeClaimer(wallet=platform, bps=split.platform_bps),
        ]

    async def create_token_info(self, params: TokenLaunchParams) -> TokenInfo:
        require_address(params.creator_wallet, "creator wallet")
        info = await self.client.create_token_info(
            name=params.name,
            symbol=params.symbol,
            description=params.description or "",
            image_url=params.image_url or "",
            twitter=params.twitter_url or "",
            website=params.website_url or "",
        )
        logger.info(f"Created token info for {params.symbol}: mint={info.token_mint}")
        return info

    async def create_fee_share_config(
        self,
        token_mint: str,
        creator_wallet: str,
        charity_wallet: str,
        donate_percent: int = 0,
    ) -> FeeShareConfig:
        mint = require_address(token_mint, "token mint")
        split = compute_fee_split(donate_percent)
        claimers = self.build_fee_claimers(creator_wallet, charity_wallet, split)
        partner = require_address(self.partner_wallet, "partner wallet")

        config_key, transactions = await self.client.create_fee_share_config(
            payer=creator_wallet,
            base_mint=mint,
            fee_claimers=claimers,
            partner=partner,
        )
        logger.info(
            f"Fee-share config {config_key} for {mint}: creator={split.creator_bps} "
            f"charity={split.charity_bps} platform={split.platform_bps} ({len(transactions)} txs)"
        )
        return FeeShareConfig(config_key=config_key, transactions=transactions, split=split)

    async def create_launch_transaction(
        self,
        token_mint: str,
        metadata_url: str,
        config_key: str,
        creator_wallet: str,
        initial_buy_sol: Union[Decimal, float, str, int] = 0,
    ) -> LaunchTransaction:
        mint = require_address(token_mint, "token mint")
        key = require_address(config_key, "config key")
        creator = require_address(creator_wallet, "creator wallet")
        if not metadata_url:
            raise ValueError("metadata_url is required")
        lamports = lamports_from_sol(initial_buy_sol)
        if lamports < 0:
            raise ValueError("Initial buy amount cannot be negative")

        transaction = await self.client.create_launch_transaction(
            token_mint=mint,
            metadata_url=metadata_url,
            config_key=key,
            launch_wallet=creator,
            initial_buy_lamports=lamports,
        )
        return LaunchTransaction(transaction=transaction)

    async def prepare_launch(
        self,
        params: TokenLaunchParams,
        charity_wallet: str,
        donate_percent: int = 0,
    ) -> LaunchPlan:
        # Check every address up front so a bad charity wallet never costs a metadata upload.
        require_address(params.creator_wallet, "creator wallet")
        require_address(charity_wallet, "charity wallet")
        require_address(self.platform_wallet, "platform wallet")
        require_address(self.partner_wallet, "partner wallet")
        compute_fee_split(donate_percent)

        token = await self.create_token_info(params)
        fee_share = await self.create_fee_share_config(
            token.token_mint, params.creator_wallet, charity_wallet, donate_percent
        )
        launch = await self.create_launch_transaction(
            token.token_mint,
            token.metadata_url,
            fee_share.config_key,
            params.creator_wallet,
            params.initial_buy_amount_sol,
        )
        return LaunchPlan(token=token, fee_share=fee_share, launch=launch)
