"""
GoodBags Launch Package

This package provides the backend for GoodBags, a launchpad for "impact" memecoins on
Solana where a share of every trade's royalty is routed to a verified charity. It runs
as an MCP (Model Context Protocol) service and also serves the HTTP JSON API and the
built frontend bundle from the same Starlette application.

Token launches are delegated to the Bags.fm public API: this package validates the
parameters, assembles the creator / charity / platform fee split and hands back
unsigned transactions for the user's wallet to sign. Nothing here ever signs or
submits a transaction.

Main components:
- server.py: FastMCP server with launch tools and the HTTP API routes
- launch.py: fee-share / launch orchestration over the Bags client
- bags.py: Bags.fm public API client
- fee_split.py: basis-point constants and donation tiers
- change_api.py / mailer.py: charity lookup and charity notification emails
- storage.py: JSON-based persistence for tokens, donations and charities
- ranking.py: leaderboard and trending scores
"""

__version__ = "0.1.0"
