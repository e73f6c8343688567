"""
Test Package for GoodBags

This package contains the test suite for the GoodBags launch server. The tests
call the MCP tools and HTTP routes of the real server module, with every
external API (Bags.fm, Change, Resend, X, Solana RPC) replaced by an httpx
MockTransport.

Test Structure:
- integration/: integration tests for the tools, routes and supporting modules
- integration/conftest.py: Pytest fixtures and configuration for testing
"""

# Test package for goodbags
