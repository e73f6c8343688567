"""
Integration Tests for GoodBags

The integration tests cover:
- Fee split constants and donation tiers
- Launch orchestration against a mocked Bags API
- Charity lookup through Change, notification emails
- Storage, ranking, rate limiting and static file serving
- X login, MCP tools and the HTTP JSON API

Test files:
- conftest.py: Pytest fixtures and test configuration
- test_fee_split.py, test_launch.py: fee split and launch orchestration
- test_change_api.py, test_mailer.py: charity directory and emails
- test_storage.py, test_ranking.py, test_ratelimit.py, test_static.py, test_config.py
- test_auth.py: Sign in with X
- test_server.py: MCP tools
- test_http_api.py: HTTP routes

All tests use temporary file storage so nothing touches a real store.
"""

# Integration tests for goodbags
