"""
Unbind Entitlements Test Suite

Tests for:
- Entitlement resolution and ledger fallbacks
- Daily usage quotas and day rollover
- Paywall decisions and trial lifecycle
- Local state persistence and encryption

Run tests with:
    pytest tests/ -v

Run fast tests only:
    pytest tests/ -v -m "not slow"
"""
